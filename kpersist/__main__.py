"""Entry point for `python -m kpersist`.

Usage:
    python -m kpersist
    uv run python -m kpersist
"""

from __future__ import annotations

import asyncio

from kpersist.app import main

asyncio.run(main())
