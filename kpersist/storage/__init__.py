"""Output storage for kpersist.

Submodules:
    timestamps  -- Run-directory timestamps and RFC 3339 nanosecond stamps.
    layout      -- Per-run directory and deterministic per-entity file names.
"""

from kpersist.storage.layout import RunLayout

__all__ = ["RunLayout"]
