"""kpersist command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kpersist`` script).
"""

from kpersist.cli.main import cli

__all__ = ["cli"]
