"""Timestamp formatting helpers."""

from __future__ import annotations

import time
from datetime import UTC, datetime

_NANOS_PER_SECOND = 1_000_000_000


def run_timestamp(moment: datetime | None = None) -> str:
    """Format *moment* as ``20240131_154502.12345``.

    Seconds carry five fractional digits, which keeps names of runs started
    in quick succession distinct.
    """
    moment = moment or datetime.now()
    return f"{moment:%Y%m%d_%H%M%S}.{moment.microsecond // 10:05d}"


def rfc3339_nano(epoch_ns: int | None = None) -> str:
    """Format an epoch timestamp in nanoseconds as RFC 3339 in UTC.

    Trailing zeros of the fractional part are trimmed and the fraction is
    omitted entirely when it is zero: ``2024-01-31T15:45:02.1234Z``.
    """
    if epoch_ns is None:
        epoch_ns = time.time_ns()
    seconds, nanos = divmod(epoch_ns, _NANOS_PER_SECOND)
    base = datetime.fromtimestamp(seconds, tz=UTC).strftime("%Y-%m-%dT%H:%M:%S")
    if nanos:
        base += "." + f"{nanos:09d}".rstrip("0")
    return base + "Z"
