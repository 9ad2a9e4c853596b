"""ResourceChangeTracker: persists the change history of one custom resource.

File format::

    <pretty-printed initial snapshot>
    ----------------------------------
    Change captured at 2024-01-31T15:45:02.123456789Z:
    ~ status.phase: "Pending" -> "Running"
    ----------------------------------

Every diff block is flushed and fsync'd before the next snapshot is taken
from the inbox, so an abrupt process exit loses at most the block being
written.  File I/O runs in a worker thread; the event loop that drives the
watch streams never waits on the disk.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
from pathlib import Path
from typing import Any, TextIO

from kpersist.errors import KPersistError, TrackerError
from kpersist.ledger.diff import diff
from kpersist.ledger.inbox import Inbox
from kpersist.ledger.snapshot import pretty_json, strip_ephemeral
from kpersist.models.changes import DiffReport
from kpersist.observability.logging import get_entity_logger
from kpersist.storage.layout import RESOURCE_KIND
from kpersist.storage.timestamps import rfc3339_nano

BLOCK_SEPARATOR = "----------------------------------"


def format_change_block(captured_at: str, report: DiffReport) -> str:
    """Render one diff block, including the leading blank line."""
    return f"\n{BLOCK_SEPARATOR}\nChange captured at {captured_at}:\n{report.render()}\n{BLOCK_SEPARATOR}\n"


class ResourceChangeTracker:
    """Owns the output file of one watched custom resource.

    Args:
        name: Resource name, used for logging and error reporting.
        path: Output file. Created if absent, always appended to.
    """

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = Path(path)
        self._out: TextIO | None = None
        self._last_stamp_ns = 0
        self._blocks_written = 0
        self._log = get_entity_logger("ledger.tracker", RESOURCE_KIND, name)

    @property
    def blocks_written(self) -> int:
        return self._blocks_written

    async def create(self, initial_snapshot: dict[str, Any]) -> TextIO:
        """Open the output file and write the initial snapshot to it.

        Raises:
            TrackerError: if the file cannot be opened or written, or the
                snapshot cannot be serialised.
        """
        self._log.info("writing to file", path=str(self.path))
        try:
            content = pretty_json(strip_ephemeral(initial_snapshot))
            self._out = await asyncio.to_thread(open, self.path, "a", encoding="utf-8")
            await self._write(content)
        except (OSError, KPersistError) as exc:
            await self._annotate_failure(exc)
            self.close()
            raise TrackerError(self.name, exc) from exc
        return self._out

    async def run(self, inbox: Inbox, initial_snapshot: dict[str, Any]) -> None:
        """Append one diff block per snapshot until *inbox* is closed.

        Snapshots are applied strictly in the order they were sent.  The
        output file is closed when the loop ends, whichever way it ends.

        Raises:
            TrackerError: if the file cannot be created, or a diff cannot
                be computed or written.
        """
        try:
            if self._out is None:
                await self.create(initial_snapshot)
            previous = strip_ephemeral(initial_snapshot)
            async for snapshot in inbox:
                current = strip_ephemeral(snapshot)
                await self.record(previous, current)
                previous = current
            self._log.info("inbox closed, tracker exiting", blocks=self._blocks_written)
        finally:
            self.close()

    async def record(self, previous: dict[str, Any], current: dict[str, Any]) -> DiffReport:
        """Diff two stripped snapshots and append the resulting block."""
        try:
            report = diff(previous, current)
            await self._write(format_change_block(self._next_stamp(), report))
        except (OSError, KPersistError) as exc:
            await self._annotate_failure(exc)
            raise TrackerError(self.name, exc) from exc
        self._blocks_written += 1
        self._log.debug("change captured", changes=len(report))
        return report

    def close(self) -> None:
        if self._out is not None:
            self._out.close()
            self._out = None

    def _next_stamp(self) -> str:
        # Wall-clock time may step backwards; stamps within a file may not.
        stamp_ns = max(time.time_ns(), self._last_stamp_ns)
        self._last_stamp_ns = stamp_ns
        return rfc3339_nano(stamp_ns)

    async def _write(self, text: str) -> None:
        if self._out is None:
            raise OSError(f"Output file {self.path} is not open")
        await asyncio.to_thread(_write_and_sync, self._out, text)

    async def _annotate_failure(self, exc: Exception) -> None:
        self._log.error("error while writing resource file", path=str(self.path), error=str(exc))
        out = self._out
        if out is None or out.closed:
            return
        note = f"kpersist: error occurred while writing this log file: {exc}\n"
        with contextlib.suppress(OSError, ValueError):
            await asyncio.to_thread(_write_and_sync, out, note)


def _write_and_sync(out: TextIO, text: str) -> None:
    out.write(text)
    out.flush()
    os.fsync(out.fileno())
