"""PodLogFollower: persists the logs of one pod for as long as it exists."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import BinaryIO

from kpersist.models.events import PodRef, RetrySignal
from kpersist.observability.logging import get_entity_logger
from kpersist.podlogs.gate import RetryGate
from kpersist.podlogs.pipeline import LogStreamPipeline
from kpersist.storage.layout import POD_KIND


def done_marker(pod: PodRef) -> str:
    return f"Done writing logs from pod {pod.name}"


class PodLogFollower:
    """Owns the output file of one watched pod.

    The first log-streaming attempt always runs.  After every attempt the
    follower sleeps on its retry gate: a RETRY hint starts one more
    attempt, STOP writes the done marker and ends the worker.  Without a
    STOP the follower never exits on its own.
    """

    def __init__(self, path: Path, pipeline: LogStreamPipeline) -> None:
        self.path = Path(path)
        self._pipeline = pipeline
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    async def run(self, pod: PodRef, gate: RetryGate) -> None:
        log = get_entity_logger("podlogs.follower", POD_KIND, pod.name).bind(uid=pod.uid)
        log.info("writing to file", path=str(self.path))

        # Unbuffered: kubectl and the filter write to the same descriptor.
        out = await asyncio.to_thread(open, self.path, "ab", buffering=0)
        with out:
            while True:
                # Hints that arrived before this attempt are covered by it.
                gate.clear_hint()
                self._attempts += 1
                log.debug("starting log streaming attempt", attempt=self._attempts)
                result = await self._pipeline.run(pod, out)
                if not result.ok:
                    log.info("log streaming attempt ended with an error", attempt=self._attempts)

                signal = await gate.wait()
                if signal is RetrySignal.STOP:
                    break
                log.info("retrying log streaming", attempt=self._attempts + 1)

            await asyncio.to_thread(self._finish, out, pod)
        log.info("done writing logs", attempts=self._attempts)

    def _finish(self, out: BinaryIO, pod: PodRef) -> None:
        out.write(f"{done_marker(pod)}\n".encode())
        os.fsync(out.fileno())
