"""LogStreamPipeline: one log-streaming attempt for one pod.

Two child processes are spawned and wired with an OS pipe::

    kubectl logs <pod> --follow ...  |  sed <strip ANSI colours>  >> pod file
            stderr >> pod file               stderr >> pod file

The parent closes both pipe ends as soon as the children hold them, then
waits for both children at a single join point.  Non-zero exits and spawn
failures are written into the pod file as a line of text; they are never
raised.  Cancellation kills both children, reaps them and re-raises.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import BinaryIO

import structlog

from kpersist.models.events import PodRef

_log = structlog.get_logger(component="podlogs.pipeline")

# Removes CSI colour / style sequences such as ``ESC[1;31m``.
ANSI_FILTER_ARGV: tuple[str, ...] = ("sed", "-u", r"s/\x1B\[[0-9;]\{1,\}[A-Za-z]//g")


@dataclass(frozen=True)
class AttemptResult:
    """Exit statuses of one attempt. None means the process never started."""

    source_status: int | None
    filter_status: int | None

    @property
    def ok(self) -> bool:
        return self.source_status == 0 and self.filter_status == 0


class LogStreamPipeline:
    """Spawns ``kubectl logs`` for a pod and persists its filtered output.

    Args:
        kubectl:             kubectl executable.
        pod_running_timeout: How long kubectl waits for a pod that is not
                             running yet (kubectl duration syntax).
        filter_argv:         Filter process reading the log stream on stdin.
    """

    def __init__(
        self,
        kubectl: str = "kubectl",
        pod_running_timeout: str = "5m",
        filter_argv: tuple[str, ...] = ANSI_FILTER_ARGV,
    ) -> None:
        self._kubectl = kubectl
        self._pod_running_timeout = pod_running_timeout
        self._filter_argv = filter_argv

    def source_argv(self, pod: PodRef) -> list[str]:
        return [
            self._kubectl,
            "logs",
            pod.name,
            f"-n={pod.namespace}",
            "--follow=true",
            "--all-containers=true",
            "--ignore-errors=true",
            f"--pod-running-timeout={self._pod_running_timeout}",
            "--prefix=true",
            "--timestamps=true",
        ]

    async def run(self, pod: PodRef, out: BinaryIO) -> AttemptResult:
        """Stream the logs of *pod* into *out* until kubectl exits.

        *out* must be unbuffered so that lines written here and output of
        the children land in the file in the order they were produced.
        """
        out_fd = out.fileno()
        read_fd, write_fd = os.pipe()
        source: asyncio.subprocess.Process | None = None
        filt: asyncio.subprocess.Process | None = None
        try:
            filt = await asyncio.create_subprocess_exec(
                *self._filter_argv, stdin=read_fd, stdout=out_fd, stderr=out_fd
            )
            source = await asyncio.create_subprocess_exec(
                *self.source_argv(pod),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=write_fd,
                stderr=out_fd,
            )
        except OSError as exc:
            _note(out, pod, f"Error when trying to get logs from pod {pod.name}: {exc}")
        except asyncio.CancelledError:
            await _kill_and_reap(*(proc for proc in (filt, source) if proc is not None))
            raise
        finally:
            # The children own their copies; keeping ours open would stop
            # the filter from ever seeing end-of-file.
            os.close(read_fd)
            os.close(write_fd)

        if source is None or filt is None:
            filter_status = None
            if filt is not None:
                try:
                    filter_status = await filt.wait()
                except asyncio.CancelledError:
                    await _kill_and_reap(filt)
                    raise
            return AttemptResult(source_status=None, filter_status=filter_status)

        try:
            source_status, filter_status = await asyncio.gather(source.wait(), filt.wait())
        except asyncio.CancelledError:
            await _kill_and_reap(source, filt)
            _note(out, pod, f"Log streaming from pod {pod.name} was canceled")
            raise

        prefix = f"Error when trying to get logs from pod {pod.name}"
        if source_status != 0:
            _note(out, pod, f"{prefix}: {self._kubectl} exited with status {source_status}")
        if filter_status != 0:
            _note(out, pod, f"{prefix}: log filter exited with status {filter_status}")
        _log.debug(
            "log streaming attempt finished",
            pod=pod.name,
            namespace=pod.namespace,
            source_status=source_status,
            filter_status=filter_status,
        )
        return AttemptResult(source_status=source_status, filter_status=filter_status)


async def _kill_and_reap(*procs: asyncio.subprocess.Process) -> None:
    for proc in procs:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
    for proc in procs:
        await proc.wait()


def _note(out: BinaryIO, pod: PodRef, line: str) -> None:
    """Record *line* in the pod file and in the process log."""
    _log.warning("log streaming problem", pod=pod.name, namespace=pod.namespace, detail=line)
    try:
        out.write(f"{line}\n".encode())
    except (OSError, ValueError) as exc:
        _log.error("cannot write to pod log file", pod=pod.name, error=str(exc))
