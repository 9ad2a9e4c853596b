"""Shared fixtures and factories for kpersist tests.

Nothing here talks to a Kubernetes cluster: watch streams are plain async
generators of event dicts shaped like kubernetes_asyncio's watch output, and
the log pipeline can be replaced with an in-process fake.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from typing import Any, BinaryIO

import pytest

from kpersist.models.events import PodRef
from kpersist.podlogs.pipeline import AttemptResult
from kpersist.storage.layout import RunLayout

_STARTED_AT = datetime(2026, 2, 18, 12, 0, 0, 123450)


# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_resource(
    name: str = "r1",
    phase: str = "Pending",
    namespace: str = "default",
    resource_version: str = "1",
    **extra: Any,
) -> dict[str, Any]:
    """Create an Integration custom resource as delivered by the watch."""
    obj: dict[str, Any] = {
        "apiVersion": "camel.apache.org/v1",
        "kind": "Integration",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": resource_version,
            "managedFields": [{"manager": "kamel", "operation": "Update"}],
        },
        "status": {"phase": phase},
    }
    obj.update(extra)
    return obj


def make_pod(uid: str = "p1", name: str = "my-app-7b4f8c6d-x2kj", namespace: str = "default") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "uid": uid,
            "name": name,
            "namespace": namespace,
            "resourceVersion": "10",
            "labels": {"camel.apache.org/integration": "my-app"},
        },
        "status": {"phase": "Running"},
    }


def watch_event(event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "object": obj, "raw_object": obj}


async def event_stream(*events: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
    for event in events:
        yield event


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds; fail the test after *timeout*."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


async def settle() -> None:
    """Let every ready task run until it suspends again."""
    for _ in range(5):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakePipeline:
    """Stands in for LogStreamPipeline; records each attempt.

    When ``hold`` is set, every attempt stays in flight until
    ``release()`` is called, like a kubectl that is still following logs.
    """

    def __init__(self, hold: bool = False) -> None:
        self.calls: list[PodRef] = []
        self._hold = hold
        self._released = asyncio.Event()
        self.in_flight = False

    def release(self) -> None:
        self._released.set()

    async def run(self, pod: PodRef, out: BinaryIO) -> AttemptResult:
        self.calls.append(pod)
        self.in_flight = True
        out.write(f"attempt {len(self.calls)} for {pod.name}\n".encode())
        try:
            if self._hold:
                await self._released.wait()
                self._released.clear()
        finally:
            self.in_flight = False
        return AttemptResult(source_status=0, filter_status=0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def layout(tmp_path) -> RunLayout:
    run_layout = RunLayout(base_dir=tmp_path, started_at=_STARTED_AT)
    run_layout.create()
    return run_layout
