"""Integration tests for the application root and the watch loop.

Covers the worker-failure policy, startup and shutdown, and how the watch
loop reconnects, relists and fails on its first connection.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from kpersist.app import KPersistApp, _ComponentError, main
from kpersist.collector.registry import EntityRegistry
from kpersist.collector.watcher import BaseWatcher, ListCall
from kpersist.errors import TrackerError, WatchSetupError
from kpersist.models.config import FailurePolicy, KPersistConfig, OutputConfig, TrackerConfig
from kpersist.models.events import object_name

from tests.conftest import make_resource, wait_until, watch_event

pytestmark = pytest.mark.integration


class ScriptedWatcher(BaseWatcher):
    """A watcher whose successive watch requests follow a script.

    Each step is either a list of events delivered before the stream closes
    or an exception raised when the stream is opened.  Once the script is
    exhausted the stream stays open until the watcher is stopped.
    """

    stream_name = "scripted"
    entity_kind = "thing"

    def __init__(self, steps: list[Any], listing: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.steps = list(steps)
        self.listing = listing or {"metadata": {}, "items": []}
        self.registry: EntityRegistry[str, str] = EntityRegistry("thing")
        self.forgotten: list[str] = []
        self.seen: list[tuple[str, str]] = []
        self.opened_with: list[str] = []

    def _list_call(self) -> ListCall:
        async def _list() -> dict[str, Any]:
            return self.listing

        return _list, (), {}

    def _entity_key(self, raw: dict[str, Any]) -> str:
        return object_name(raw)

    async def _forget(self, key: str) -> None:
        self.registry.pop(key)
        self.forgotten.append(key)

    async def _on_added(self, raw: dict[str, Any]) -> None:
        self.seen.append(("ADDED", object_name(raw)))
        if object_name(raw) not in self.registry:
            self.registry.add(object_name(raw), "worker")

    async def _on_modified(self, raw: dict[str, Any]) -> None:
        self.seen.append(("MODIFIED", object_name(raw)))

    async def _on_deleted(self, raw: dict[str, Any]) -> None:
        self.seen.append(("DELETED", object_name(raw)))

    async def _stop_workers(self) -> None:
        await self._join_workers()

    async def _open_stream(self):
        self.opened_with.append(self.resource_version)
        if not self.steps:
            await asyncio.Event().wait()
        step = self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        for event in step:
            yield event


def _app(tmp_path, policy: FailurePolicy = FailurePolicy.FATAL) -> KPersistApp:
    config = KPersistConfig(
        output=OutputConfig(base_dir=str(tmp_path)),
        tracker=TrackerConfig(failure_policy=policy),
    )
    return KPersistApp(config)


# ---------------------------------------------------------------------------
# Failure policy
# ---------------------------------------------------------------------------


class TestFailurePolicy:
    async def test_fatal_policy_stops_process(self, tmp_path) -> None:
        app = _app(tmp_path)
        exc = TrackerError("r1", OSError("disk full"))

        app.handle_worker_failure("integration", "r1", exc)

        assert app.fatal_error is exc
        await asyncio.wait_for(app.wait_for_shutdown(), timeout=0.5)

    async def test_degrade_policy_keeps_running(self, tmp_path) -> None:
        app = _app(tmp_path, FailurePolicy.DEGRADE)

        app.handle_worker_failure("integration", "r1", TrackerError("r1", OSError("disk full")))

        assert app.fatal_error is None
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(app.wait_for_shutdown(), timeout=0.05)

    async def test_pod_failures_are_never_fatal(self, tmp_path) -> None:
        app = _app(tmp_path)

        app.handle_worker_failure("pod", "my-app-1", RuntimeError("boom"))

        assert app.fatal_error is None

    async def test_first_failure_is_kept(self, tmp_path) -> None:
        app = _app(tmp_path)
        first = TrackerError("a", OSError("one"))
        app.handle_worker_failure("integration", "a", first)
        app.handle_worker_failure("integration", "b", TrackerError("b", OSError("two")))
        assert app.fatal_error is first

    async def test_watch_setup_failure_is_fatal(self, tmp_path) -> None:
        app = _app(tmp_path, FailurePolicy.DEGRADE)
        watcher = ScriptedWatcher([aiohttp.ClientConnectionError("refused")])
        await watcher.start()
        app._watch_for_setup_failure(watcher)

        await asyncio.wait_for(app.wait_for_shutdown(), timeout=1.0)

        assert isinstance(app.fatal_error, WatchSetupError)
        assert app.fatal_error.stream == "scripted"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_stop_without_start_is_safe(self, tmp_path) -> None:
        app = _app(tmp_path)
        await app.stop()
        await app.stop()

    async def test_start_creates_run_directory(self, tmp_path) -> None:
        app = _app(tmp_path)
        with (
            patch.object(app, "_start_k8s_client", AsyncMock()),
            patch.object(app, "_start_resource_watcher", AsyncMock()),
            patch.object(app, "_start_pod_watcher", AsyncMock()),
        ):
            await app.start()

        assert app.layout is not None
        assert app.layout.run_dir.is_dir()
        assert app.layout.run_dir.parent == tmp_path
        await app.stop()

    async def test_startup_failure_exits_non_zero(self, tmp_path) -> None:
        config = KPersistConfig(output=OutputConfig(base_dir=str(tmp_path)))
        failing = AsyncMock(side_effect=_ComponentError("k8s_client", RuntimeError("no cluster")))

        with patch.object(KPersistApp, "_start_k8s_client", failing), pytest.raises(SystemExit) as exc_info:
            await main(config)

        assert exc_info.value.code == 1
        assert list(tmp_path.iterdir()) == []


# ---------------------------------------------------------------------------
# Watch loop
# ---------------------------------------------------------------------------


class TestWatchLoop:
    async def test_first_connection_failure_is_a_setup_error(self) -> None:
        watcher = ScriptedWatcher([ApiException(status=403, reason="Forbidden")])

        with pytest.raises(WatchSetupError) as exc_info:
            await watcher.run()

        assert isinstance(exc_info.value.cause, ApiException)

    async def test_resumes_from_last_resource_version(self) -> None:
        watcher = ScriptedWatcher(
            [
                [watch_event("ADDED", make_resource("r1", resource_version="5"))],
                [watch_event("MODIFIED", make_resource("r1", resource_version="6"))],
            ]
        )
        await watcher.start()
        await wait_until(lambda: len(watcher.opened_with) == 3)
        await watcher.stop()

        assert watcher.opened_with == ["", "5", "6"]
        assert watcher.seen == [("ADDED", "r1"), ("MODIFIED", "r1")]

    async def test_gone_relists_and_resumes_from_list_version(self) -> None:
        watcher = ScriptedWatcher(
            [
                [
                    watch_event("ADDED", make_resource("r1", resource_version="4")),
                    watch_event("ADDED", make_resource("r2", resource_version="5")),
                ],
                ApiException(status=410, reason="Gone"),
                [watch_event("MODIFIED", make_resource("r2", resource_version="9"))],
            ],
            listing={"metadata": {"resourceVersion": "8"}, "items": [make_resource("r2", resource_version="7")]},
        )
        await watcher.start()
        await wait_until(lambda: len(watcher.opened_with) == 4)
        await watcher.stop()

        assert watcher.opened_with == ["", "5", "8", "9"]
        assert watcher.forgotten == ["r1"]
        assert list(watcher.registry) == ["r2"]
        assert watcher.seen[-2:] == [("ADDED", "r2"), ("MODIFIED", "r2")]

    async def test_failed_relist_is_retried_after_backoff(self, monkeypatch) -> None:
        monkeypatch.setattr("kpersist.collector.watcher._INITIAL_BACKOFF_SECONDS", 0.0)
        watcher = ScriptedWatcher(
            [[watch_event("ADDED", make_resource("r1"))], ApiException(status=410, reason="Gone")],
            listing={"metadata": {"resourceVersion": "3"}, "items": []},
        )
        calls = 0
        real_relist = watcher.relist

        async def flaky_relist() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise aiohttp.ClientConnectionError("refused")
            await real_relist()

        watcher.relist = flaky_relist  # type: ignore[method-assign]
        await watcher.start()
        await wait_until(lambda: len(watcher.opened_with) == 3)
        await watcher.stop()

        assert calls == 2
        assert watcher.forgotten == ["r1"]
        assert watcher.opened_with[-1] == "3"

    async def test_reconnects_after_transient_failure(self, monkeypatch) -> None:
        monkeypatch.setattr("kpersist.collector.watcher._INITIAL_BACKOFF_SECONDS", 0.0)
        watcher = ScriptedWatcher(
            [
                [watch_event("ADDED", make_resource("r1"))],
                aiohttp.ClientPayloadError("connection reset"),
                [watch_event("DELETED", make_resource("r1"))],
            ]
        )
        await watcher.start()
        await wait_until(lambda: len(watcher.seen) == 2)
        await watcher.stop()

        assert watcher.seen == [("ADDED", "r1"), ("DELETED", "r1")]

    async def test_unsupported_events_do_not_stop_the_loop(self) -> None:
        watcher = ScriptedWatcher(
            [
                [
                    watch_event("ERROR", {"code": 500}),
                    watch_event("ADDED", make_resource("r1")),
                ],
            ]
        )
        await watcher.start()
        await wait_until(lambda: len(watcher.seen) == 1)
        await watcher.stop()
        assert watcher.task is None
