"""BaseWatcher: one sequential dispatch loop over a Kubernetes watch stream.

Events are handled one at a time in delivery order; a handler that awaits
(a full tracker inbox) holds up the whole stream, never reorders it.

The loop keeps the last seen ``resourceVersion`` and resumes from it when
the API server closes the watch.  A ``410 Gone`` means events were lost:
the loop lists the collection, forgets every registered entity the list no
longer contains, replays the listed entities as ADDED (subclasses treat a
known entity as modified) and resumes watching from the list's version.
Transient connection errors back off exponentially.  Failing to open the
very first watch is a setup error and is raised as WatchSetupError.

Every worker owns one output file.  When an entity is deleted and a new one
with the same name appears, the new worker does not touch the file before
the previous owner has finished with it.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Coroutine
from pathlib import Path
from typing import Any

import aiohttp
from kubernetes_asyncio import watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from kpersist.collector.registry import EntityRegistry
from kpersist.errors import WatchSetupError
from kpersist.models.events import WatchEventType, resource_version
from kpersist.observability.logging import get_logger

_INITIAL_BACKOFF_SECONDS = 1.0
_MAX_BACKOFF_SECONDS = 30.0

# (entity kind, entity name, exception) -> None
WorkerFailureHandler = Callable[[str, str, BaseException], None]

ListCall = tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]


class BaseWatcher(ABC):
    """Demultiplexes one watch stream into per-entity workers.

    Args:
        timeout_seconds:    Server-side timeout of each watch request.
        on_worker_failure:  Called when a worker task ends with an exception.
    """

    stream_name: str = "base"
    entity_kind: str = "entity"
    registry: EntityRegistry[str, Any]

    def __init__(
        self,
        timeout_seconds: int = 300,
        on_worker_failure: WorkerFailureHandler | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._on_worker_failure = on_worker_failure
        self._resource_version = ""
        self._connected = False
        self._needs_relist = False
        self._task: asyncio.Task[None] | None = None
        self._workers: set[asyncio.Task[None]] = set()
        self._file_owners: dict[Path, asyncio.Task[None]] = {}
        self._log = get_logger(f"collector.{self.stream_name}")

    @property
    def resource_version(self) -> str:
        return self._resource_version

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _list_call(self) -> ListCall:
        """Return the list function and its arguments to watch."""

    @abstractmethod
    def _entity_key(self, raw: dict[str, Any]) -> str:
        """Registry key of a raw object."""

    @abstractmethod
    async def _on_added(self, raw: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _on_modified(self, raw: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _on_deleted(self, raw: dict[str, Any]) -> None: ...

    @abstractmethod
    async def _forget(self, key: str) -> None:
        """Wind down the worker registered under *key* as if it was deleted."""

    @abstractmethod
    async def _stop_workers(self) -> None:
        """Wind down every worker this watcher spawned."""

    def _list_to_dict(self, response: Any) -> dict[str, Any]:
        """Convert a list response into a plain ``{"metadata", "items"}`` dict."""
        return response if isinstance(response, dict) else {}

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, event_type: str, raw: dict[str, Any]) -> None:
        """Route one watch event to the handler for its kind."""
        self._connected = True
        version = resource_version(raw)
        if version:
            self._resource_version = version

        if event_type == WatchEventType.ADDED:
            await self._on_added(raw)
        elif event_type == WatchEventType.MODIFIED:
            await self._on_modified(raw)
        elif event_type == WatchEventType.DELETED:
            await self._on_deleted(raw)
        elif event_type == WatchEventType.BOOKMARK:
            self._log.debug("watch bookmark", resource_version=version)
        else:
            self._log.warning("unsupported watch event", event_type=event_type)

    async def consume(self, events: AsyncIterator[dict[str, Any]]) -> None:
        """Dispatch every event of *events* in order."""
        async for event in events:
            raw = event.get("raw_object")
            if raw is None:
                raw = event.get("object")
            await self.dispatch(str(event.get("type", "")), raw if isinstance(raw, dict) else {})

    async def relist(self) -> None:
        """Bring the registry in line with a fresh list of the collection.

        Entities that are registered but no longer listed were deleted while
        no events were received; they are forgotten.  Every listed entity is
        then dispatched as ADDED, and the watch resumes from the version of
        the list.
        """
        func, args, kwargs = self._list_call()
        listing = self._list_to_dict(await func(*args, **kwargs))
        items = [item for item in listing.get("items") or [] if isinstance(item, dict)]
        listed = {self._entity_key(item) for item in items}

        vanished = [key for key in self.registry if key not in listed]
        for key in vanished:
            self._log.info("entity gone while the watch was interrupted", key=key)
            await self._forget(key)
        for item in items:
            await self.dispatch(WatchEventType.ADDED, item)

        self._resource_version = resource_version(listing)
        self._log.info("relisted", listed=len(items), forgotten=len(vanished))

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------

    async def _open_stream(self) -> AsyncIterator[dict[str, Any]]:
        func, args, kwargs = self._list_call()
        kwargs = dict(kwargs)
        kwargs["allow_watch_bookmarks"] = True
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        w = watch.Watch()
        try:
            async for event in w.stream(func, *args, timeout_seconds=self._timeout_seconds, **kwargs):
                yield event
        finally:
            w.stop()

    async def run(self) -> None:
        """Watch forever, reconnecting as needed, until cancelled."""
        backoff = _INITIAL_BACKOFF_SECONDS
        while True:
            try:
                if self._needs_relist:
                    await self.relist()
                    self._needs_relist = False
                await self.consume(self._open_stream())
                self._connected = True
                backoff = _INITIAL_BACKOFF_SECONDS
                self._log.debug("watch stream closed, reconnecting", resource_version=self._resource_version)
                continue
            except ApiException as exc:
                if exc.status == 410:
                    self._log.info("watch resource version expired, relisting")
                    self._resource_version = ""
                    self._needs_relist = True
                    continue
                error: Exception = exc
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                error = exc

            if not self._connected:
                raise WatchSetupError(self.stream_name, error) from error
            self._log.warning("watch stream failed, backing off", error=str(error), backoff=backoff)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, _MAX_BACKOFF_SECONDS)

    async def start(self) -> None:
        self._task = asyncio.create_task(self.run(), name=f"{self.stream_name}-watch")

    async def wait(self) -> None:
        """Wait for the watch loop to end; re-raises a setup failure."""
        if self._task is not None:
            await self._task

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    async def stop(self) -> None:
        """Stop watching, then wind down the workers."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        await self._stop_workers()
        self._log.info("watcher stopped")

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _spawn_worker(self, name: str, path: Path, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        """Run *coro* as the next owner of *path*.

        The coroutine does not start before the worker that owned *path*
        before it has ended, however it ended.
        """
        previous = self._file_owners.get(path)
        if previous is not None and not previous.done():
            self._log.info("waiting for previous owner of file", entity=name, path=str(path))
        task = asyncio.create_task(_after(previous, coro), name=f"{self.entity_kind}:{name}")
        self._workers.add(task)
        self._file_owners[path] = task
        task.add_done_callback(lambda t: self._worker_done(name, path, t))
        return task

    def _worker_done(self, name: str, path: Path, task: asyncio.Task[None]) -> None:
        self._workers.discard(task)
        if self._file_owners.get(path) is task:
            del self._file_owners[path]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._report_failure(name, exc)

    def _report_failure(self, name: str, exc: BaseException) -> None:
        self._log.error("worker failed", entity_kind=self.entity_kind, entity=name, error=str(exc))
        if self._on_worker_failure is not None:
            self._on_worker_failure(self.entity_kind, name, exc)

    async def _join_workers(self) -> None:
        if self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)


async def _after(previous: asyncio.Task[None] | None, coro: Coroutine[Any, Any, None]) -> None:
    """Await *coro* once *previous* is done; its outcome is not ours to report."""
    try:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
    except BaseException:
        coro.close()
        raise
    await coro
