"""ResourceWatcher: one ResourceChangeTracker per custom resource.

ADDED     -- start a tracker with its own inbox; it writes the initial file
             once the previous owner of the same file, if any, is done.
MODIFIED  -- send the snapshot to the tracker's inbox (may wait while the
             inbox is full; that is the stream's backpressure).
DELETED   -- close the inbox and forget the resource; the tracker drains
             what is left and exits.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from kpersist.collector.registry import EntityRegistry
from kpersist.collector.watcher import BaseWatcher, ListCall, WorkerFailureHandler
from kpersist.errors import InboxClosedError
from kpersist.ledger.inbox import DEFAULT_CAPACITY, Inbox
from kpersist.ledger.tracker import ResourceChangeTracker
from kpersist.models.config import ResourceWatchConfig
from kpersist.models.events import object_name
from kpersist.storage.layout import RESOURCE_KIND, RunLayout

TrackerFactory = Callable[[str, Path], ResourceChangeTracker]


@dataclass
class TrackedResource:
    """Registry entry for one custom resource."""

    name: str
    inbox: Inbox
    task: asyncio.Task[None]

    @property
    def failed(self) -> bool:
        return self.task.done() and not self.task.cancelled() and self.task.exception() is not None


class ResourceWatcher(BaseWatcher):
    """Dispatch loop for the custom resource watch stream.

    Args:
        api:               kubernetes_asyncio CustomObjectsApi.
        config:            Group / version / plural and optional namespace.
        layout:            Run layout providing the per-resource file names.
        inbox_capacity:    Snapshots a tracker may lag behind the stream.
        on_worker_failure: Failure policy hook, see kpersist.app.
        tracker_factory:   Builds the tracker for a resource.
    """

    stream_name = "resources"
    entity_kind = RESOURCE_KIND

    def __init__(
        self,
        api: Any,
        config: ResourceWatchConfig,
        layout: RunLayout,
        inbox_capacity: int = DEFAULT_CAPACITY,
        on_worker_failure: WorkerFailureHandler | None = None,
        tracker_factory: TrackerFactory = ResourceChangeTracker,
    ) -> None:
        super().__init__(timeout_seconds=config.timeout_seconds, on_worker_failure=on_worker_failure)
        self._api = api
        self._config = config
        self._layout = layout
        self._inbox_capacity = inbox_capacity
        self._tracker_factory = tracker_factory
        self.registry: EntityRegistry[str, TrackedResource] = EntityRegistry(RESOURCE_KIND)

    def _list_call(self) -> ListCall:
        cfg = self._config
        if cfg.namespace:
            return (
                self._api.list_namespaced_custom_object,
                (cfg.group, cfg.version, cfg.namespace, cfg.plural),
                {},
            )
        return self._api.list_cluster_custom_object, (cfg.group, cfg.version, cfg.plural), {}

    def _entity_key(self, raw: dict[str, Any]) -> str:
        return object_name(raw)

    async def _on_added(self, raw: dict[str, Any]) -> None:
        name = object_name(raw)
        if not name:
            self._log.warning("added resource without a name, ignoring")
            return

        existing = self.registry.get(name)
        if existing is not None:
            self._log.info("added event for tracked resource, recording as modification", resource=name)
            await self._forward(existing, raw)
            return

        tracker = self._tracker_factory(name, self._layout.resource_file(name))
        inbox = Inbox(self._inbox_capacity)
        task = self._spawn_worker(name, tracker.path, tracker.run(inbox, raw))
        # A tracker that dies must not leave the dispatcher waiting on its inbox.
        task.add_done_callback(lambda _t: inbox.close())
        self.registry.add(name, TrackedResource(name=name, inbox=inbox, task=task))
        self._log.info("tracking resource", resource=name, path=str(tracker.path))

    async def _on_modified(self, raw: dict[str, Any]) -> None:
        name = object_name(raw)
        entry = self.registry.get(name)
        if entry is None:
            self._log.warning("resource modified that wasn't previously known", resource=name)
            return
        await self._forward(entry, raw)

    async def _on_deleted(self, raw: dict[str, Any]) -> None:
        name = object_name(raw)
        if name not in self.registry:
            self._log.warning("resource deleted that wasn't previously known", resource=name)
            return
        await self._forget(name)

    async def _forget(self, key: str) -> None:
        entry = self.registry.pop(key)
        if entry is None:
            return
        entry.inbox.close()
        self._log.info("resource deleted, closing tracker", resource=key)

    async def _forward(self, entry: TrackedResource, raw: dict[str, Any]) -> None:
        if entry.task.done():
            self._log.warning("tracker no longer running, dropping snapshot", resource=entry.name)
            return
        try:
            await entry.inbox.put(raw)
        except InboxClosedError:
            self._log.warning("tracker stopped while waiting, dropping snapshot", resource=entry.name)

    async def _stop_workers(self) -> None:
        # Trackers drain what was already sent before exiting.
        for entry in self.registry.values():
            entry.inbox.close()
        await self._join_workers()
