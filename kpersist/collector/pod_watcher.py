"""PodWatcher: one PodLogFollower per pod matching the label selector.

ADDED     -- start a follower with its own retry gate.  A pod recreated under
             the same name waits for the previous follower of that file.
MODIFIED  -- hint the follower's gate; a follower whose log stream ended
             wakes up and streams again.  The payload itself is not used.
DELETED   -- stop the gate and forget the pod; the follower writes its done
             marker and exits.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from kpersist.collector.registry import EntityRegistry
from kpersist.collector.watcher import BaseWatcher, ListCall, WorkerFailureHandler
from kpersist.models.config import PodWatchConfig
from kpersist.models.events import PodRef
from kpersist.podlogs.follower import PodLogFollower
from kpersist.podlogs.gate import RetryGate
from kpersist.podlogs.pipeline import LogStreamPipeline
from kpersist.storage.layout import POD_KIND, RunLayout


@dataclass
class WatchedPod:
    """Registry entry for one pod."""

    pod: PodRef
    gate: RetryGate
    task: asyncio.Task[None]


class PodWatcher(BaseWatcher):
    """Dispatch loop for the pod watch stream, keyed by pod UID."""

    stream_name = "pods"
    entity_kind = POD_KIND

    def __init__(
        self,
        api: Any,
        config: PodWatchConfig,
        layout: RunLayout,
        pipeline: LogStreamPipeline | None = None,
        on_worker_failure: WorkerFailureHandler | None = None,
    ) -> None:
        super().__init__(timeout_seconds=config.timeout_seconds, on_worker_failure=on_worker_failure)
        self._api = api
        self._config = config
        self._layout = layout
        self._pipeline = pipeline or LogStreamPipeline(
            kubectl=config.kubectl,
            pod_running_timeout=config.pod_running_timeout,
        )
        self.registry: EntityRegistry[str, WatchedPod] = EntityRegistry(POD_KIND)

    def _list_call(self) -> ListCall:
        kwargs = {"label_selector": self._config.label_selector}
        if self._config.namespace:
            return self._api.list_namespaced_pod, (self._config.namespace,), kwargs
        return self._api.list_pod_for_all_namespaces, (), kwargs

    def _entity_key(self, raw: dict[str, Any]) -> str:
        return PodRef.from_raw(raw).uid

    def _list_to_dict(self, response: Any) -> dict[str, Any]:
        # CoreV1Api returns a typed V1PodList; the watch delivers plain dicts.
        listing = self._api.api_client.sanitize_for_serialization(response)
        return listing if isinstance(listing, dict) else {}

    async def _on_added(self, raw: dict[str, Any]) -> None:
        pod = PodRef.from_raw(raw)
        if not pod.uid or not pod.name:
            self._log.warning("added pod without uid or name, ignoring", pod=pod.name, uid=pod.uid)
            return

        existing = self.registry.get(pod.uid)
        if existing is not None:
            self._log.info("added event for followed pod, treating as modification", pod=pod.name, uid=pod.uid)
            existing.gate.hint()
            return

        gate = RetryGate()
        follower = PodLogFollower(self._layout.pod_file(pod.name), self._pipeline)
        task = self._spawn_worker(pod.name, follower.path, follower.run(pod, gate))
        self.registry.add(pod.uid, WatchedPod(pod=pod, gate=gate, task=task))
        self._log.info("following pod logs", pod=pod.name, namespace=pod.namespace, uid=pod.uid)

    async def _on_modified(self, raw: dict[str, Any]) -> None:
        pod = PodRef.from_raw(raw)
        entry = self.registry.get(pod.uid)
        if entry is None:
            self._log.warning("pod modified that wasn't previously known", pod=pod.name, uid=pod.uid)
            return
        entry.gate.hint()

    async def _on_deleted(self, raw: dict[str, Any]) -> None:
        pod = PodRef.from_raw(raw)
        if pod.uid not in self.registry:
            self._log.warning("pod deleted that wasn't previously known", pod=pod.name, uid=pod.uid)
            return
        await self._forget(pod.uid)

    async def _forget(self, key: str) -> None:
        entry = self.registry.pop(key)
        if entry is None:
            return
        entry.gate.stop()
        self._log.info("pod deleted, stopping log follower", pod=entry.pod.name, uid=key)

    async def _stop_workers(self) -> None:
        # Cancellation kills the kubectl and filter processes of each follower.
        for task in list(self._workers):
            task.cancel()
        await self._join_workers()
