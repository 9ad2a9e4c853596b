"""Collector package for kpersist.

Consumes Kubernetes watch streams and hands every event to the worker that
owns the affected entity.

Submodules
----------
watcher          -- BaseWatcher: sequential dispatch, resume, relist, back-off.
registry         -- EntityRegistry: identity -> worker map owned by one loop.
resource_watcher -- ResourceWatcher: custom resources -> ResourceChangeTracker.
pod_watcher      -- PodWatcher: labelled pods -> PodLogFollower.
"""

from kpersist.collector.pod_watcher import PodWatcher
from kpersist.collector.resource_watcher import ResourceWatcher

__all__ = ["PodWatcher", "ResourceWatcher"]
