"""Core data structures for kpersist."""

from kpersist.models.changes import ChangeType, DiffReport, FieldChange
from kpersist.models.config import FailurePolicy, KPersistConfig
from kpersist.models.events import PodRef, RetrySignal, WatchEventType

__all__ = [
    "ChangeType",
    "DiffReport",
    "FailurePolicy",
    "FieldChange",
    "KPersistConfig",
    "PodRef",
    "RetrySignal",
    "WatchEventType",
]
