"""Watch event data structures and enumerations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class WatchEventType(StrEnum):
    """Event kinds delivered by a Kubernetes watch stream."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


class RetrySignal(StrEnum):
    """Signal carried by a pod follower's retry gate."""

    RETRY = "retry"
    STOP = "stop"


@dataclass(frozen=True)
class PodRef:
    """Cluster-assigned identity of a watched pod. Immutable."""

    uid: str
    name: str
    namespace: str

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> PodRef:
        """Build a PodRef from a raw pod object as delivered by the watch."""
        metadata = raw.get("metadata") or {}
        return cls(
            uid=str(metadata.get("uid", "")),
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace", "")),
        )


def object_name(raw: dict[str, Any]) -> str:
    """Return ``metadata.name`` of a raw object, or an empty string."""
    metadata = raw.get("metadata") if isinstance(raw, dict) else None
    if not isinstance(metadata, dict):
        return ""
    return str(metadata.get("name", ""))


def resource_version(raw: dict[str, Any]) -> str:
    """Return ``metadata.resourceVersion`` of a raw object, or an empty string."""
    metadata = raw.get("metadata") if isinstance(raw, dict) else None
    if not isinstance(metadata, dict):
        return ""
    return str(metadata.get("resourceVersion", ""))
