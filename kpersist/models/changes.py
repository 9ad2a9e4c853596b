"""Data structures produced by the diff engine."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# One element of a path into a JSON document: object key or array index.
PathSegment = str | int

_PLAIN_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class ChangeType(StrEnum):
    """How a node differs between two snapshots."""

    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


_MARKERS = {
    ChangeType.ADDED: "+",
    ChangeType.REMOVED: "-",
    ChangeType.CHANGED: "~",
}


def format_path(path: tuple[PathSegment, ...]) -> str:
    """Render a path as ``spec.containers[0].image``.

    Keys that are not plain identifiers (label keys such as
    ``camel.apache.org/integration``) are rendered in bracket form.
    The empty path (the document root) renders as ``$``.
    """
    if not path:
        return "$"
    parts: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif _PLAIN_KEY.match(segment):
            parts.append(f".{segment}" if parts else segment)
        else:
            parts.append(f"[{json.dumps(segment)}]")
    return "".join(parts)


def _render_value(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


@dataclass(frozen=True)
class FieldChange:
    """A single node that differs between two snapshots.

    ``old_value`` is meaningless for ADDED, ``new_value`` for REMOVED.
    """

    change_type: ChangeType
    path: tuple[PathSegment, ...]
    old_value: Any = None
    new_value: Any = None

    @property
    def field_path(self) -> str:
        return format_path(self.path)

    def render(self) -> str:
        marker = _MARKERS[self.change_type]
        if self.change_type is ChangeType.ADDED:
            return f"{marker} {self.field_path}: {_render_value(self.new_value)}"
        if self.change_type is ChangeType.REMOVED:
            return f"{marker} {self.field_path}: {_render_value(self.old_value)}"
        return (
            f"{marker} {self.field_path}: "
            f"{_render_value(self.old_value)} -> {_render_value(self.new_value)}"
        )


@dataclass(frozen=True)
class DiffReport:
    """Ordered set of changes between two snapshots of one document."""

    changes: tuple[FieldChange, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def render(self) -> str:
        """Deterministic textual rendering, one change per line."""
        if not self.changes:
            return "(no changes)"
        return "\n".join(change.render() for change in self.changes)

    def __len__(self) -> int:
        return len(self.changes)
