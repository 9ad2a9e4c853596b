"""EntityRegistry: the per-stream map from entity identity to its worker.

A registry belongs to exactly one dispatch loop and is only touched from
that loop's task, so every operation is atomic with respect to the events
of its stream without any locking.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class DuplicateEntityError(KeyError):
    """Raised by ``add`` when the identity is already registered."""


class EntityRegistry(Generic[K, V]):
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._entries: dict[K, V] = {}

    def add(self, key: K, entry: V) -> None:
        if key in self._entries:
            raise DuplicateEntityError(f"{self.kind} {key!r} is already registered")
        self._entries[key] = entry

    def get(self, key: K) -> V | None:
        return self._entries.get(key)

    def pop(self, key: K) -> V | None:
        """Remove and return the entry for *key*, or None if absent."""
        return self._entries.pop(key, None)

    def values(self) -> list[V]:
        return list(self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))
