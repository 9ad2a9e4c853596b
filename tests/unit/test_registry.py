"""Tests for the per-stream EntityRegistry."""

from __future__ import annotations

import pytest

from kpersist.collector.registry import DuplicateEntityError, EntityRegistry


class TestEntityRegistry:
    def test_add_get_pop(self) -> None:
        registry: EntityRegistry[str, int] = EntityRegistry("integration")
        registry.add("r1", 1)
        assert "r1" in registry
        assert registry.get("r1") == 1
        assert registry.pop("r1") == 1
        assert "r1" not in registry
        assert len(registry) == 0

    def test_missing_entries(self) -> None:
        registry: EntityRegistry[str, int] = EntityRegistry("pod")
        assert registry.get("nope") is None
        assert registry.pop("nope") is None

    def test_duplicate_add_is_rejected(self) -> None:
        registry: EntityRegistry[str, int] = EntityRegistry("pod")
        registry.add("uid-1", 1)
        with pytest.raises(DuplicateEntityError):
            registry.add("uid-1", 2)
        assert registry.get("uid-1") == 1

    def test_iteration_is_a_snapshot(self) -> None:
        registry: EntityRegistry[str, int] = EntityRegistry("integration")
        registry.add("a", 1)
        registry.add("b", 2)
        for key in registry:
            registry.pop(key)
        assert len(registry) == 0
        assert registry.values() == []
