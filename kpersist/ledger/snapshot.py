"""Snapshot preparation before anything is recorded."""

from __future__ import annotations

import json
from typing import Any

from kpersist.errors import MalformedInputError

# Metadata written by the API server on every apply; it changes constantly
# and carries no information about the entity itself.
EPHEMERAL_METADATA_FIELDS = ("managedFields",)


def strip_ephemeral(obj: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *obj* without control-plane bookkeeping fields.

    The input is never mutated: the same object may still be referenced by
    the watch machinery.
    """
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        return dict(obj)
    cleaned = dict(obj)
    cleaned["metadata"] = {k: v for k, v in metadata.items() if k not in EPHEMERAL_METADATA_FIELDS}
    return cleaned


def pretty_json(obj: Any) -> str:
    """Serialise *obj* as tab-indented JSON, preserving member order."""
    try:
        return json.dumps(obj, indent="\t", ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(f"Snapshot cannot be serialised as JSON: {exc}") from exc
