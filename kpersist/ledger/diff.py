"""Recursive JSON diff producing FieldChange lists.

Both documents are walked in parallel.  Object members are visited in
sorted key order and array elements by index, so the resulting report is
stable for a given pair of inputs.  Unchanged nodes are never reported:
the size of a report is proportional to the amount of change, not to the
size of the documents.

Arrays are compared positionally.  A longer current array reports the
trailing elements as added, a shorter one reports them as removed.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from typing import Any

from kpersist.errors import MalformedInputError
from kpersist.models.changes import ChangeType, DiffReport, FieldChange, PathSegment, format_path

JSONDocument = Any


def load_document(doc: str | bytes | bytearray | JSONDocument) -> JSONDocument:
    """Return the decoded form of *doc*.

    Text and bytes are parsed as JSON.  Anything else must already be a
    JSON-compatible value (dicts with string keys, lists, strings, numbers,
    booleans and None).

    Raises:
        MalformedInputError: if *doc* is not valid JSON.
    """
    if isinstance(doc, (str, bytes, bytearray)):
        try:
            return json.loads(doc)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedInputError(f"Document is not valid JSON: {exc}") from exc
    _check_json_value(doc, ())
    return doc


def _check_json_value(value: Any, path: tuple[PathSegment, ...]) -> None:
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, Mapping):
        for key, member in value.items():
            if not isinstance(key, str):
                raise MalformedInputError(f"Non-string object key {key!r} at {format_path(path)}")
            _check_json_value(member, (*path, key))
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_json_value(item, (*path, index))
        return
    raise MalformedInputError(f"Value of type {type(value).__name__} at {format_path(path)} is not JSON")


def _same_scalar(prev: Any, curr: Any) -> bool:
    # bool is an int subclass; JSON true and 1 are different values.
    if isinstance(prev, bool) or isinstance(curr, bool):
        return type(prev) is type(curr) and prev == curr
    return bool(prev == curr)


def _walk(prev: Any, curr: Any, path: tuple[PathSegment, ...], out: list[FieldChange]) -> None:
    if isinstance(prev, Mapping) and isinstance(curr, Mapping):
        for key in sorted(set(prev) | set(curr)):
            child = (*path, key)
            if key not in curr:
                out.append(FieldChange(ChangeType.REMOVED, child, old_value=prev[key]))
            elif key not in prev:
                out.append(FieldChange(ChangeType.ADDED, child, new_value=curr[key]))
            else:
                _walk(prev[key], curr[key], child, out)
        return

    if isinstance(prev, (list, tuple)) and isinstance(curr, (list, tuple)):
        common = min(len(prev), len(curr))
        for index in range(common):
            _walk(prev[index], curr[index], (*path, index), out)
        for index in range(common, len(curr)):
            out.append(FieldChange(ChangeType.ADDED, (*path, index), new_value=curr[index]))
        for index in range(common, len(prev)):
            out.append(FieldChange(ChangeType.REMOVED, (*path, index), old_value=prev[index]))
        return

    container_types = (Mapping, list, tuple)
    if isinstance(prev, container_types) or isinstance(curr, container_types):
        # Object replaced by array, or container replaced by a scalar.
        out.append(FieldChange(ChangeType.CHANGED, path, old_value=prev, new_value=curr))
        return

    if not _same_scalar(prev, curr):
        out.append(FieldChange(ChangeType.CHANGED, path, old_value=prev, new_value=curr))


def diff(prev: str | bytes | JSONDocument, curr: str | bytes | JSONDocument) -> DiffReport:
    """Compare two JSON documents and report only what differs.

    Raises:
        MalformedInputError: if either input is not valid JSON.
    """
    prev_doc = load_document(prev)
    curr_doc = load_document(curr)
    changes: list[FieldChange] = []
    _walk(prev_doc, curr_doc, (), changes)
    return DiffReport(changes=tuple(changes))


def _parent(doc: Any, path: tuple[PathSegment, ...]) -> Any:
    node = doc
    for segment in path[:-1]:
        node = node[segment]
    return node


def apply_diff(doc: str | bytes | JSONDocument, report: DiffReport) -> JSONDocument:
    """Re-apply the changes of *report* to a copy of *doc*.

    ``apply_diff(a, diff(a, b)) == b`` holds for any two JSON documents.
    Removals run last and in reverse order so that removing trailing array
    elements never shifts an index that is still to be processed.
    """
    result = copy.deepcopy(load_document(doc))
    removals: list[FieldChange] = []

    for change in report.changes:
        if change.change_type is ChangeType.REMOVED:
            removals.append(change)
            continue
        value = copy.deepcopy(change.new_value)
        if not change.path:
            result = value
            continue
        parent = _parent(result, change.path)
        key = change.path[-1]
        if isinstance(parent, list) and isinstance(key, int) and key == len(parent):
            parent.append(value)
        else:
            parent[key] = value

    for change in reversed(removals):
        parent = _parent(result, change.path)
        del parent[change.path[-1]]

    return result
