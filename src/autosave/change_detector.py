"""
Dirtiness and conflict-field detection.

Documents are compared by top-level field only. Values are compared with ``!=``
(structural equality), so nested dicts compare by content, but a nested change
is reported against its top-level field name. Nested diffing is out of scope.
"""

import logging
from dataclasses import fields, is_dataclass
from typing import Any, Dict, Mapping, Set, Tuple

logger = logging.getLogger(__name__)


def is_document(value: Any) -> bool:
    """True for mappings and dataclass instances."""
    return isinstance(value, Mapping) or (is_dataclass(value) and not isinstance(value, type))


def fields_of(document: Any) -> Dict[str, Any]:
    """Top-level fields of a mapping or dataclass document."""
    if isinstance(document, Mapping):
        return dict(document)
    if is_document(document):
        return {f.name: getattr(document, f.name) for f in fields(document)}
    raise TypeError(f"Documents must be mappings or dataclass instances, got {type(document).__name__}")


def has_changes(current: Any, baseline: Any) -> bool:
    """True if current differs structurally from baseline."""
    return current != baseline


def changed_fields(current: Any, baseline: Any) -> Set[str]:
    """Fields whose value differs, including fields present on one side only."""
    current_fields = fields_of(current)
    baseline_fields = fields_of(baseline)
    changed = set()
    for k in (current_fields.keys() | baseline_fields.keys()):
        if k not in current_fields or k not in baseline_fields:
            changed.add(k)
        elif current_fields[k] != baseline_fields[k]:
            changed.add(k)
    return changed


def find_conflict_fields(local: Any, server: Any) -> Tuple[str, ...]:
    """Fields of the local document that disagree with the server copy.

    Walks the local document's keys in order; a key the server lacks counts
    as conflicting. Keys present only on the server are not reported.
    """
    if local == server:
        return ()
    local_fields = fields_of(local)
    server_fields = fields_of(server)
    missing = object()
    conflicts = tuple(
        k for k, v in local_fields.items()
        if server_fields.get(k, missing) is missing or server_fields[k] != v
    )
    logger.debug(f"CONFLICT: fields={conflicts}")
    return conflicts
