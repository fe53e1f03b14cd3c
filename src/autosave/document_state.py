"""
DocumentState: the editable document and its last-persisted baseline.

This class holds form state independently of any UI or timer.
Lifecycle: created with the engine from an initial value, mutated by edits,
re-baselined by successful saves and conflict resolutions, discarded on reset.
"""
import copy
import dataclasses
import logging
from dataclasses import is_dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from autosave.change_detector import changed_fields, fields_of, has_changes

logger = logging.getLogger(__name__)


def _normalize(document: Any) -> Any:
    """Private deep copy; mappings become plain dicts."""
    if is_dataclass(document) and not isinstance(document, type):
        return copy.deepcopy(document)
    return copy.deepcopy(fields_of(document))


def _merge(document: Any, updates: Mapping[str, Any]) -> Any:
    """Shallow-merge updates into a document, returning a new document."""
    updates = copy.deepcopy(dict(updates))
    if is_dataclass(document):
        # Unknown field names raise TypeError
        return dataclasses.replace(document, **updates)
    return {**document, **updates}


def freeze_document(document: Any) -> Any:
    """Read-only snapshot handed to callers."""
    if isinstance(document, dict):
        return MappingProxyType(copy.deepcopy(document))
    return copy.deepcopy(document)


class DocumentState:
    """
    Owns the live document and the saved baseline.

    Core Attributes:
    - _document: Mutable working copy (what the user sees)
    - _baseline: Value at last successful save (sole diff reference)
    - _initial: Value the engine was created with (restored by reset())

    Everything else is derived:
    - dirty_fields → per-field _document != _baseline
    - has_unsaved_changes → _document != _baseline
    """

    def __init__(self, initial: Any):
        self._initial = _normalize(initial)
        self._document = _normalize(initial)
        self._baseline = _normalize(initial)
        self._dirty_fields: Set[str] = set()

        # Callbacks receive the set of fields whose dirty status flipped
        self._on_state_changed_callbacks: List[Callable[[Set[str]], None]] = []

    # ==================== SNAPSHOTS ====================

    @property
    def document(self) -> Any:
        return freeze_document(self._document)

    @property
    def baseline(self) -> Any:
        return freeze_document(self._baseline)

    @property
    def initial(self) -> Any:
        return freeze_document(self._initial)

    def sample(self) -> Any:
        """Private copy of the current document for a save attempt."""
        return copy.deepcopy(self._document)

    def get_field(self, key: str) -> Any:
        return copy.deepcopy(fields_of(self._document)[key])

    def differs_from(self, document: Any) -> bool:
        return has_changes(self._document, document)

    @property
    def has_unsaved_changes(self) -> bool:
        return has_changes(self._document, self._baseline)

    @property
    def dirty_fields(self) -> Set[str]:
        """Fields where document != baseline."""
        return set(self._dirty_fields)

    # ==================== SUBSCRIPTIONS ====================

    def on_state_changed(self, callback: Callable[[Set[str]], None]) -> None:
        """Subscribe to dirty-status changes."""
        if callback not in self._on_state_changed_callbacks:
            self._on_state_changed_callbacks.append(callback)

    def off_state_changed(self, callback: Callable[[Set[str]], None]) -> None:
        """Unsubscribe from dirty-status changes."""
        if callback in self._on_state_changed_callbacks:
            self._on_state_changed_callbacks.remove(callback)

    def _sync_dirty_fields(self) -> Set[str]:
        """Single point where the dirty set is recomputed and notified.

        Returns fields that either became dirty OR became clean.
        """
        new_dirty = changed_fields(self._document, self._baseline)
        flipped = new_dirty ^ self._dirty_fields
        self._dirty_fields = new_dirty
        if flipped:
            logger.debug(f"DIRTY: flipped={flipped} dirty={new_dirty}")
            for callback in list(self._on_state_changed_callbacks):
                try:
                    callback(flipped)
                except Exception as e:
                    logger.warning(f"Error in state_changed callback: {e}")
        return flipped

    # ==================== MUTATION ====================

    def update(self, partial: Mapping[str, Any]) -> Set[str]:
        """Shallow-merge partial into the document.

        Returns:
            Fields whose value actually changed (empty for a no-op edit).
        """
        before = fields_of(self._document)
        self._document = _merge(self._document, partial)
        after = fields_of(self._document)
        changed = {k for k in partial if before.get(k) != after.get(k) or k not in before}
        self._sync_dirty_fields()
        return changed

    def set_field(self, key: str, value: Any) -> Set[str]:
        return self.update({key: value})

    def mark_saved(self, sent: Any, server_document: Optional[Any] = None) -> None:
        """Record a successful save of `sent`.

        The server copy (if returned) becomes the baseline. Server-side
        normalisation is rebased onto the live document: fields edited since
        `sent` was sampled keep their local value, all others take the server's.
        """
        persisted = _normalize(server_document if server_document is not None else sent)
        if self._document == sent:
            self._document = copy.deepcopy(persisted)
        elif server_document is not None and persisted != sent:
            edited = changed_fields(self._document, sent)
            current = fields_of(self._document)
            local_edits: Dict[str, Any] = {k: current[k] for k in edited if k in current}
            logger.debug(f"SAVE: rebasing server copy under local edits {sorted(local_edits)}")
            self._document = _merge(persisted, local_edits)
        self._baseline = persisted
        self._sync_dirty_fields()

    def accept(self, document: Any) -> None:
        """Adopt document as both live value and baseline."""
        self._document = _normalize(document)
        self._baseline = _normalize(document)
        self._sync_dirty_fields()

    def rebase(self, baseline: Any, document: Optional[Any] = None) -> None:
        """Move the baseline, optionally replacing the live document."""
        self._baseline = _normalize(baseline)
        if document is not None:
            self._document = _normalize(document)
        self._sync_dirty_fields()

    def reset(self) -> None:
        """Restore document and baseline to the initial value."""
        self._document = copy.deepcopy(self._initial)
        self._baseline = copy.deepcopy(self._initial)
        self._sync_dirty_fields()
