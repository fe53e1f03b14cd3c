"""
Status, metadata and conflict dataclasses for the auto-save engine.

These are the read-only values handed to the surrounding form UI. The engine
owns the mutable state; everything here is a frozen snapshot of it.

Design Philosophy: Correct by Construction
- Immutable snapshots (frozen dataclass)
- Enum-typed status, no free-form strings
- Direct attribute access (no getattr fallbacks)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class SaveStatus(Enum):
    """Lifecycle status of the editable document."""
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"
    CONFLICT = "conflict"


class FailureKind(Enum):
    """Why the last save attempt did not succeed."""
    TRANSIENT = "transient"  # retryable, handled by RetryController
    CONFLICT = "conflict"  # needs an explicit resolution
    EXHAUSTED = "exhausted"  # retries used up, waits for manual save or a new edit


@dataclass(frozen=True)
class SaveMetadata:
    """Immutable status snapshot exposed to the UI."""
    status: SaveStatus = SaveStatus.IDLE
    last_saved: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    has_unsaved_changes: bool = False
    failure_kind: Optional[FailureKind] = None
    max_retries: int = 3

    @property
    def retrying(self) -> bool:
        """True while an automatic retry is still scheduled."""
        return self.status is SaveStatus.ERROR and self.failure_kind is FailureKind.TRANSIENT

    @property
    def retries_exhausted(self) -> bool:
        return self.failure_kind is FailureKind.EXHAUSTED

    def to_dict(self) -> Dict[str, Any]:
        """Export to JSON-serializable dict."""
        return {
            'status': self.status.value,
            'last_saved': self.last_saved.isoformat() if self.last_saved else None,
            'last_modified': self.last_modified.isoformat() if self.last_modified else None,
            'error_message': self.error_message,
            'retry_count': self.retry_count,
            'has_unsaved_changes': self.has_unsaved_changes,
            'failure_kind': self.failure_kind.value if self.failure_kind else None,
            'retrying': self.retrying,
        }


@dataclass(frozen=True)
class ConflictCase:
    """Outstanding optimistic-concurrency conflict.

    conflict_fields keeps the local document's key order so the UI lists
    fields the same way every time.
    """
    server_version: Any
    local_version: Any
    conflict_fields: Tuple[str, ...]
    detected_at: datetime = field(default_factory=datetime.now)

    def __contains__(self, field_name: str) -> bool:
        return field_name in self.conflict_fields

    def to_dict(self) -> Dict[str, Any]:
        """Export to dict (documents are passed through as-is)."""
        return {
            'server_version': self.server_version,
            'local_version': self.local_version,
            'conflict_fields': list(self.conflict_fields),
            'detected_at': self.detected_at.isoformat(),
        }
