"""
Status reporting for the surrounding form UI.

StatusReporter keeps the timestamps and status the engine publishes and turns
them into SaveMetadata snapshots. UnloadGuard is the one side effect: when the
host announces it is about to go away (tab close, window close) and there are
unsaved changes, it asks the host for a blocking confirmation.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol, runtime_checkable

from autosave.status_model import FailureKind, SaveMetadata, SaveStatus

logger = logging.getLogger(__name__)

UNSAVED_CHANGES_MESSAGE = "You have unsaved changes. Are you sure you want to leave?"


def status_text(metadata: SaveMetadata) -> str:
    """Human-readable status line for a status bar."""
    if metadata.status is SaveStatus.SAVING:
        return "Saving..."
    if metadata.status is SaveStatus.SAVED and metadata.last_saved:
        return f"Saved at {metadata.last_saved:%H:%M:%S}"
    if metadata.status is SaveStatus.ERROR:
        text = f"Save failed: {metadata.error_message}"
        return f"{text} (retrying...)" if metadata.retrying else text
    if metadata.status is SaveStatus.CONFLICT:
        return "Conflict detected - please resolve"
    if metadata.status is SaveStatus.IDLE and metadata.has_unsaved_changes:
        if metadata.last_modified:
            return f"Unsaved changes (modified {metadata.last_modified:%H:%M:%S})"
        return "Unsaved changes"
    return ""


def can_save_now(metadata: SaveMetadata) -> bool:
    """Whether a "Save Now" action should be enabled."""
    return (
        metadata.status not in (SaveStatus.SAVING, SaveStatus.CONFLICT)
        and metadata.has_unsaved_changes
    )


def can_reset(metadata: SaveMetadata) -> bool:
    """Whether a "Reset" action should be offered."""
    return metadata.has_unsaved_changes


class StatusReporter:
    """
    Mutable status record owned by the engine.

    The engine sets status through the mark_* methods, then calls publish()
    with a fresh snapshot. Listeners only hear about snapshots that differ from
    the previous one.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self.status = SaveStatus.IDLE
        self.last_saved: Optional[datetime] = None
        self.last_modified: Optional[datetime] = None
        self.error_message: Optional[str] = None
        self.failure_kind: Optional[FailureKind] = None
        self._last_published: Optional[SaveMetadata] = None
        self._on_status_changed_callbacks: List[Callable[[SaveMetadata], None]] = []

    def now(self) -> datetime:
        return self._clock()

    # ==================== TRANSITIONS ====================

    def mark_modified(self) -> None:
        self.last_modified = self._clock()
        if self.status is SaveStatus.SAVED:
            self.status = SaveStatus.IDLE

    def mark_saving(self) -> None:
        self.status = SaveStatus.SAVING

    def mark_saved(self) -> None:
        self.status = SaveStatus.SAVED
        self.last_saved = self._clock()
        self.error_message = None
        self.failure_kind = None

    def mark_error(self, message: str, kind: FailureKind) -> None:
        self.status = SaveStatus.ERROR
        self.error_message = message
        self.failure_kind = kind

    def mark_conflict(self) -> None:
        self.status = SaveStatus.CONFLICT
        self.failure_kind = FailureKind.CONFLICT

    def mark_resolved(self) -> None:
        """Conflict settled without a further save."""
        self.status = SaveStatus.SAVED
        self.failure_kind = None
        self.error_message = None

    def mark_idle(self) -> None:
        self.status = SaveStatus.IDLE
        self.error_message = None
        self.failure_kind = None

    def clear(self) -> None:
        self.status = SaveStatus.IDLE
        self.last_saved = None
        self.last_modified = None
        self.error_message = None
        self.failure_kind = None

    # ==================== SNAPSHOTS ====================

    def snapshot(self, *, retry_count: int, has_unsaved_changes: bool, max_retries: int) -> SaveMetadata:
        return SaveMetadata(
            status=self.status,
            last_saved=self.last_saved,
            last_modified=self.last_modified,
            error_message=self.error_message,
            retry_count=retry_count,
            has_unsaved_changes=has_unsaved_changes,
            failure_kind=self.failure_kind,
            max_retries=max_retries,
        )

    def on_status_changed(self, callback: Callable[[SaveMetadata], None]) -> None:
        """Subscribe to status snapshots."""
        if callback not in self._on_status_changed_callbacks:
            self._on_status_changed_callbacks.append(callback)

    def off_status_changed(self, callback: Callable[[SaveMetadata], None]) -> None:
        """Unsubscribe from status snapshots."""
        if callback in self._on_status_changed_callbacks:
            self._on_status_changed_callbacks.remove(callback)

    def publish(self, metadata: SaveMetadata) -> None:
        """Fire status callbacks if metadata changed (best-effort)."""
        if metadata == self._last_published:
            return
        self._last_published = metadata
        logger.debug(f"STATUS: {metadata.status.value} unsaved={metadata.has_unsaved_changes} "
                     f"retries={metadata.retry_count}")
        for callback in list(self._on_status_changed_callbacks):
            try:
                callback(metadata)
            except Exception as e:
                logger.warning(f"Error in status_changed callback: {e}")


@runtime_checkable
class UnloadHost(Protocol):
    """What the embedding application provides for the unload warning."""

    def add_unload_listener(self, listener: Callable[[], bool]) -> None: ...

    def remove_unload_listener(self, listener: Callable[[], bool]) -> None: ...

    def request_confirmation(self, message: str) -> None: ...


class UnloadGuard:
    """Asks the host to confirm leaving while there are unsaved changes.

    The guard is registered and unregistered explicitly; nothing is installed
    globally.
    """

    def __init__(self, has_unsaved_changes: Callable[[], bool], message: str = UNSAVED_CHANGES_MESSAGE):
        self._has_unsaved_changes = has_unsaved_changes
        self.message = message
        self._host: Optional[UnloadHost] = None

    @property
    def attached(self) -> bool:
        return self._host is not None

    def attach(self, host: UnloadHost) -> None:
        if self._host is host:
            return
        self.detach()
        host.add_unload_listener(self.on_before_unload)
        self._host = host
        logger.debug(f"UNLOAD: guard attached to {type(host).__name__}")

    def detach(self) -> None:
        if self._host is None:
            return
        host, self._host = self._host, None
        host.remove_unload_listener(self.on_before_unload)
        logger.debug(f"UNLOAD: guard detached from {type(host).__name__}")

    def on_before_unload(self) -> bool:
        """Host callback. Returns True if the host should block and confirm."""
        if not self._has_unsaved_changes():
            return False
        logger.info("UNLOAD: unsaved changes, requesting confirmation")
        if self._host is not None:
            self._host.request_confirmation(self.message)
        return True
