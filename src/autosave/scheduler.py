"""
SaveScheduler: decides when a save attempt may start.

Three timers feed one callback, request_save(reason, force):
- debounce: re-armed by every edit, fires after a quiet period
- periodic: fixed interval, independent of edits (safety net for lost debounces)
- retry: one-shot, armed by the engine after a transient failure

A single mutex-backed in-flight guard enforces single-flight. A trigger that
fires while a save is in flight is dropped, not queued: the next trigger reads
whatever the document is at that moment.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Generator, Optional

from autosave.config import AutoSaveConfig
from autosave.timers import TimerFacility

logger = logging.getLogger(__name__)

RequestSave = Callable[[str, bool], None]


class SaveScheduler:
    """
    Owns the debounce, periodic and retry timers plus the in-flight guard.

    Gates on automatic triggers:
    - suspended: a conflict is open; nothing automatic may start
    - held: retries are exhausted; waits for the next edit or a manual save
    - disposed: engine torn down; timers are never re-armed

    Thread safety: callbacks are expected on the host loop's thread. The guard
    is a real lock so check-and-set is atomic even if that is violated.
    """

    def __init__(self, timers: TimerFacility, config: AutoSaveConfig, request_save: RequestSave):
        self._timers = timers
        self._config = config
        self._request_save = request_save

        self._debounce_token: Optional[Any] = None
        self._periodic_token: Optional[Any] = None
        self._retry_token: Optional[Any] = None
        self._retry_force = False

        self._guard = threading.Lock()
        self._suspended = False
        self._held = False
        self._disposed = False

    # ==================== STATE ====================

    @property
    def in_flight(self) -> bool:
        return self._guard.locked()

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def held(self) -> bool:
        return self._held

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def retry_pending(self) -> bool:
        return self._retry_token is not None

    @property
    def debounce_pending(self) -> bool:
        return self._debounce_token is not None

    @property
    def automatic_allowed(self) -> bool:
        """True if debounce/periodic triggers may start a save right now."""
        return (
            not self._disposed
            and self._config.enabled
            and not self._suspended
            and not self._held
        )

    # ==================== SINGLE-FLIGHT GUARD ====================

    def try_acquire(self) -> bool:
        """Take the in-flight guard without blocking. False if a save is running."""
        return self._guard.acquire(blocking=False)

    def release(self) -> None:
        if self._guard.locked():
            self._guard.release()

    @contextmanager
    def releasing(self) -> Generator[None, None, None]:
        """Scope an already-acquired guard; released on every exit path."""
        try:
            yield
        finally:
            self.release()

    # ==================== TRIGGERS ====================

    def start(self) -> None:
        """Arm the periodic timer."""
        if self._disposed or not self._config.enabled or self._periodic_token is not None:
            return
        self._arm_periodic()

    def touch(self) -> None:
        """Register an edit: lift the exhausted hold and re-arm the debounce."""
        if self._disposed:
            return
        if self._held:
            logger.debug("SCHEDULER: edit lifts exhausted-retry hold")
            self._held = False
        if not self._config.enabled or self._suspended:
            return
        self._cancel('_debounce_token')
        self._debounce_token = self._timers.after(self._config.debounce_delay_ms, self._on_debounce)

    def schedule_retry(self, force: bool = False) -> None:
        """Arm a one-shot retry after the fixed retry delay."""
        if self._disposed:
            return
        self._cancel('_retry_token')
        self._retry_force = force
        self._retry_token = self._timers.after(self._config.retry_delay_ms, self._on_retry)

    def cancel_retry(self) -> None:
        self._cancel('_retry_token')

    def _arm_periodic(self) -> None:
        self._periodic_token = self._timers.after(self._config.periodic_interval_ms, self._on_periodic)

    def _on_debounce(self) -> None:
        self._debounce_token = None
        if not self.automatic_allowed:
            logger.debug("SCHEDULER: debounce fired while blocked, ignoring")
            return
        self._request_save('debounce', False)

    def _on_periodic(self) -> None:
        self._periodic_token = None
        if self._disposed:
            return
        self._arm_periodic()
        if not self.automatic_allowed or self.retry_pending or self.in_flight:
            logger.debug("SCHEDULER: periodic tick skipped")
            return
        self._request_save('periodic', False)

    def _on_retry(self) -> None:
        self._retry_token = None
        if self._disposed or self._suspended:
            return
        self._request_save('retry', self._retry_force)

    # ==================== GATES ====================

    def suspend(self) -> None:
        """Block automatic saves until resume() (conflict open)."""
        self._suspended = True
        self._cancel('_debounce_token')
        self._cancel('_retry_token')
        logger.debug("SCHEDULER: suspended")

    def resume(self) -> None:
        self._suspended = False
        logger.debug("SCHEDULER: resumed")

    def hold(self) -> None:
        """Block automatic saves until the next edit or a manual save (retries exhausted)."""
        self._held = True
        self._cancel('_debounce_token')

    def release_hold(self) -> None:
        self._held = False

    # ==================== TEARDOWN ====================

    def cancel_pending(self) -> None:
        """Clear debounce and retry timers and every gate. The periodic timer keeps running."""
        self._cancel('_debounce_token')
        self._cancel('_retry_token')
        self._suspended = False
        self._held = False

    def dispose(self) -> None:
        """Clear every timer and refuse to arm new ones. The guard is left to its holder."""
        self._disposed = True
        self._cancel('_debounce_token')
        self._cancel('_periodic_token')
        self._cancel('_retry_token')
        logger.debug("SCHEDULER: disposed")

    def _cancel(self, attr: str) -> None:
        token = getattr(self, attr)
        if token is not None:
            self._timers.cancel(token)
            setattr(self, attr, None)
