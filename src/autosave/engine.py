"""
AutoSaveEngine: owns one editable document and keeps it persisted.

Lifecycle: created by the form that owns the document, lives until dispose().
It does not depend on any rendering cycle; timers are armed and cleared only
by the engine itself.

Save attempt, start to finish:
1. A trigger (debounce, periodic, retry, manual, conflict resolution) calls
   _start_save() synchronously.
2. _start_save() checks the gates, takes the in-flight guard and samples the
   document. The value sent is the value at attempt start, never at schedule
   time.
3. _run_save() awaits the persistence client. This is the only suspension
   point. The guard is released on every exit path; the task's done callback
   also releases it when the task is cancelled before it ever runs.
4. The result is routed to the document state, the retry controller or the
   conflict resolver, unless reset()/dispose() happened meanwhile, in which
   case it is discarded.
"""
import functools
import itertools
import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Set, Union

from autosave.config import AutoSaveConfig, get_current_config
from autosave.conflict import ConflictResolver, ResolutionAction
from autosave.document_state import DocumentState, freeze_document
from autosave.persistence import (
    Conflict,
    Failure,
    PersistenceClient,
    PersistFn,
    SaveResult,
    Success,
    as_persist_fn,
    call_persist,
)
from autosave.retry import RetryController
from autosave.scheduler import SaveScheduler
from autosave.status import (
    StatusReporter,
    UnloadGuard,
    UnloadHost,
    can_reset,
    can_save_now,
    status_text,
)
from autosave.status_model import ConflictCase, FailureKind, SaveMetadata, SaveStatus
from autosave.timers import AsyncioTimerFacility, TimerFacility

logger = logging.getLogger(__name__)


class AutoSaveEngine:
    """
    Auto-save and conflict-resolution engine for one form document.

    Args:
        initial: Initial document (mapping or dataclass instance); also the
                 value reset() returns to.
        persist: Persistence client, either a callable or an object with
                 persist(document). May be sync or async.
        config: AutoSaveConfig, a partial mapping of settings, or None for
                the current scoped config (see config_context()).
        timers: Scheduling facility. Defaults to the running asyncio loop,
                so the default engine must be created on a running loop.
        clock: Timestamp source for lastSaved/lastModified.
        unload_host: Optional host to register the unsaved-changes warning with.

    Usage:
        engine = AutoSaveEngine({'title': ''}, api.save_risk)
        engine.set_field('title', 'Vendor outage')   # saved ~2s later
        ...
        engine.dispose()
    """

    def __init__(
        self,
        initial: Any,
        persist: Union[PersistFn, PersistenceClient],
        config: Union[AutoSaveConfig, Mapping[str, Any], None] = None,
        *,
        timers: Optional[TimerFacility] = None,
        clock: Callable[[], datetime] = datetime.now,
        unload_host: Optional[UnloadHost] = None,
    ):
        if config is None:
            config = get_current_config()
        elif not isinstance(config, AutoSaveConfig):
            config = AutoSaveConfig.from_mapping(config, base=get_current_config())
        self.config: AutoSaveConfig = config

        self._persist = as_persist_fn(persist)
        self._timers = timers if timers is not None else AsyncioTimerFacility()

        # === Components ===
        self._state = DocumentState(initial)
        self._retry = RetryController(config.max_retries, config.retry_delay_ms)
        self._conflicts = ConflictResolver(clock)
        self._reporter = StatusReporter(clock)
        self._scheduler = SaveScheduler(self._timers, config, self._request_save)
        self._unload_guard = UnloadGuard(lambda: self._state.has_unsaved_changes)

        # === Lifecycle ===
        self._alive = True
        # Bumped by reset(); results from an older generation are discarded
        self._generation = 0
        # Save tasks still running, and the attempt that currently owns the guard
        self._tasks: Set[Any] = set()
        self._attempts = itertools.count(1)
        self._current_attempt = 0

        self._on_document_changed_callbacks: List[Callable[[Any], None]] = []

        if unload_host is not None:
            self._unload_guard.attach(unload_host)
        self._scheduler.start()

    # ==================== READ-ONLY VIEW ====================

    @property
    def document(self) -> Any:
        """Immutable snapshot of the current document."""
        return self._state.document

    @property
    def baseline(self) -> Any:
        """Immutable snapshot of the last persisted document."""
        return self._state.baseline

    def get_field(self, key: str) -> Any:
        return self._state.get_field(key)

    @property
    def status(self) -> SaveMetadata:
        return self._reporter.snapshot(
            retry_count=self._retry.retry_count,
            has_unsaved_changes=self._state.has_unsaved_changes,
            max_retries=self.config.max_retries,
        )

    @property
    def conflict(self) -> Optional[ConflictCase]:
        return self._conflicts.case

    @property
    def has_unsaved_changes(self) -> bool:
        return self._state.has_unsaved_changes

    @property
    def dirty_fields(self) -> Set[str]:
        return self._state.dirty_fields

    @property
    def is_saving(self) -> bool:
        return self._scheduler.in_flight

    @property
    def is_disposed(self) -> bool:
        return not self._alive

    @property
    def status_text(self) -> str:
        return status_text(self.status)

    @property
    def can_save_now(self) -> bool:
        return can_save_now(self.status)

    @property
    def can_reset(self) -> bool:
        return can_reset(self.status)

    # ==================== SUBSCRIPTIONS ====================

    def on_status_changed(self, callback: Callable[[SaveMetadata], None]) -> None:
        self._reporter.on_status_changed(callback)

    def off_status_changed(self, callback: Callable[[SaveMetadata], None]) -> None:
        self._reporter.off_status_changed(callback)

    def on_document_changed(self, callback: Callable[[Any], None]) -> None:
        """Subscribe to document changes; callback receives a read-only snapshot."""
        if callback not in self._on_document_changed_callbacks:
            self._on_document_changed_callbacks.append(callback)

    def off_document_changed(self, callback: Callable[[Any], None]) -> None:
        if callback in self._on_document_changed_callbacks:
            self._on_document_changed_callbacks.remove(callback)

    def _notify_document_changed(self) -> None:
        if not self._on_document_changed_callbacks:
            return
        snapshot = self._state.document
        for callback in list(self._on_document_changed_callbacks):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"Error in document_changed callback: {e}")

    def _publish(self) -> None:
        self._reporter.publish(self.status)

    # ==================== EDITING ====================

    def update(self, partial: Mapping[str, Any]) -> None:
        """Shallow-merge fields into the document."""
        self._ensure_alive()
        changed = self._state.update(partial)
        if not changed:
            return
        if self._state.has_unsaved_changes:
            self._reporter.mark_modified()
        self._scheduler.touch()
        self._notify_document_changed()
        self._publish()

    def set_field(self, key: str, value: Any) -> None:
        self.update({key: value})

    def reset(self) -> None:
        """Discard edits and return to the initial document.

        Clears status, metadata, retries and any open conflict. A save already
        in flight is not cancelled; its result will be ignored.
        """
        self._ensure_alive()
        self._generation += 1
        self._scheduler.cancel_pending()
        self._state.reset()
        self._retry.reset()
        self._conflicts.clear()
        self._reporter.clear()
        logger.info("SAVE: engine reset to initial document")
        self._notify_document_changed()
        self._publish()

    # ==================== SAVING ====================

    async def manual_save(self) -> SaveMetadata:
        """Save immediately, dirty or not, and wait for the outcome.

        Dropped if a save is already in flight; refused while a conflict is
        open. Returns the status after the attempt.
        """
        task = self.save_now()
        if task is not None:
            await task
        return self.status

    def save_now(self, reason: str = 'manual') -> Optional[Any]:
        """Start a forced save without waiting. Returns the task, or None if nothing started."""
        self._ensure_alive()
        if self._conflicts.is_open:
            logger.warning("SAVE: manual save refused, resolve the conflict first")
            return None
        return self._start_save(reason, force=True, manual=True)

    def _request_save(self, reason: str, force: bool) -> None:
        """Scheduler callback (debounce, periodic, retry)."""
        self._start_save(reason, force=force)

    def _start_save(self, reason: str, *, force: bool = False, manual: bool = False) -> Optional[Any]:
        if not self._alive:
            return None
        if self._conflicts.is_open:
            logger.debug(f"SAVE: {reason} blocked by open conflict")
            return None
        if not force and not self._state.has_unsaved_changes:
            logger.debug(f"SAVE: {reason} skipped, nothing to save")
            if reason == 'retry':
                # Edits were reverted while waiting to retry
                self._retry.reset()
                self._reporter.mark_idle()
                self._publish()
            return None
        if not self._scheduler.try_acquire():
            logger.debug(f"SAVE: {reason} dropped, save already in flight")
            return None

        attempt = next(self._attempts)
        self._current_attempt = attempt
        coroutine = None
        try:
            self._scheduler.cancel_retry()
            if manual:
                self._scheduler.release_hold()
            document = self._state.sample()
            coroutine = self._run_save(document, self._generation, reason, force)
            task = self._timers.spawn(coroutine)
        except BaseException:
            if coroutine is not None:
                coroutine.close()
            self._scheduler.release()
            raise

        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_save_done, attempt, self._generation, force))
        self._reporter.mark_saving()
        logger.debug(f"SAVE: {reason} attempt started")
        self._publish()
        return task

    async def _run_save(self, document: Any, generation: int, reason: str, force: bool) -> SaveResult:
        with self._scheduler.releasing():
            result = await call_persist(self._persist, document)

        if not self._alive or generation != self._generation:
            logger.info(f"SAVE: discarding {type(result).__name__} from {reason} attempt, engine was reset or disposed")
            return result

        if isinstance(result, Success):
            self._on_success(document, result)
        elif isinstance(result, Conflict):
            self._on_conflict(result)
        else:
            self._on_failure(result, force)
        self._publish()
        return result

    def _on_save_done(self, attempt: int, generation: int, force: bool, task: Any) -> None:
        """Done callback for every save task, including ones cancelled before their first step."""
        self._tasks.discard(task)
        if attempt == self._current_attempt:
            # _run_save releases on normal exits; this covers a coroutine that never ran
            self._scheduler.release()
        current = self._alive and generation == self._generation

        if task.cancelled():
            logger.info("SAVE: attempt cancelled before it settled")
            if current and self._reporter.status is SaveStatus.SAVING:
                self._reporter.mark_idle()
                if self._state.has_unsaved_changes:
                    self._scheduler.touch()
                self._publish()
            return

        exc = task.exception()
        if exc is None:
            return
        logger.warning(f"SAVE: save task raised {type(exc).__name__}: {exc}")
        if current and not self._conflicts.is_open:
            self._on_failure(Failure(str(exc) or type(exc).__name__), force)
            self._publish()

    def _on_success(self, document: Any, result: Success) -> None:
        had_edits_in_flight = self._state.differs_from(document)
        self._state.mark_saved(document, result.server_document)
        self._retry.reset()
        self._scheduler.release_hold()
        self._reporter.mark_saved()
        logger.info("SAVE: succeeded")
        if self._state.has_unsaved_changes:
            # Edits landed while in flight and their debounce was dropped
            self._scheduler.touch()
        if result.server_document is not None or had_edits_in_flight:
            self._notify_document_changed()

    def _on_conflict(self, result: Conflict) -> None:
        self._conflicts.open(
            local=self._state.document,
            server=freeze_document(result.server_document),
        )
        self._reporter.mark_conflict()
        self._scheduler.suspend()

    def _on_failure(self, result: Failure, force: bool) -> None:
        if self._retry.record_failure():
            self._reporter.mark_error(result.error_message, FailureKind.TRANSIENT)
            self._scheduler.schedule_retry(force)
        else:
            self._reporter.mark_error(result.error_message, FailureKind.EXHAUSTED)
            self._scheduler.hold()

    # ==================== CONFLICTS ====================

    def resolve_conflict(
        self,
        action: Union[ResolutionAction, str],
        merged_document: Optional[Any] = None,
    ) -> Optional[Any]:
        """Settle the open conflict.

        - 'server': adopt the server copy, no save
        - 'local': save the local document over the server copy
        - 'merge': adopt merged_document as an edit and save it

        Returns the forced save task for 'local'/'merge', else None.
        """
        self._ensure_alive()
        action = ResolutionAction.coerce(action)
        case = self._conflicts.take(action, merged_document)
        self._scheduler.resume()

        if action is ResolutionAction.SERVER:
            self._state.accept(case.server_version)
            self._reporter.mark_resolved()
            self._notify_document_changed()
            self._publish()
            return None

        if action is ResolutionAction.MERGE:
            self._state.rebase(case.server_version, merged_document)
            self._reporter.mark_modified()
            self._notify_document_changed()
        else:
            # The server copy is now known; the local document overrides it
            self._state.rebase(case.server_version)

        task = self._start_save(f"resolve-{action.value}", force=True)
        if task is None:
            # Guard still held by an earlier attempt; let the debounce pick it up
            self._reporter.mark_idle()
            self._scheduler.touch()
            self._publish()
        return task

    # ==================== HOST INTEGRATION ====================

    def attach_unload_host(self, host: UnloadHost) -> None:
        """Register the unsaved-changes warning with the host."""
        self._ensure_alive()
        self._unload_guard.attach(host)

    def detach_unload_host(self) -> None:
        self._unload_guard.detach()

    def before_unload(self) -> bool:
        """Ask the guard directly; True if the host should confirm leaving."""
        return self._unload_guard.on_before_unload()

    # ==================== TEARDOWN ====================

    def dispose(self) -> None:
        """Tear down: clear timers, unregister from the host, ignore late results."""
        if not self._alive:
            return
        self._alive = False
        self._scheduler.dispose()
        self._unload_guard.detach()
        self._conflicts.clear()
        self._on_document_changed_callbacks.clear()
        logger.debug("SAVE: engine disposed")

    def __enter__(self) -> 'AutoSaveEngine':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def _ensure_alive(self) -> None:
        if not self._alive:
            raise RuntimeError("AutoSaveEngine has been disposed")


def engine_factory(
    persist: Union[PersistFn, PersistenceClient],
    config: Union[AutoSaveConfig, Mapping[str, Any], None] = None,
    **engine_kwargs: Any,
) -> Callable[[Any], AutoSaveEngine]:
    """Bind a persistence client and settings once, build engines per form.

    Usage:
        make_engine = engine_factory(api.save_control, {'debounceDelay': 1000})
        engine = make_engine(initial_control)
    """
    def make(initial: Any) -> AutoSaveEngine:
        return AutoSaveEngine(initial, persist, config, **engine_kwargs)
    return make
