"""Tests for retry, conflict, status, config and persistence components."""
import asyncio
from dataclasses import dataclass
from datetime import datetime

import pytest

from autosave import (
    AutoSaveConfig,
    Conflict,
    ConflictResolver,
    Failure,
    FailureKind,
    ResolutionAction,
    RetryController,
    SaveMetadata,
    SaveStatus,
    StatusReporter,
    Success,
    UnloadGuard,
    call_persist,
    can_save_now,
    config_context,
    default_merge,
    get_current_config,
    status_text,
)


# ==================== RETRY ====================


def test_retry_controller_bounds_attempts():
    retry = RetryController(max_retries=2, retry_delay_ms=10)
    assert retry.record_failure() is True
    assert retry.record_failure() is True
    assert retry.retry_count == 2
    assert retry.record_failure() is False
    assert retry.exhausted
    assert retry.retry_count == 2

    retry.reset()
    assert retry.retry_count == 0
    assert not retry.exhausted


def test_zero_retries_exhausts_immediately():
    retry = RetryController(max_retries=0)
    assert retry.record_failure() is False
    assert retry.exhausted


# ==================== CONFLICT ====================


def test_resolver_opens_one_case_at_a_time():
    resolver = ConflictResolver()
    case = resolver.open({'a': 1, 'b': 2}, {'a': 1, 'b': 3})
    assert case.conflict_fields == ('b',)
    assert 'b' in case
    assert resolver.is_open
    with pytest.raises(RuntimeError):
        resolver.open({'a': 1}, {'a': 2})


def test_take_closes_case_exactly_once():
    resolver = ConflictResolver()
    opened = resolver.open({'a': 1}, {'a': 2})
    assert resolver.take(ResolutionAction.SERVER) is opened
    assert resolver.case is None
    with pytest.raises(RuntimeError):
        resolver.take('local')


def test_take_validates_before_closing():
    resolver = ConflictResolver()
    resolver.open({'a': 1}, {'a': 2})
    with pytest.raises(ValueError):
        resolver.take('merge')
    with pytest.raises(ValueError):
        resolver.take('mine')
    assert resolver.is_open
    resolver.take('merge', {'a': 3})
    assert not resolver.is_open


def test_case_uses_injected_clock():
    stamp = datetime(2024, 1, 2, 3, 4, 5)
    resolver = ConflictResolver(clock=lambda: stamp)
    case = resolver.open({'a': 1}, {'a': 2})
    assert case.detected_at == stamp
    assert case.to_dict()['detected_at'] == stamp.isoformat()


def test_default_merge_prefers_local_fields():
    resolver = ConflictResolver()
    case = resolver.open({'a': 1, 'b': 2}, {'a': 9, 'c': 3})
    assert default_merge(case) == {'a': 1, 'b': 2, 'c': 3}


def test_default_merge_keeps_dataclass_type():
    @dataclass
    class Risk:
        title: str = ''
        score: int = 0

    resolver = ConflictResolver()
    case = resolver.open(Risk('local', 1), Risk('server', 5))
    assert case.conflict_fields == ('title', 'score')
    assert default_merge(case) == Risk('local', 1)


# ==================== STATUS ====================


def test_status_text_labels():
    saved_at = datetime(2024, 5, 6, 14, 15, 16)
    assert status_text(SaveMetadata(status=SaveStatus.SAVING)) == "Saving..."
    assert status_text(SaveMetadata(status=SaveStatus.SAVED, last_saved=saved_at)) == "Saved at 14:15:16"
    assert status_text(SaveMetadata(status=SaveStatus.ERROR, error_message='boom', retry_count=1,
                                    failure_kind=FailureKind.TRANSIENT)) == "Save failed: boom (retrying...)"
    assert status_text(SaveMetadata(status=SaveStatus.ERROR, error_message='boom', retry_count=3,
                                    failure_kind=FailureKind.EXHAUSTED)) == "Save failed: boom"
    assert status_text(SaveMetadata(status=SaveStatus.CONFLICT)) == "Conflict detected - please resolve"
    assert status_text(SaveMetadata(has_unsaved_changes=True, last_modified=saved_at)) \
        == "Unsaved changes (modified 14:15:16)"
    assert status_text(SaveMetadata()) == ""


def test_last_scheduled_retry_still_counts_as_retrying():
    meta = SaveMetadata(status=SaveStatus.ERROR, error_message='boom', retry_count=3, max_retries=3,
                        failure_kind=FailureKind.TRANSIENT)
    assert meta.retrying
    assert status_text(meta) == "Save failed: boom (retrying...)"


def test_save_now_disabled_while_saving_or_in_conflict():
    assert can_save_now(SaveMetadata(has_unsaved_changes=True))
    assert not can_save_now(SaveMetadata(status=SaveStatus.SAVING, has_unsaved_changes=True))
    assert not can_save_now(SaveMetadata(status=SaveStatus.CONFLICT, has_unsaved_changes=True))


def test_metadata_to_dict():
    meta = SaveMetadata(status=SaveStatus.ERROR, error_message='x', retry_count=1,
                        failure_kind=FailureKind.TRANSIENT)
    assert meta.to_dict() == {
        'status': 'error',
        'last_saved': None,
        'last_modified': None,
        'error_message': 'x',
        'retry_count': 1,
        'has_unsaved_changes': False,
        'failure_kind': 'transient',
        'retrying': True,
    }


def test_reporter_publishes_only_changes():
    reporter = StatusReporter(clock=lambda: datetime(2024, 1, 1))
    seen = []
    reporter.on_status_changed(seen.append)

    def publish():
        reporter.publish(reporter.snapshot(retry_count=0, has_unsaved_changes=False, max_retries=3))

    publish()
    publish()
    reporter.mark_saving()
    publish()
    assert [m.status for m in seen] == [SaveStatus.IDLE, SaveStatus.SAVING]


def test_reporter_modified_moves_saved_to_idle():
    reporter = StatusReporter()
    reporter.mark_saved()
    reporter.mark_modified()
    assert reporter.status is SaveStatus.IDLE
    reporter.mark_error('x', FailureKind.TRANSIENT)
    reporter.mark_modified()
    assert reporter.status is SaveStatus.ERROR


def test_unload_guard_without_host():
    dirty = {'value': False}
    guard = UnloadGuard(lambda: dirty['value'])
    assert guard.on_before_unload() is False
    dirty['value'] = True
    assert guard.on_before_unload() is True
    guard.detach()  # no-op when not attached


# ==================== CONFIG ====================


def test_config_defaults():
    config = AutoSaveConfig()
    assert config.enabled is True
    assert config.debounce_delay_ms == 2000
    assert config.periodic_interval_ms == 30000
    assert config.max_retries == 3
    assert config.retry_delay_ms == 5000


@pytest.mark.parametrize('overrides', [
    {'debounce_delay_ms': -1},
    {'periodic_interval_ms': 0},
    {'max_retries': -2},
    {'retry_delay_ms': -5},
])
def test_config_rejects_invalid_values(overrides):
    with pytest.raises(ValueError):
        AutoSaveConfig(**overrides)


def test_config_from_camel_case_mapping():
    config = AutoSaveConfig.from_mapping({'interval': 10000, 'retryDelay': 100, 'enabled': False})
    assert config.periodic_interval_ms == 10000
    assert config.retry_delay_ms == 100
    assert config.enabled is False
    with pytest.raises(ValueError):
        AutoSaveConfig.from_mapping({'autosave': True})


def test_config_context_nests_and_restores():
    assert get_current_config() == AutoSaveConfig()
    with config_context(max_retries=5):
        with config_context(enabled=False) as inner:
            assert inner.max_retries == 5
            assert inner.enabled is False
        assert get_current_config().enabled is True
    assert get_current_config() == AutoSaveConfig()


# ==================== PERSISTENCE BOUNDARY ====================


def test_call_persist_accepts_sync_and_async_clients():
    async def async_persist(document):
        return Success({'id': 1, **document})

    def sync_persist(document):
        return Conflict({'id': 1})

    class Client:
        def persist(self, document):
            return Failure('read only')

    from autosave.persistence import as_persist_fn

    assert asyncio.run(call_persist(async_persist, {'a': 1})) == Success({'id': 1, 'a': 1})
    assert asyncio.run(call_persist(sync_persist, {'a': 1})) == Conflict({'id': 1})
    assert asyncio.run(call_persist(as_persist_fn(Client()), {})) == Failure('read only')


def test_call_persist_translates_errors():
    async def raising(document):
        raise TimeoutError()

    def bad_result(document):
        return {'ok': True}

    result = asyncio.run(call_persist(raising, {}))
    assert result == Failure('TimeoutError')

    result = asyncio.run(call_persist(bad_result, {}))
    assert isinstance(result, Failure)
    assert 'dict' in result.error_message


@pytest.mark.parametrize('result', [
    Conflict(None),
    Conflict(['not', 'a', 'document']),
    Success(server_document='saved'),
])
def test_call_persist_rejects_unusable_server_documents(result):
    outcome = asyncio.run(call_persist(lambda document: result, {'a': 1}))
    assert isinstance(outcome, Failure)
    assert outcome.error_message.startswith(f"Invalid save result: {type(result).__name__}")


def test_call_persist_accepts_dataclass_server_documents():
    @dataclass
    class Risk:
        title: str = ''

    result = Conflict(Risk('server'))
    assert asyncio.run(call_persist(lambda document: result, Risk('local'))) is result
