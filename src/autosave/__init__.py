"""
Auto-save and conflict-resolution engine for editable forms.

The engine keeps an in-progress form document persisted without the user
pressing Save: it debounces edits, saves periodically as a safety net, retries
transient failures a bounded number of times, and stops for an explicit user
decision when the server copy changed underneath the form.

Key Features:
- Debounced and periodic saving with a single-flight guard
- Last-write-wins sampling (a save sends the document as it is when it starts)
- Bounded fixed-delay retry on transient failures
- Optimistic-concurrency conflicts with server / local / merge resolutions
- Read-only status snapshots and an unsaved-changes unload guard

Quick Start:
    >>> from autosave import AutoSaveEngine, Success, Conflict, Failure
    >>>
    >>> async def persist(document):
    ...     response = await api.put('/risks/42', json=dict(document))
    ...     if response.status == 409:
    ...         return Conflict(server_document=response.json())
    ...     if not response.ok:
    ...         return Failure(response.text)
    ...     return Success(server_document=response.json())
    >>>
    >>> async def edit_risk():
    ...     # The default timers live on the running asyncio loop
    ...     with AutoSaveEngine({'title': '', 'owner': None}, persist) as engine:
    ...         engine.set_field('title', 'Vendor outage')   # saved after 2s of quiet
    ...         ...
    ...         status = await engine.manual_save()            # or save right away
    ...         print(status.status)   # SaveStatus.SAVED

Modules:
    - engine: AutoSaveEngine, the owned object that ties everything together
    - document_state: document + baseline, dirty tracking
    - change_detector: per-field diffs and conflict-field detection
    - scheduler: debounce / periodic / retry timers and the in-flight guard
    - timers: TimerFacility protocol and the asyncio implementation
    - persistence: Success / Conflict / Failure and the exception boundary
    - retry: bounded retry bookkeeping
    - conflict: ConflictResolver and resolution actions
    - status: StatusReporter, status text, UnloadGuard
    - status_model: SaveStatus, SaveMetadata, ConflictCase
    - config: AutoSaveConfig and config_context()
"""

# Configuration
from autosave.config import (
    AutoSaveConfig,
    DEFAULT_CONFIG,
    config_context,
    get_current_config,
)

# Data model
from autosave.status_model import (
    ConflictCase,
    FailureKind,
    SaveMetadata,
    SaveStatus,
)

# Persistence contract
from autosave.persistence import (
    Conflict,
    Failure,
    PersistenceClient,
    SaveResult,
    Success,
    call_persist,
)

# Components
from autosave.change_detector import changed_fields, find_conflict_fields, is_document
from autosave.conflict import ConflictResolver, ResolutionAction, default_merge
from autosave.document_state import DocumentState
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
from autosave.timers import AsyncioTimerFacility, TimerFacility

# Engine
from autosave.engine import AutoSaveEngine, engine_factory

__all__ = [
    # Configuration
    'AutoSaveConfig',
    'DEFAULT_CONFIG',
    'config_context',
    'get_current_config',
    # Data model
    'ConflictCase',
    'FailureKind',
    'SaveMetadata',
    'SaveStatus',
    # Persistence contract
    'Conflict',
    'Failure',
    'PersistenceClient',
    'SaveResult',
    'Success',
    'call_persist',
    # Components
    'changed_fields',
    'find_conflict_fields',
    'is_document',
    'ConflictResolver',
    'ResolutionAction',
    'default_merge',
    'DocumentState',
    'RetryController',
    'SaveScheduler',
    'StatusReporter',
    'UnloadGuard',
    'UnloadHost',
    'can_reset',
    'can_save_now',
    'status_text',
    'AsyncioTimerFacility',
    'TimerFacility',
    # Engine
    'AutoSaveEngine',
    'engine_factory',
]

__version__ = '1.0.0'
__description__ = 'Auto-save and conflict-resolution engine for editable forms'
