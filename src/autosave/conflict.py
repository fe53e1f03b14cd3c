"""
Conflict bookkeeping for optimistic-concurrency rejections.

At most one ConflictCase is open at a time. It is opened when the persistence
client answers Conflict and closed exactly once, by whichever resolution the
user picks.
"""

import dataclasses
import logging
from dataclasses import is_dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from autosave.change_detector import fields_of, find_conflict_fields
from autosave.status_model import ConflictCase

logger = logging.getLogger(__name__)


class ResolutionAction(Enum):
    """How the user settles a conflict."""
    SERVER = "server"  # take the server copy, no save
    LOCAL = "local"  # overwrite the server with the local copy
    MERGE = "merge"  # save a caller-supplied merged document

    @classmethod
    def coerce(cls, action: Union['ResolutionAction', str]) -> 'ResolutionAction':
        if isinstance(action, cls):
            return action
        try:
            return cls(action)
        except ValueError:
            raise ValueError(f"Unknown conflict resolution {action!r}; expected one of "
                             f"{[a.value for a in cls]}") from None


def default_merge(case: ConflictCase) -> Any:
    """Server copy overlaid with the local copy (local wins per field)."""
    if is_dataclass(case.server_version):
        return dataclasses.replace(case.server_version, **fields_of(case.local_version))
    return {**fields_of(case.server_version), **fields_of(case.local_version)}


class ConflictResolver:
    """Holds the open ConflictCase, if any."""

    def __init__(self, clock: Optional[Callable[[], Any]] = None):
        self._case: Optional[ConflictCase] = None
        self._clock = clock

    @property
    def case(self) -> Optional[ConflictCase]:
        return self._case

    @property
    def is_open(self) -> bool:
        return self._case is not None

    def open(self, local: Any, server: Any) -> ConflictCase:
        """Record a conflict between local and server versions."""
        if self._case is not None:
            raise RuntimeError("A conflict is already awaiting resolution")
        kwargs = {'detected_at': self._clock()} if self._clock else {}
        self._case = ConflictCase(
            server_version=server,
            local_version=local,
            conflict_fields=find_conflict_fields(local, server),
            **kwargs,
        )
        logger.info(f"CONFLICT: opened on fields {list(self._case.conflict_fields)}")
        return self._case

    def take(self, action: Union[ResolutionAction, str], merged: Optional[Any] = None) -> ConflictCase:
        """Validate a resolution and close the case. Returns the closed case."""
        action = ResolutionAction.coerce(action)
        if self._case is None:
            raise RuntimeError("No conflict to resolve")
        if action is ResolutionAction.MERGE and merged is None:
            raise ValueError("Merge resolution requires a merged document")
        case, self._case = self._case, None
        logger.info(f"CONFLICT: resolved with '{action.value}'")
        return case

    def clear(self) -> None:
        if self._case is not None:
            logger.debug("CONFLICT: discarded without resolution")
        self._case = None
