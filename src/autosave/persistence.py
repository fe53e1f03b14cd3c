"""
Persistence client contract and the exception boundary around it.

The client is supplied by the embedding application. It receives the document
to write and answers with exactly one of Success, Conflict or Failure. It may
be a coroutine function or a plain callable.

call_persist() is the only place the engine suspends, and the only place an
exception from outside the engine can enter. Everything raised there is turned
into a Failure.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from autosave.change_detector import is_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    """Write accepted. server_document, when given, is the normalised copy."""
    server_document: Optional[Any] = None


@dataclass(frozen=True)
class Conflict:
    """Write rejected: the server copy changed since our baseline."""
    server_document: Any


@dataclass(frozen=True)
class Failure:
    """Transient error. No versioning implied."""
    error_message: str = "Save failed"


SaveResult = Union[Success, Conflict, Failure]


@runtime_checkable
class PersistenceClient(Protocol):
    """Anything with a persist(document) method returning a SaveResult."""

    def persist(self, document: Any) -> Union[SaveResult, Awaitable[SaveResult]]: ...


PersistFn = Callable[[Any], Union[SaveResult, Awaitable[SaveResult]]]


def as_persist_fn(persist: Union[PersistFn, PersistenceClient]) -> PersistFn:
    """Accept either a bare callable or a PersistenceClient object."""
    if isinstance(persist, PersistenceClient):
        return persist.persist
    if callable(persist):
        return persist
    raise TypeError(f"persist must be callable or provide persist(), got {type(persist).__name__}")


async def call_persist(persist: PersistFn, document: Any) -> SaveResult:
    """Run one persistence call, translating every error into Failure."""
    try:
        result = persist(document)
        if inspect.isawaitable(result):
            result = await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = str(e) or type(e).__name__
        logger.warning(f"SAVE: persistence client raised {type(e).__name__}: {message}")
        return Failure(message)

    if not isinstance(result, (Success, Conflict, Failure)):
        logger.warning(f"SAVE: persistence client returned unsupported result {result!r}")
        return Failure(f"Invalid save result: {type(result).__name__}")

    problem = _payload_problem(result)
    if problem is not None:
        logger.warning(f"SAVE: persistence client returned {type(result).__name__} with {problem}")
        return Failure(f"Invalid save result: {type(result).__name__} with {problem}")
    return result


def _payload_problem(result: SaveResult) -> Optional[str]:
    """Describe a result whose server document the engine cannot use, else None."""
    if isinstance(result, Conflict) and not is_document(result.server_document):
        return f"server document of type {type(result.server_document).__name__}"
    if isinstance(result, Success) and result.server_document is not None \
            and not is_document(result.server_document):
        return f"server document of type {type(result.server_document).__name__}"
    return None
