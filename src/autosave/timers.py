"""
Scheduling facility the engine runs on.

The engine never sleeps or creates threads. It asks its TimerFacility for
one-shot callbacks and for a place to run the persistence coroutine. The
default implementation sits on the asyncio event loop; hosts with their own
loop (Qt, a test clock) supply their own.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TimerFacility(Protocol):
    """after(ms, callback) -> token, cancel(token), spawn(coroutine) -> Task."""

    def after(self, delay_ms: int, callback: Callable[[], None]) -> Any: ...

    def cancel(self, token: Any) -> None: ...

    def spawn(self, coroutine: Coroutine[Any, Any, Any]) -> 'asyncio.Future[Any]': ...


class AsyncioTimerFacility:
    """TimerFacility backed by loop.call_later().

    The loop is resolved lazily so the facility can be created before the
    loop starts; every call after that must happen on the loop's thread.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def after(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_ms / 1000.0, callback)

    def cancel(self, token: asyncio.TimerHandle) -> None:
        token.cancel()

    def spawn(self, coroutine: Coroutine[Any, Any, Any]) -> 'asyncio.Task[Any]':
        return self.loop.create_task(coroutine)
