"""Pytest configuration and shared fixtures."""
import asyncio
import itertools
from collections import deque
from collections.abc import Mapping
from datetime import datetime, timedelta

import pytest

from autosave import AutoSaveConfig, AutoSaveEngine, Success


class ManualTimerFacility:
    """TimerFacility on a virtual clock. Nothing fires until advance() is called."""

    def __init__(self):
        self.now_ms = 0
        self._seq = itertools.count()
        self._timers = {}
        self.tasks = []

    def after(self, delay_ms, callback):
        token = next(self._seq)
        self._timers[token] = (self.now_ms + delay_ms, callback)
        return token

    def cancel(self, token):
        self._timers.pop(token, None)

    def spawn(self, coroutine):
        task = asyncio.get_running_loop().create_task(coroutine)
        self.tasks.append(task)
        return task

    @property
    def pending(self):
        return len(self._timers)

    def advance(self, ms):
        """Move the clock forward, firing due callbacks in order."""
        target = self.now_ms + ms
        while True:
            due = [(when, token) for token, (when, _) in self._timers.items() if when <= target]
            if not due:
                break
            when, token = min(due)
            _, callback = self._timers.pop(token)
            self.now_ms = when
            callback()
        self.now_ms = target


class ScriptedPersist:
    """Persistence fake: records every document, answers from a script.

    hold() makes calls block until release(), to keep a save in flight.
    """

    def __init__(self):
        self.calls = []
        self.results = deque()
        self.default = Success()
        self._gate = None

    def script(self, *results):
        self.results.extend(results)

    def hold(self):
        self._gate = asyncio.Event()

    def release(self):
        gate, self._gate = self._gate, None
        if gate is not None:
            gate.set()

    async def __call__(self, document):
        self.calls.append(dict(document) if isinstance(document, Mapping) else document)
        gate = self._gate
        if gate is not None:
            await gate.wait()
        result = self.results.popleft() if self.results else self.default
        if isinstance(result, Exception):
            raise result
        return result


async def settle():
    """Let spawned save tasks run to completion."""
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def timers():
    return ManualTimerFacility()


@pytest.fixture
def persist():
    return ScriptedPersist()


@pytest.fixture
def clock(timers):
    """Wall clock that follows the virtual timer clock."""
    start = datetime(2024, 3, 1, 9, 30, 0)
    return lambda: start + timedelta(milliseconds=timers.now_ms)


@pytest.fixture
def make_engine(timers, persist, clock):
    """Build engines wired to the virtual clock; disposed after the test."""
    engines = []

    def make(initial=None, **config_overrides):
        config = AutoSaveConfig().merged(**config_overrides)
        engine = AutoSaveEngine(
            initial if initial is not None else {'a': 0},
            persist,
            config,
            timers=timers,
            clock=clock,
        )
        engines.append(engine)
        return engine

    yield make

    for engine in engines:
        engine.dispose()


@pytest.fixture(name='settle')
def settle_fixture():
    return settle
