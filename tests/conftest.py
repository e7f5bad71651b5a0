"""Shared fixtures: an in-memory PTY capability for driving the engine."""

from __future__ import annotations

import asyncio
import itertools
from typing import Callable

import pytest

from panemux.pty.handle import Disposable, SpawnOptions
from panemux.session.registry import SessionRegistry

_pids = itertools.count(1000)


class FakePty:
    """In-memory PtyHandle. Tests push output with ``emit`` and end it with ``exit``."""

    def __init__(self, command: str = "sh", args: list[str] | None = None,
                 options: SpawnOptions | None = None) -> None:
        self.pid = next(_pids)
        self.command = command
        self.args = args or []
        self.options = options
        self.written: list[str] = []
        self.sizes: list[tuple[int, int]] = []
        self.killed = False
        self.fail_writes = False
        self._data_callbacks: list[Callable[[str], None]] = []
        self._exit_callbacks: list[Callable[[int], None]] = []

    def write(self, data: str) -> None:
        if self.fail_writes:
            raise OSError("write failed")
        self.written.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.sizes.append((cols, rows))

    def kill(self) -> None:
        self.killed = True

    def on_data(self, callback: Callable[[str], None]) -> Disposable:
        self._data_callbacks.append(callback)
        return Disposable(lambda: self._data_callbacks.remove(callback))

    def on_exit(self, callback: Callable[[int], None]) -> Disposable:
        self._exit_callbacks.append(callback)
        return Disposable(lambda: self._exit_callbacks.remove(callback))

    @property
    def data_subscribers(self) -> int:
        return len(self._data_callbacks)

    @property
    def exit_subscribers(self) -> int:
        return len(self._exit_callbacks)

    def emit(self, text: str) -> None:
        for cb in list(self._data_callbacks):
            cb(text)

    def exit(self, code: int = 0) -> None:
        for cb in list(self._exit_callbacks):
            cb(code)


class FakeSpawner:
    """Records spawn calls; can fail or be slowed down to expose races."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.handles: list[FakePty] = []
        self.calls: list[tuple[str, list[str], SpawnOptions]] = []

    async def spawn(self, command: str, args: list[str], options: SpawnOptions) -> FakePty:
        self.calls.append((command, args, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        handle = FakePty(command, args, options)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakePty:
        return self.handles[-1]


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(spawner: FakeSpawner, clock: FakeClock) -> SessionRegistry:
    return SessionRegistry(spawner, shell="/bin/sh", replay_delay=0.0, clock=clock)
