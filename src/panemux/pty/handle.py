"""Contracts for the process/PTY capability the session engine consumes."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

DEFAULT_TERM = "xterm-256color"


class Disposable:
    """Subscription handle; ``dispose()`` detaches the callback exactly once."""

    def __init__(self, on_dispose: Callable[[], None] | None = None) -> None:
        self._on_dispose = on_dispose
        self._disposed = False

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            self._on_dispose()
            self._on_dispose = None

    @property
    def disposed(self) -> bool:
        return self._disposed


@runtime_checkable
class PtyHandle(Protocol):
    """A running process attached to a pseudo-terminal."""

    pid: int

    def write(self, data: str) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def kill(self) -> None: ...

    def on_data(self, callback: Callable[[str], None]) -> Disposable: ...

    def on_exit(self, callback: Callable[[int], None]) -> Disposable: ...


@dataclass
class SpawnOptions:
    cwd: str
    cols: int = 80
    rows: int = 30
    env: dict[str, str] = field(default_factory=dict)
    term_name: str = DEFAULT_TERM


class PtySpawner(Protocol):
    """Creates PTY processes. May raise; the registry reports it as a failure."""

    async def spawn(
        self, command: str, args: list[str], options: SpawnOptions
    ) -> PtyHandle: ...


def default_shell() -> str:
    """Shell for the host OS: PowerShell on Windows, ``$SHELL`` elsewhere."""
    if sys.platform == "win32":
        return "powershell.exe"
    return os.environ.get("SHELL") or "/bin/bash"


def shell_environment(
    extra: dict[str, str] | None = None, term_name: str = DEFAULT_TERM
) -> dict[str, str]:
    env = {**os.environ, **(extra or {})}
    env["TERM"] = term_name
    return env
