"""PTY session: one shell process with its identity, buffer and listeners."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from panemux.pty.handle import Disposable, PtyHandle
from panemux.session.buffer import DEFAULT_MAX_BUFFER_SIZE, OutputBuffer
from panemux.session.listeners import DataCallback, ExitCallback, Listener, ListenerSet

logger = logging.getLogger(__name__)


class SessionStatus(enum.StrEnum):
    """Lifecycle states for a session."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


@dataclass(frozen=True)
class SessionSummary:
    """Read-only view of a session for introspection."""

    id: str
    workspace_path: str
    created_at: float
    last_activity: float
    listener_count: int = 0
    buffered_size: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "workspacePath": self.workspace_path,
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "listenerCount": self.listener_count,
            "bufferedSize": self.buffered_size,
        }


class PtySession:
    """A managed shell session.

    Owns its PTY handle, output buffer and listener set exclusively. While at
    least one listener is attached the session holds exactly one data
    subscription on the handle; with no listeners it holds none, and output
    produced meanwhile is neither buffered nor delivered.

    Callbacks are expected to run on the event loop thread.
    """

    def __init__(
        self,
        id: str,
        workspace_path: str,
        handle: PtyHandle,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.id = id
        self.workspace_path = workspace_path
        self.handle = handle
        self.buffer = OutputBuffer(max_buffer_size)
        self.listeners = ListenerSet(id)
        self._clock = clock
        self.created_at = clock()
        self.last_activity = self.created_at
        self.status = SessionStatus.STARTING
        self.exit_code: int | None = None
        self._data_subscription: Disposable | None = None
        self._exit_subscription: Disposable | None = None
        self._pending_replays: dict[str, asyncio.TimerHandle] = {}

    def start(self, on_exit: Callable[[PtySession, int], None]) -> None:
        """Wire the handle's exit event and mark the session running."""
        self._exit_subscription = self.handle.on_exit(
            lambda code: on_exit(self, code)
        )
        self.status = SessionStatus.RUNNING

    def touch(self) -> None:
        self.last_activity = self._clock()

    @property
    def alive(self) -> bool:
        return self.status == SessionStatus.RUNNING

    @property
    def subscription_count(self) -> int:
        """Live data subscriptions on the handle: 1 with listeners, else 0."""
        return 0 if self._data_subscription is None else 1

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def attach(
        self,
        listener_id: str,
        on_data: DataCallback,
        on_exit: ExitCallback | None = None,
        skip_replay: bool = False,
        replay_delay: float = 0.0,
    ) -> None:
        """Attach (or re-attach) a listener and replay buffered output to it.

        The replay is one ``on_data`` call carrying the whole buffer. With a
        positive ``replay_delay`` it is deferred on the running loop and the
        listener receives no live data until it fires; the buffer read at
        fire time already holds whatever arrived in between.
        """
        self._cancel_replay(listener_id)
        listener = Listener(id=listener_id, on_data=on_data, on_exit=on_exit)
        replaced = self.listeners.add(listener)
        if replaced is not None:
            logger.debug("Replaced listener %s on session %s", listener_id, self.id)

        if self._data_subscription is None:
            self._data_subscription = self.handle.on_data(self._on_data)

        self.touch()
        if skip_replay:
            return

        loop = _running_loop()
        if replay_delay > 0 and loop is not None:
            listener.replay_pending = True
            self._pending_replays[listener_id] = loop.call_later(
                replay_delay, self._replay, listener
            )
        else:
            self._replay(listener)

    def detach(self, listener_id: str) -> bool:
        self._cancel_replay(listener_id)
        removed = self.listeners.remove(listener_id)
        if removed:
            logger.debug("Detached listener %s from session %s", listener_id, self.id)
        self._release_if_unused()
        return removed

    def _replay(self, listener: Listener) -> None:
        self._pending_replays.pop(listener.id, None)
        listener.replay_pending = False
        if self.listeners.get(listener.id) is not listener:
            return
        data = self.buffer.replay()
        if data and not self.listeners.deliver(listener, data):
            self._release_if_unused()

    def _cancel_replay(self, listener_id: str) -> None:
        handle = self._pending_replays.pop(listener_id, None)
        if handle is not None:
            handle.cancel()

    def _release_if_unused(self) -> None:
        if not self.listeners and self._data_subscription is not None:
            self._data_subscription.dispose()
            self._data_subscription = None

    # ------------------------------------------------------------------
    # Data path
    # ------------------------------------------------------------------

    def _on_data(self, chunk: str) -> None:
        if not self.alive:
            return
        self.buffer.append(chunk)
        if self.listeners.dispatch_data(chunk) and self.alive:
            self._release_if_unused()

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def close(self, exit_code: int) -> bool:
        """Move to EXITED, notify exit listeners and release everything.

        Returns False if the session had already exited.
        """
        if self.status == SessionStatus.EXITED:
            return False
        self.status = SessionStatus.EXITED
        self.exit_code = exit_code

        for listener_id in list(self._pending_replays):
            self._cancel_replay(listener_id)
        if self._data_subscription is not None:
            self._data_subscription.dispose()
            self._data_subscription = None
        if self._exit_subscription is not None:
            self._exit_subscription.dispose()
            self._exit_subscription = None

        self.listeners.dispatch_exit(exit_code)
        self.listeners.clear()
        return True

    def summary(self) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            workspace_path=self.workspace_path,
            created_at=self.created_at,
            last_activity=self.last_activity,
            listener_count=len(self.listeners),
            buffered_size=self.buffer.size,
        )


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
