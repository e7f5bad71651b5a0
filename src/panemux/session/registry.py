"""Session registry: owns every PTY session, keyed by identity."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncIterator, Callable

from panemux.errors import ErrorKind
from panemux.pty.handle import PtySpawner, SpawnOptions, default_shell, shell_environment
from panemux.session.buffer import DEFAULT_MAX_BUFFER_SIZE
from panemux.session.identity import session_identity
from panemux.session.listeners import DataCallback, ExitCallback
from panemux.session.results import CommandResult, StartResult
from panemux.session.session import PtySession, SessionSummary

logger = logging.getLogger(__name__)

# Exit code reported to exit listeners when a session is terminated by us
TERMINATED_EXIT_CODE = -1

DEFAULT_REPLAY_DELAY = 0.05


class SessionRegistry:
    """Create-or-attach, I/O, listener and teardown operations for PTY sessions.

    The registry is the single owner of all sessions; entries leave the map
    only through process exit, ``terminate`` or the idle sweep (which calls
    ``terminate``). Every public operation returns a value instead of raising.

    Mutations run on the event loop thread. ``start_or_attach`` awaits the
    spawn while holding a lock for that identity only, so two calls for the
    same pane can never create two processes and calls for different panes
    never wait on each other.
    """

    def __init__(
        self,
        spawner: PtySpawner,
        *,
        shell: str | None = None,
        shell_args: list[str] | None = None,
        term_name: str = "xterm-256color",
        env: dict[str, str] | None = None,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        replay_delay: float = DEFAULT_REPLAY_DELAY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._spawner = spawner
        self._shell = shell
        self._shell_args = list(shell_args or [])
        self._term_name = term_name
        self._env = dict(env or {})
        self.max_buffer_size = max_buffer_size
        self.replay_delay = replay_delay
        self._clock = clock
        self._sessions: dict[str, PtySession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._sweeper: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_or_attach(
        self,
        workspace_path: str,
        cols: int = 80,
        rows: int = 30,
        force_new: bool = False,
        pane_id: str | None = None,
    ) -> StartResult:
        """Return the live session for (workspace, pane), or spawn one.

        Args:
            workspace_path: Directory the shell runs in.
            cols: Initial terminal width (new sessions only).
            rows: Initial terminal height (new sessions only).
            force_new: Always spawn an independent session with a random id.
            pane_id: Pane within the workspace; part of the session identity.

        Returns:
            ``StartResult`` with ``is_new`` telling whether a process was
            spawned. Spawn errors come back as a failed result.
        """
        session_id = session_identity(workspace_path, pane_id, force_new)

        async with self._identity_lock(session_id):
            existing = self._sessions.get(session_id)
            if existing is not None and not force_new:
                existing.touch()
                return StartResult.started(session_id, is_new=False)

            shell = self._shell or default_shell()
            options = SpawnOptions(
                cwd=workspace_path,
                cols=cols,
                rows=rows,
                env=shell_environment(self._env, self._term_name),
                term_name=self._term_name,
            )
            try:
                handle = await self._spawner.spawn(shell, self._shell_args, options)
            except Exception as e:
                logger.warning("Failed to start shell in %s: %s", workspace_path, e)
                return StartResult.failed(str(e) or "Failed to start shell")

            session = PtySession(
                session_id,
                workspace_path,
                handle,
                max_buffer_size=self.max_buffer_size,
                clock=self._clock,
            )
            session.start(self._handle_exit)
            self._sessions[session_id] = session

        logger.info("Started PTY session %s in %s", session_id, workspace_path)
        return StartResult.started(session_id, is_new=True)

    @contextlib.asynccontextmanager
    async def _identity_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    def _handle_exit(self, session: PtySession, exit_code: int) -> None:
        """Process exited on its own: notify listeners and drop the entry."""
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
        if session.close(exit_code):
            logger.info("PTY session %s exited (code=%s)", session.id, exit_code)

    def terminate(self, session_id: str) -> bool:
        """Kill a session and remove it. Returns False if it was already gone."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close(TERMINATED_EXIT_CODE)
        try:
            session.handle.kill()
        except Exception as e:
            logger.warning("Error killing PTY session %s: %s", session_id, e)
        logger.info("Terminated session %s", session_id)
        return True

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def write(self, session_id: str, data: str) -> CommandResult:
        """Forward input to the shell. The buffer only records output."""
        session = self._sessions.get(session_id)
        if session is None:
            return CommandResult.not_found()
        try:
            session.handle.write(data)
        except Exception as e:
            return CommandResult.failed(
                ErrorKind.WRITE_FAILURE, str(e) or "Failed to write to shell"
            )
        session.touch()
        return CommandResult.ok()

    def resize(self, session_id: str, cols: int, rows: int) -> CommandResult:
        session = self._sessions.get(session_id)
        if session is None:
            return CommandResult.not_found()
        try:
            session.handle.resize(cols, rows)
        except Exception as e:
            return CommandResult.failed(
                ErrorKind.RESIZE_FAILURE, str(e) or "Failed to resize shell"
            )
        session.touch()
        return CommandResult.ok()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def attach_listener(
        self,
        session_id: str,
        listener_id: str,
        on_data: DataCallback,
        on_exit: ExitCallback | None = None,
        skip_replay: bool = False,
    ) -> bool:
        """Attach a listener; buffered output is replayed to it before live data.

        Re-attaching under an existing ``listener_id`` replaces the old
        callbacks. Returns False if the session does not exist.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.attach(
            listener_id,
            on_data,
            on_exit,
            skip_replay=skip_replay,
            replay_delay=self.replay_delay,
        )
        logger.debug("Attached listener %s to session %s", listener_id, session_id)
        return True

    def detach_listener(self, session_id: str, listener_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return session.detach(listener_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> PtySession | None:
        return self._sessions.get(session_id)

    def get_all(self) -> list[SessionSummary]:
        return [s.summary() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Idle sweep / shutdown
    # ------------------------------------------------------------------

    def sweep_idle(self, timeout: float) -> list[str]:
        """Terminate sessions idle for longer than ``timeout`` seconds."""
        now = self._clock()
        stale = [
            sid
            for sid, s in self._sessions.items()
            if now - s.last_activity > timeout
        ]
        for session_id in stale:
            logger.info("Cleaning up inactive session: %s", session_id)
            self.terminate(session_id)
        return stale

    def start_idle_sweeper(self, timeout: float, interval: float = 60.0) -> None:
        """Run ``sweep_idle`` every ``interval`` seconds on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(timeout, interval))

    async def _sweep_loop(self, timeout: float, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_idle(timeout)
            except Exception:
                logger.exception("Idle sweep failed")

    async def stop_idle_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def cleanup(self) -> None:
        """Terminate every session. Called on shutdown."""
        await self.stop_idle_sweeper()
        for session_id in list(self._sessions):
            self.terminate(session_id)
        logger.info("All PTY sessions cleaned up")
