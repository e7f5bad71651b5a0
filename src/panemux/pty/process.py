"""POSIX pseudo-terminal processes for the session engine."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import shutil
import signal
import struct
import termios
from typing import Callable

from panemux.errors import SpawnFailure
from panemux.pty.handle import Disposable, SpawnOptions

logger = logging.getLogger(__name__)

READ_SIZE = 4096


class PTYStatus(enum.Enum):
    """Lifecycle states for a PTY process."""

    STARTING = "starting"
    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Process exited on its own


def set_window_size(fd: int, cols: int, rows: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the slave side.
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


class ProcessPty:
    """A process running on the slave side of a fresh PTY pair.

    - Own process group (start_new_session) for safe tree-killing
    - Non-blocking master fd watched by the event loop; no thread is held
      per session, so any number of idle shells can stay open
    - Reaped through asyncio's child watcher, never by blocking the loop
    - Incremental UTF-8 decoding, so multibyte characters are never split
      across two data callbacks
    - Any number of data/exit subscribers; the reader keeps draining the
      PTY even when nobody is subscribed

    Exit callbacks fire once when the process dies on its own, NOT when it
    was killed via ``kill()``.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        options: SpawnOptions | None = None,
    ) -> None:
        self.command = command
        self.args = list(args or [])
        self.options = options or SpawnOptions(cwd=os.getcwd())
        self.pid: int = 0
        self._pgid: int = 0
        self._master_fd: int = -1
        self._proc: asyncio.subprocess.Process | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reading = False
        self._writing = False
        self._pending_input = bytearray()
        self._watcher_task: asyncio.Task | None = None
        self._status = PTYStatus.STARTING
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._data_callbacks: list[Callable[[str], None]] = []
        self._exit_callbacks: list[Callable[[int], None]] = []

    async def start(self) -> None:
        """Spawn the process in a new PTY with its own process group."""
        master_fd, slave_fd = pty.openpty()
        set_window_size(master_fd, self.options.cols, self.options.rows)

        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,  # Creates new process group
                preexec_fn=_acquire_controlling_tty,
                env=self.options.env or None,
                cwd=self.options.cwd,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnFailure(f"Failed to start {self.command}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        self._master_fd = master_fd
        self.pid = self._proc.pid
        self._pgid = os.getpgid(self.pid)
        self._status = PTYStatus.RUNNING

        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(master_fd, self._on_readable)
        self._reading = True
        self._watcher_task = asyncio.create_task(self._watch())

        logger.info(
            "PTY started: pid=%d pgid=%d cmd=%s cwd=%s",
            self.pid,
            self._pgid,
            " ".join([self.command, *self.args]),
            self.options.cwd,
        )

    def _on_readable(self) -> None:
        if self._read_chunk() is False:
            self._stop_reading()

    def _read_chunk(self) -> bool | None:
        """Read one chunk from the master fd.

        Returns True if data was read, None if nothing is pending, and False
        once the slave side is gone (EOF, or EIO on Linux).
        """
        try:
            data = os.read(self._master_fd, READ_SIZE)
        except BlockingIOError:
            return None
        except OSError:
            return False
        if not data:
            return False
        text = self._decoder.decode(data)
        if text:
            self._emit_data(text)
        return True

    def _stop_reading(self) -> None:
        if self._reading and self._loop is not None:
            self._loop.remove_reader(self._master_fd)
        self._reading = False

    async def _watch(self) -> None:
        """Wait for the process to die, then flush output and report the exit."""
        assert self._proc is not None
        exit_code = await self._proc.wait()
        if self._status != PTYStatus.RUNNING:
            logger.debug("PTY %d reaped after kill (code=%s)", self.pid, exit_code)
            return

        # Flush what the shell wrote right before exiting
        while self._reading and self._read_chunk():
            pass
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._emit_data(tail)
        self._status = PTYStatus.EXITED
        self._close_fd()
        logger.info("PTY %d exited (code=%s)", self.pid, exit_code)
        self._emit_exit(exit_code)

    def _emit_data(self, text: str) -> None:
        for callback in list(self._data_callbacks):
            try:
                callback(text)
            except Exception:
                logger.exception("Error in data callback of PTY %d", self.pid)

    def _emit_exit(self, exit_code: int) -> None:
        for callback in list(self._exit_callbacks):
            try:
                callback(exit_code)
            except Exception:
                logger.exception("Error in exit callback of PTY %d", self.pid)

    def on_data(self, callback: Callable[[str], None]) -> Disposable:
        self._data_callbacks.append(callback)
        return Disposable(lambda: _discard(self._data_callbacks, callback))

    def on_exit(self, callback: Callable[[int], None]) -> Disposable:
        self._exit_callbacks.append(callback)
        return Disposable(lambda: _discard(self._exit_callbacks, callback))

    def write(self, data: str) -> None:
        if self._status != PTYStatus.RUNNING:
            raise RuntimeError(f"PTY {self.pid} is not running")
        self._pending_input += data.encode()
        self._flush_input()

    def _flush_input(self) -> None:
        # The master fd is non-blocking; whatever the kernel refuses now is
        # written once the fd becomes writable again.
        while self._pending_input:
            try:
                written = os.write(self._master_fd, self._pending_input)
            except BlockingIOError:
                break
            del self._pending_input[:written]

        if self._loop is None:
            return
        if self._pending_input and not self._writing:
            self._loop.add_writer(self._master_fd, self._flush_input)
            self._writing = True
        elif not self._pending_input and self._writing:
            self._loop.remove_writer(self._master_fd)
            self._writing = False

    def resize(self, cols: int, rows: int) -> None:
        if self._status != PTYStatus.RUNNING:
            raise RuntimeError(f"PTY {self.pid} is not running")
        set_window_size(self._master_fd, cols, rows)

    def kill(self) -> None:
        """Kill the entire process tree."""
        if self._status not in (PTYStatus.RUNNING, PTYStatus.KILLING):
            return

        self._status = PTYStatus.KILLING
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY %d (pgid=%d)", self.pid, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing PTY %d: %s", self.pid, e)

        # The watcher task reaps the process; nothing here blocks the loop
        self._close_fd()
        self._status = PTYStatus.KILLED

    def _close_fd(self) -> None:
        if self._master_fd < 0:
            return
        self._stop_reading()
        if self._writing and self._loop is not None:
            self._loop.remove_writer(self._master_fd)
            self._writing = False
        self._pending_input.clear()
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = -1

    @property
    def alive(self) -> bool:
        return self._status == PTYStatus.RUNNING

    @property
    def status(self) -> PTYStatus:
        return self._status


def _discard(callbacks: list, callback: Callable) -> None:
    if callback in callbacks:
        callbacks.remove(callback)


class ProcessSpawner:
    """Spawns ``ProcessPty`` instances; validates cwd and shell up front."""

    async def spawn(
        self, command: str, args: list[str], options: SpawnOptions
    ) -> ProcessPty:
        if not os.path.isdir(options.cwd):
            raise SpawnFailure(f"Working directory does not exist: {options.cwd}")
        if shutil.which(command) is None:
            raise SpawnFailure(f"Shell not found: {command}")
        handle = ProcessPty(command, args, options)
        await handle.start()
        return handle
