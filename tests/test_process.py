"""Smoke tests for panemux.pty.process against a real shell (POSIX only)."""

from __future__ import annotations

import asyncio
import os
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest

if sys.platform == "win32":
    pytest.skip("POSIX pseudo-terminals only", allow_module_level=True)

from panemux.errors import SpawnFailure
from panemux.pty.handle import SpawnOptions, shell_environment
from panemux.pty.process import ProcessSpawner, PTYStatus
from panemux.session.registry import SessionRegistry


async def _wait_for(predicate, timeout: float = 5.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return predicate()


def _pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class TestProcessSpawner:
    def test_missing_cwd(self, tmp_path) -> None:
        options = SpawnOptions(cwd=str(tmp_path / "missing"))
        with pytest.raises(SpawnFailure):
            asyncio.run(ProcessSpawner().spawn("/bin/sh", [], options))

    def test_missing_shell(self, tmp_path) -> None:
        options = SpawnOptions(cwd=str(tmp_path))
        with pytest.raises(SpawnFailure):
            asyncio.run(ProcessSpawner().spawn("no-such-shell-xyz", [], options))

    def test_output_and_exit(self, tmp_path) -> None:
        async def scenario() -> tuple[str, list[int]]:
            options = SpawnOptions(cwd=str(tmp_path), env=shell_environment())
            handle = await ProcessSpawner().spawn(
                "/bin/sh", ["-c", "printf 'hi from pty'; exit 3"], options
            )
            chunks: list[str] = []
            codes: list[int] = []
            handle.on_data(chunks.append)
            handle.on_exit(codes.append)
            await _wait_for(lambda: bool(codes))
            assert handle.status == PTYStatus.EXITED
            return "".join(chunks), codes

        output, codes = asyncio.run(scenario())
        assert "hi from pty" in output
        assert codes == [3]

    def test_kill(self, tmp_path) -> None:
        async def scenario() -> tuple[PTYStatus, bool, list[int]]:
            options = SpawnOptions(cwd=str(tmp_path), env=shell_environment())
            handle = await ProcessSpawner().spawn("/bin/sh", ["-c", "sleep 30"], options)
            codes: list[int] = []
            handle.on_exit(codes.append)
            handle.kill()
            # kill() returns at once; the process is reaped in the background
            status = handle.status
            reaped = await _wait_for(lambda: not _pid_exists(handle.pid))
            return status, reaped, codes

        status, reaped, codes = asyncio.run(scenario())
        assert status == PTYStatus.KILLED
        assert reaped
        assert codes == []

    def test_write_larger_than_tty_buffer(self, tmp_path) -> None:
        line = "x" * 99 + "\n"

        async def scenario() -> list[int]:
            options = SpawnOptions(cwd=str(tmp_path), env=shell_environment())
            handle = await ProcessSpawner().spawn(
                "/bin/sh", ["-c", "cat > out.txt"], options
            )
            codes: list[int] = []
            handle.on_exit(codes.append)
            handle.write(line * 200)
            handle.write("\x04")
            await _wait_for(lambda: bool(codes), timeout=10)
            return codes

        assert asyncio.run(scenario()) == [0]
        assert (tmp_path / "out.txt").read_text() == line * 200


class TestRegistryWithRealShell:
    def test_echo_roundtrip(self, tmp_path) -> None:
        async def scenario() -> str:
            registry = SessionRegistry(ProcessSpawner(), shell="/bin/sh", replay_delay=0.0)
            result = await registry.start_or_attach(str(tmp_path), 80, 24, pane_id="main")
            assert result.success, result.error
            received: list[str] = []
            registry.attach_listener(result.session_id, "test", received.append)
            registry.write(result.session_id, "echo panemux-$((40+2))\n")
            await _wait_for(lambda: "panemux-42" in "".join(received))
            await registry.cleanup()
            return "".join(received)

        assert "panemux-42" in asyncio.run(scenario())

    def test_more_idle_sessions_than_executor_threads(self, tmp_path) -> None:
        async def scenario() -> tuple[str, list[int], bool]:
            asyncio.get_running_loop().set_default_executor(ThreadPoolExecutor(max_workers=2))
            registry = SessionRegistry(ProcessSpawner(), shell="/bin/sh", replay_delay=0.0)
            for i in range(4):
                idle = await registry.start_or_attach(str(tmp_path), pane_id=f"idle-{i}")
                assert idle.success, idle.error
            await asyncio.sleep(0.3)

            result = await registry.start_or_attach(str(tmp_path), pane_id="active")
            assert result.success, result.error
            sid = result.session_id
            received: list[str] = []
            codes: list[int] = []
            registry.attach_listener(sid, "test", received.append, codes.append)
            registry.write(sid, "echo panemux-$((40+2))\n")
            await _wait_for(lambda: "panemux-42" in "".join(received))
            registry.write(sid, "exit 5\n")
            await _wait_for(lambda: bool(codes))
            gone = not registry.has_session(sid)
            await registry.cleanup()
            return "".join(received), codes, gone

        output, codes, gone = asyncio.run(scenario())
        assert "panemux-42" in output
        assert codes == [5]
        assert gone
