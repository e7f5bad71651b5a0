"""CLI entry point for panemux."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal
import sys
import termios
import tty
from contextlib import contextmanager
from typing import Callable, Iterator

import typer
from pydantic import ValidationError

from panemux.config import PanemuxConfig
from panemux.session.identity import deterministic

app = typer.Typer(
    name="panemux",
    help="Persistent shell sessions for git worktrees and their panes.",
    no_args_is_help=True,
)

CLIENT_ID = "cli"


def _load_config(config_file: str | None) -> PanemuxConfig:
    try:
        return PanemuxConfig.load(config_file)
    except ValidationError as e:
        typer.echo(f"Error: Invalid configuration:\n{e}", err=True)
        raise typer.Exit(1)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


@contextmanager
def _raw_terminal(fd: int) -> Iterator[None]:
    """Put the local terminal in raw mode for the duration of the block."""
    if not os.isatty(fd):
        yield
        return
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


EOT = "\x04"


class StdinForwarder:
    """Forwards keystrokes (or piped input) from a local fd to a session.

    At end of input the fd is unregistered and Ctrl-D is sent, so a shell
    fed from a pipe sees EOF and exits.
    """

    def __init__(self, fd: int, send: Callable[[str], None]) -> None:
        self.fd = fd
        self._send = send
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._loop: asyncio.AbstractEventLoop | None = None
        self._polled = True

    @property
    def active(self) -> bool:
        return self._loop is not None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            self._loop.add_reader(self.fd, self._on_readable)
        except PermissionError:
            # Regular files cannot be polled; they are always readable
            self._polled = False
            self._loop.call_soon(self._on_readable)

    def stop(self) -> None:
        if self._loop is not None:
            if self._polled:
                self._loop.remove_reader(self.fd)
            self._loop = None

    def _on_readable(self) -> None:
        if self._loop is None:
            return
        try:
            raw = os.read(self.fd, 1024)
        except OSError:
            raw = b""
        if not raw:
            self.stop()
            tail = self._decoder.decode(b"", final=True)
            self._send(tail + EOT)
            return
        data = self._decoder.decode(raw)
        if data:
            self._send(data)
        if not self._polled and self._loop is not None:
            self._loop.call_soon(self._on_readable)


@app.command()
def shell(
    path: str = typer.Argument(".", help="Worktree directory to run the shell in."),
    pane: str = typer.Option("main", "--pane", "-p", help="Pane id within the worktree."),
    new: bool = typer.Option(
        False, "--new", help="Start an independent session (split pane)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
) -> None:
    """Attach this terminal to the shell session of a worktree pane."""
    setup_logging(verbose)
    workspace = os.path.abspath(path)
    if not os.path.isdir(workspace):
        typer.echo(f"Error: Directory not found: {workspace}", err=True)
        raise typer.Exit(1)

    config = _load_config(config_file)
    exit_code = asyncio.run(_run_shell(workspace, pane, new, config))
    raise typer.Exit(exit_code if exit_code >= 0 else 1)


async def _run_shell(
    workspace: str, pane: str, force_new: bool, config: PanemuxConfig
) -> int:
    """Drive one session through a ShellBridge and print its output."""
    from panemux.transport.bridge import ShellBridge
    from panemux.transport.wire import EventType, Wire

    loop = asyncio.get_running_loop()
    registry = config.build_registry()
    if config.session.idle_timeout:
        registry.start_idle_sweeper(
            config.session.idle_timeout, config.session.sweep_interval
        )

    wire = Wire()
    bridge = ShellBridge(registry, CLIENT_ID, wire.deliver)
    queue = wire.subscribe()

    cols, rows = shutil.get_terminal_size(
        (config.shell.default_cols, config.shell.default_rows)
    )
    await bridge.handle(
        {
            "type": "shell:start",
            "id": "start",
            "payload": {
                "worktreePath": workspace,
                "cols": cols,
                "rows": rows,
                "forceNew": force_new,
                "paneId": pane,
            },
        }
    )

    session_id: str | None = None
    exit_code = 1
    stdin_fd = sys.stdin.fileno()
    out = sys.stdout

    def _send(data: str) -> None:
        loop.create_task(
            bridge.handle(
                {
                    "type": "shell:write",
                    "payload": {"sessionId": session_id, "data": data},
                }
            )
        )

    stdin = StdinForwarder(stdin_fd, _send)

    def _on_winch() -> None:
        if session_id is None:
            return
        c, r = shutil.get_terminal_size()
        registry.resize(session_id, c, r)

    try:
        with _raw_terminal(stdin_fd):
            while True:
                event = await queue.get()
                if event is None:
                    break

                d = event.data
                if event.type == EventType.RESPONSE and event.id == "start":
                    if not d.get("success"):
                        print(f"Error: {d.get('error')}\r", file=sys.stderr, flush=True)
                        break
                    session_id = d["sessionId"]
                    stdin.start()
                    loop.add_signal_handler(signal.SIGWINCH, _on_winch)

                elif event.type == EventType.SHELL_OUTPUT:
                    out.write(d.get("data", ""))
                    out.flush()

                elif event.type == EventType.SHELL_EXIT:
                    exit_code = d.get("code", 0)
                    break

                elif event.type == EventType.ERROR:
                    print(f"Error: {d.get('error')}\r", file=sys.stderr, flush=True)
    finally:
        if session_id is not None:
            stdin.stop()
            loop.remove_signal_handler(signal.SIGWINCH)
        bridge.close()
        wire.close()
        await registry.cleanup()

    return exit_code


@app.command()
def config(
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
) -> None:
    """Print the effective configuration."""
    typer.echo(_load_config(config_file).model_dump_json(indent=2))


@app.command("session-id")
def session_id(
    path: str = typer.Argument(help="Worktree directory."),
    pane: str = typer.Option("main", "--pane", "-p", help="Pane id within the worktree."),
) -> None:
    """Print the deterministic session id of a worktree pane."""
    typer.echo(deterministic(os.path.abspath(path), pane))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
