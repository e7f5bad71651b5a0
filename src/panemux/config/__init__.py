"""Configuration: Pydantic models for panemux settings."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from panemux.pty.handle import DEFAULT_TERM, default_shell
from panemux.session.buffer import DEFAULT_MAX_BUFFER_SIZE
from panemux.session.registry import DEFAULT_REPLAY_DELAY

if TYPE_CHECKING:
    from panemux.pty.handle import PtySpawner
    from panemux.session.registry import SessionRegistry


class ShellConfig(BaseModel):
    """Shell process configuration."""

    command: str = Field(
        default_factory=default_shell,
        description="Shell executable; defaults to $SHELL (PowerShell on Windows)",
    )
    args: list[str] = Field(default_factory=list)
    term_name: str = Field(default=DEFAULT_TERM, description="Value of TERM")
    default_cols: int = Field(default=80, gt=0)
    default_rows: int = Field(default=30, gt=0)


class SessionConfig(BaseModel):
    """Session engine configuration."""

    max_buffer_size: int = Field(
        default=DEFAULT_MAX_BUFFER_SIZE,
        gt=0,
        description="Characters of output kept per session for replay",
    )
    replay_delay: float = Field(
        default=DEFAULT_REPLAY_DELAY,
        ge=0,
        description="Seconds to wait before replaying to a new listener",
    )
    idle_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Terminate sessions idle this long (seconds); None disables",
    )
    sweep_interval: float = Field(default=60.0, gt=0)


class PanemuxConfig(BaseModel):
    """Top-level panemux configuration."""

    shell: ShellConfig = Field(default_factory=ShellConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PanemuxConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PANEMUX_SHELL             - Shell executable
            PANEMUX_MAX_BUFFER_SIZE   - Replay buffer size per session (characters)
            PANEMUX_REPLAY_DELAY      - Replay delay for new listeners (seconds)
            PANEMUX_IDLE_TIMEOUT      - Idle timeout (seconds); enables the sweeper
            PANEMUX_SWEEP_INTERVAL    - Seconds between idle sweeps

        Env values are strings; pydantic coerces them and raises
        ``ValidationError`` naming the offending field when one is malformed.
        """
        load_dotenv()

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        shell = config_data.get("shell", {})
        env_shell = os.environ.get("PANEMUX_SHELL")
        if env_shell:
            shell["command"] = env_shell
        if shell:
            config_data["shell"] = shell

        session = config_data.get("session", {})

        env_buffer = os.environ.get("PANEMUX_MAX_BUFFER_SIZE")
        if env_buffer:
            session["max_buffer_size"] = env_buffer

        env_replay_delay = os.environ.get("PANEMUX_REPLAY_DELAY")
        if env_replay_delay:
            session["replay_delay"] = env_replay_delay

        env_idle_timeout = os.environ.get("PANEMUX_IDLE_TIMEOUT")
        if env_idle_timeout:
            session["idle_timeout"] = env_idle_timeout

        env_sweep_interval = os.environ.get("PANEMUX_SWEEP_INTERVAL")
        if env_sweep_interval:
            session["sweep_interval"] = env_sweep_interval

        if session:
            config_data["session"] = session

        return cls.model_validate(config_data)

    def build_registry(self, spawner: PtySpawner | None = None) -> SessionRegistry:
        """Construct a registry from this config.

        Uses the POSIX ``ProcessSpawner`` unless a spawner is given. The idle
        sweeper is not started here; it needs a running loop.
        """
        from panemux.session.registry import SessionRegistry

        if spawner is None:
            from panemux.pty.process import ProcessSpawner

            spawner = ProcessSpawner()

        return SessionRegistry(
            spawner,
            shell=self.shell.command,
            shell_args=self.shell.args,
            term_name=self.shell.term_name,
            max_buffer_size=self.session.max_buffer_size,
            replay_delay=self.session.replay_delay,
        )
