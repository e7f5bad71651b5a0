"""PTY capability: the process primitive sessions run on.

``handle`` defines the contracts the engine consumes; ``process`` is the
POSIX implementation (pseudo-terminal pair, own process group, async reader).
"""

from panemux.pty.handle import (
    Disposable,
    PtyHandle,
    PtySpawner,
    SpawnOptions,
    default_shell,
    shell_environment,
)

__all__ = [
    "Disposable",
    "PtyHandle",
    "PtySpawner",
    "SpawnOptions",
    "default_shell",
    "shell_environment",
]
