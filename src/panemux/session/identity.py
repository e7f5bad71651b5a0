"""Session identity: deterministic and forced-unique session keys."""

from __future__ import annotations

import hashlib
import secrets

ID_LENGTH = 16


def deterministic(workspace_path: str, pane_id: str | None = None) -> str:
    """Stable id for a (workspace, pane) pair.

    The same pair always maps to the same id, so a remounted pane finds its
    running shell again. The pane id is part of the hashed key; two panes of
    one workspace never share a PTY. The NUL separator cannot occur in a
    path, so no (workspace, pane) pair collides with another one.
    """
    key = workspace_path if pane_id is None else f"{workspace_path}\0{pane_id}"
    return hashlib.sha256(key.encode()).hexdigest()[:ID_LENGTH]


def fresh() -> str:
    """Random id (128 bits) for a session that must not collide with any other."""
    return secrets.token_hex(16)


def session_identity(
    workspace_path: str, pane_id: str | None = None, force_new: bool = False
) -> str:
    if force_new:
        return fresh()
    return deterministic(workspace_path, pane_id)
