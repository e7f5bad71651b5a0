"""Error taxonomy for the session engine.

Exceptions are raised inside the PTY and transport layers. The registry turns
them into result values at its public boundary, so callers only ever see
``StartResult`` / ``CommandResult`` objects.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.StrEnum):
    """Error codes carried in failed results."""

    NOT_FOUND = "NotFound"
    SPAWN_FAILURE = "SpawnFailure"
    WRITE_FAILURE = "WriteFailure"
    RESIZE_FAILURE = "ResizeFailure"


class PanemuxError(Exception):
    """Base class for all panemux errors."""


class SpawnFailure(PanemuxError):
    """The PTY process could not be created (bad cwd, missing shell, ...)."""


class DeliveryFailure(PanemuxError):
    """A listener could not receive output."""


class ConnectionClosed(DeliveryFailure):
    """The listener's transport connection is gone."""
