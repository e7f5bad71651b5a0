"""Result values returned across the registry's public boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from panemux.errors import ErrorKind


@dataclass(frozen=True)
class StartResult:
    success: bool
    session_id: str | None = None
    is_new: bool = False
    error: str | None = None
    kind: ErrorKind | None = None

    @classmethod
    def started(cls, session_id: str, is_new: bool) -> StartResult:
        return cls(success=True, session_id=session_id, is_new=is_new)

    @classmethod
    def failed(cls, error: str) -> StartResult:
        return cls(success=False, error=error, kind=ErrorKind.SPAWN_FAILURE)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: ``{success, sessionId, isNew}`` or ``{success, error}``."""
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, "sessionId": self.session_id, "isNew": self.is_new}


@dataclass(frozen=True)
class CommandResult:
    success: bool
    error: str | None = None
    kind: ErrorKind | None = None

    @classmethod
    def ok(cls) -> CommandResult:
        return cls(success=True)

    @classmethod
    def not_found(cls) -> CommandResult:
        return cls(success=False, error=str(ErrorKind.NOT_FOUND), kind=ErrorKind.NOT_FOUND)

    @classmethod
    def failed(cls, kind: ErrorKind, error: str) -> CommandResult:
        return cls(success=False, error=error, kind=kind)

    @property
    def not_found_error(self) -> bool:
        return self.kind is ErrorKind.NOT_FOUND

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True}
        return {"success": False, "error": self.error}
