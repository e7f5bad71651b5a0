"""Bridge between a client connection and the session registry.

A client speaks small ``{type, payload, id}`` messages:

- ``shell:start``     {worktreePath, cols?, rows?, forceNew?, paneId?, skipReplay?}
- ``shell:write``     {sessionId, data}
- ``shell:resize``    {sessionId, cols, rows}
- ``shell:status``    {sessionId}
- ``shell:detach``    {sessionId}
- ``shell:terminate`` {sessionId}

Every request is answered with a ``<type>:response`` event carrying the
registry's result. Output and exit notifications arrive as ``shell:output``
and ``shell:exit`` events.

The bridge attaches to sessions under its ``client_id``. A client that
reconnects with the same id replaces its old listeners in place, and
closing a bridge only detaches: the shells keep running for the next
connection.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from panemux.session.registry import SessionRegistry
from panemux.transport.wire import EventType, WireEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[WireEvent], None]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StartPayload(_Payload):
    worktree_path: str = Field(alias="worktreePath", min_length=1)
    cols: int = Field(default=80, gt=0)
    rows: int = Field(default=30, gt=0)
    force_new: bool = Field(default=False, alias="forceNew")
    pane_id: str | None = Field(default=None, alias="paneId")
    skip_replay: bool = Field(default=False, alias="skipReplay")


class SessionPayload(_Payload):
    session_id: str = Field(alias="sessionId")


class WritePayload(SessionPayload):
    data: str


class ResizePayload(SessionPayload):
    cols: int = Field(gt=0)
    rows: int = Field(gt=0)


class ShellBridge:
    """Translates client messages into registry calls for one client."""

    def __init__(
        self, registry: SessionRegistry, client_id: str, sink: EventSink
    ) -> None:
        self.registry = registry
        self.client_id = client_id
        self._sink = sink
        self._attached: dict[str, Callable[[str], None]] = {}
        self._closed = False
        self._handlers: dict[
            str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
        ] = {
            "shell:start": self._start,
            "shell:write": self._write,
            "shell:resize": self._resize,
            "shell:status": self._status,
            "shell:detach": self._detach,
            "shell:terminate": self._terminate,
        }

    @property
    def attached_sessions(self) -> set[str]:
        return set(self._attached)

    async def handle(self, message: dict[str, Any]) -> None:
        """Dispatch one client message and emit its response."""
        msg_type = message.get("type")
        request_id = message.get("id")
        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            self._emit_error(f"Unknown message type: {msg_type}", request_id)
            return

        try:
            result = await handler(message.get("payload") or {})
        except ValidationError as e:
            self._emit_error(f"Invalid payload for {msg_type}: {e}", request_id)
            return

        self._emit(
            WireEvent(
                type=EventType.RESPONSE,
                data=result,
                id=request_id,
                request=msg_type,
            )
        )

    async def _start(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = StartPayload.model_validate(payload)
        result = await self.registry.start_or_attach(
            req.worktree_path,
            cols=req.cols,
            rows=req.rows,
            force_new=req.force_new,
            pane_id=req.pane_id,
        )
        if result.success and result.session_id is not None:
            self._attach(result.session_id, skip_replay=req.skip_replay)
        return result.to_dict()

    def _attach(self, session_id: str, skip_replay: bool) -> None:
        sink = self._sink

        def on_data(data: str) -> None:
            sink(
                WireEvent(
                    type=EventType.SHELL_OUTPUT,
                    data={"sessionId": session_id, "data": data},
                )
            )

        def on_exit(exit_code: int) -> None:
            self._attached.pop(session_id, None)
            sink(
                WireEvent(
                    type=EventType.SHELL_EXIT,
                    data={"sessionId": session_id, "code": exit_code},
                )
            )

        if self.registry.attach_listener(
            session_id, self.client_id, on_data, on_exit, skip_replay=skip_replay
        ):
            self._attached[session_id] = on_data

    async def _write(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = WritePayload.model_validate(payload)
        return self.registry.write(req.session_id, req.data).to_dict()

    async def _resize(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = ResizePayload.model_validate(payload)
        return self.registry.resize(req.session_id, req.cols, req.rows).to_dict()

    async def _status(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = SessionPayload.model_validate(payload)
        return {"running": self.registry.has_session(req.session_id)}

    async def _detach(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = SessionPayload.model_validate(payload)
        self._attached.pop(req.session_id, None)
        return {"success": self.registry.detach_listener(req.session_id, self.client_id)}

    async def _terminate(self, payload: dict[str, Any]) -> dict[str, Any]:
        req = SessionPayload.model_validate(payload)
        self._attached.pop(req.session_id, None)
        return {"success": self.registry.terminate(req.session_id)}

    def _owns_listener(self, session_id: str, on_data: Callable[[str], None]) -> bool:
        # A newer bridge for the same client may have replaced our listener
        session = self.registry.get(session_id)
        if session is None:
            return False
        listener = session.listeners.get(self.client_id)
        return listener is not None and listener.on_data is on_data

    def _emit(self, event: WireEvent) -> None:
        if self._closed:
            return
        try:
            self._sink(event)
        except Exception as e:
            logger.warning("Client %s unreachable, closing bridge: %s", self.client_id, e)
            self.close()

    def _emit_error(self, error: str, request_id: str | None) -> None:
        self._emit(WireEvent(type=EventType.ERROR, data={"error": error}, id=request_id))

    def close(self) -> None:
        """Detach from every session this client is attached to.

        Sessions keep running; a new bridge with the same ``client_id`` can
        re-attach and gets the buffered output replayed.
        """
        if self._closed:
            return
        self._closed = True
        for session_id, on_data in list(self._attached.items()):
            if self._owns_listener(session_id, on_data):
                self.registry.detach_listener(session_id, self.client_id)
        self._attached.clear()
        logger.debug("Bridge for client %s closed", self.client_id)
