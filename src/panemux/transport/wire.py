"""Wire: decouples the session engine from the clients that render it.

Shell output and lifecycle events flow from the engine to client
subscribers. A desktop IPC bridge, a pipe-mode CLI or a network relay can
all read from the same wire.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any

from panemux.errors import ConnectionClosed


class EventType(enum.Enum):
    SHELL_OUTPUT = "shell:output"
    SHELL_EXIT = "shell:exit"
    RESPONSE = "response"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire.

    ``request`` names the request a RESPONSE answers, ``id`` echoes the
    request id so clients can match replies.
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    request: str | None = None

    @property
    def message_type(self) -> str:
        if self.type is EventType.RESPONSE and self.request:
            return f"{self.request}:response"
        return self.type.value

    def to_message(self) -> dict[str, Any]:
        """JSON-ready ``{type, payload, id}`` message."""
        message: dict[str, Any] = {"type": self.message_type, "payload": self.data}
        if self.id is not None:
            message["id"] = self.id
        return message


class Wire:
    """Async message bus: engine -> client subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def deliver(self, event: WireEvent) -> None:
        """Like ``send``, but raises ``ConnectionClosed`` once the wire is closed.

        Used as a listener sink, so the engine drops listeners whose wire
        has gone away.
        """
        if self._closed:
            raise ConnectionClosed("wire is closed")
        self.send(event)

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
