"""Per-session registry of output/exit listeners."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

DataCallback = Callable[[str], None]
ExitCallback = Callable[[int], None]


@dataclass
class Listener:
    """A transport-side subscriber to one session.

    ``replay_pending`` is set while the buffered output is still owed to this
    listener; live data skips it until the replay has been delivered.
    """

    id: str
    on_data: DataCallback
    on_exit: ExitCallback | None = None
    replay_pending: bool = field(default=False)


class ListenerSet:
    """Ordered mapping of ``listener_id -> Listener`` with failure-isolating fanout.

    A callback that raises is treated as a dead connection: the listener is
    removed and fanout continues with the remaining ones.
    """

    def __init__(self, session_id: str = "") -> None:
        self._session_id = session_id
        self._listeners: dict[str, Listener] = {}

    def add(self, listener: Listener) -> Listener | None:
        """Register ``listener``, replacing any prior one with the same id.

        Returns the replaced listener, if any.
        """
        previous = self._listeners.pop(listener.id, None)
        self._listeners[listener.id] = listener
        return previous

    def remove(self, listener_id: str) -> bool:
        return self._listeners.pop(listener_id, None) is not None

    def get(self, listener_id: str) -> Listener | None:
        return self._listeners.get(listener_id)

    def clear(self) -> None:
        self._listeners.clear()

    def dispatch_data(self, chunk: str) -> list[str]:
        """Deliver ``chunk`` to every ready listener, in registration order.

        Returns the ids of listeners dropped because their callback failed.
        A callback may detach other listeners or end the session; listeners
        no longer registered when their turn comes are skipped.
        """
        dropped: list[str] = []
        for listener in list(self._listeners.values()):
            if self._listeners.get(listener.id) is not listener:
                continue
            if listener.replay_pending:
                continue
            if not self.deliver(listener, chunk):
                dropped.append(listener.id)
        return dropped

    def deliver(self, listener: Listener, chunk: str) -> bool:
        """Send one chunk to one listener; drop the listener if it fails."""
        try:
            listener.on_data(chunk)
            return True
        except Exception as e:
            logger.warning(
                "Dropping listener %s of session %s: delivery failed: %s",
                listener.id,
                self._session_id,
                e,
            )
            # Only drop the entry if it was not replaced in the meantime
            if self._listeners.get(listener.id) is listener:
                del self._listeners[listener.id]
            return False

    def dispatch_exit(self, exit_code: int) -> None:
        """Invoke every exit callback once. Failures are logged and ignored."""
        for listener in list(self._listeners.values()):
            if listener.on_exit is None:
                continue
            try:
                listener.on_exit(exit_code)
            except Exception:
                logger.exception(
                    "Error in exit callback of listener %s (session %s)",
                    listener.id,
                    self._session_id,
                )

    @property
    def ids(self) -> list[str]:
        return list(self._listeners)

    def __contains__(self, listener_id: object) -> bool:
        return listener_id in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)

    def __bool__(self) -> bool:
        return bool(self._listeners)
