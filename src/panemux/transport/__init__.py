"""Transport adapters: clients of the session registry."""

from panemux.transport.bridge import ShellBridge
from panemux.transport.wire import EventType, Wire, WireEvent

__all__ = ["ShellBridge", "EventType", "Wire", "WireEvent"]
