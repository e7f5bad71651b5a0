"""Session multiplexing engine.

Shell sessions keyed by (workspace, pane) identity, with output fanned out
to any number of listeners and a bounded buffer replayed on (re)attach.
"""

from panemux.session.buffer import OutputBuffer
from panemux.session.identity import deterministic, fresh, session_identity
from panemux.session.listeners import Listener, ListenerSet
from panemux.session.registry import TERMINATED_EXIT_CODE, SessionRegistry
from panemux.session.results import CommandResult, StartResult
from panemux.session.session import PtySession, SessionStatus, SessionSummary

__all__ = [
    "OutputBuffer",
    "deterministic",
    "fresh",
    "session_identity",
    "Listener",
    "ListenerSet",
    "PtySession",
    "SessionStatus",
    "SessionSummary",
    "SessionRegistry",
    "TERMINATED_EXIT_CODE",
    "StartResult",
    "CommandResult",
]
