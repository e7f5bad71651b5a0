"""Tests for panemux.session.session.PtySession."""

from __future__ import annotations

import asyncio

from conftest import FakePty

from panemux.session.session import PtySession, SessionStatus


def _session(max_buffer_size: int = 100_000) -> tuple[PtySession, FakePty, list[int]]:
    handle = FakePty()
    session = PtySession("s1", "/repo", handle, max_buffer_size=max_buffer_size)
    exits: list[int] = []
    session.start(lambda s, code: exits.append(code))
    return session, handle, exits


# ---------------------------------------------------------------------------
# Data subscription invariant
# ---------------------------------------------------------------------------


class TestSubscriptionInvariant:
    def test_no_subscription_without_listeners(self) -> None:
        session, handle, _ = _session()
        assert session.subscription_count == 0
        assert handle.data_subscribers == 0

    def test_single_subscription_for_many_listeners(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        session.attach("b", lambda d: None)
        session.attach("a", lambda d: None)  # re-attach
        assert session.subscription_count == 1
        assert handle.data_subscribers == 1

    def test_released_when_last_listener_detaches(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        session.attach("b", lambda d: None)
        session.detach("a")
        assert handle.data_subscribers == 1
        session.detach("b")
        assert session.subscription_count == 0
        assert handle.data_subscribers == 0

    def test_released_when_last_listener_fails(self) -> None:
        session, handle, _ = _session()

        def dead(_: str) -> None:
            raise BrokenPipeError()

        session.attach("a", dead)
        handle.emit("x")
        assert len(session.listeners) == 0
        assert handle.data_subscribers == 0

    def test_resubscribes_after_release(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        session.detach("a")
        session.attach("b", lambda d: None)
        assert handle.data_subscribers == 1


# ---------------------------------------------------------------------------
# Buffering and replay
# ---------------------------------------------------------------------------


class TestReplay:
    def test_immediate_replay_of_buffer(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        handle.emit("hello\n")
        received: list[str] = []
        session.attach("b", received.append)
        assert received == ["hello\n"]

    def test_empty_buffer_not_replayed(self) -> None:
        session, _, _ = _session()
        received: list[str] = []
        session.attach("a", received.append)
        assert received == []

    def test_skip_replay(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        handle.emit("old")
        received: list[str] = []
        session.attach("b", received.append, skip_replay=True)
        handle.emit("new")
        assert received == ["new"]

    def test_replay_is_single_call(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        for chunk in ("1", "2", "3"):
            handle.emit(chunk)
        received: list[str] = []
        session.attach("b", received.append)
        assert received == ["123"]

    def test_output_while_detached_is_not_buffered(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        handle.emit("seen ")
        session.detach("a")
        handle.emit("missed ")
        received: list[str] = []
        session.attach("b", received.append)
        handle.emit("live")
        assert received == ["seen ", "live"]

    def test_delayed_replay_precedes_live_data(self) -> None:
        async def scenario() -> list[str]:
            session, handle, _ = _session()
            session.attach("a", lambda d: None)
            handle.emit("before ")
            received: list[str] = []
            session.attach("b", received.append, replay_delay=0.01)
            handle.emit("during ")  # arrives before the replay fires
            assert received == []
            await asyncio.sleep(0.05)
            handle.emit("after")
            return received

        received = asyncio.run(scenario())
        assert received == ["before during ", "after"]

    def test_delayed_replay_cancelled_on_detach(self) -> None:
        async def scenario() -> list[str]:
            session, handle, _ = _session()
            session.attach("a", lambda d: None)
            handle.emit("x")
            received: list[str] = []
            session.attach("b", received.append, replay_delay=0.01)
            session.detach("b")
            await asyncio.sleep(0.05)
            return received

        assert asyncio.run(scenario()) == []


# ---------------------------------------------------------------------------
# Exit
# ---------------------------------------------------------------------------


class TestClose:
    def test_close_notifies_and_releases(self) -> None:
        session, handle, _ = _session()
        codes: list[int] = []
        session.attach("a", lambda d: None, on_exit=codes.append)
        assert session.close(7) is True
        assert codes == [7]
        assert session.status == SessionStatus.EXITED
        assert session.exit_code == 7
        assert len(session.listeners) == 0
        assert handle.data_subscribers == 0
        assert handle.exit_subscribers == 0

    def test_close_only_once(self) -> None:
        session, _, _ = _session()
        codes: list[int] = []
        session.attach("a", lambda d: None, on_exit=codes.append)
        session.close(0)
        assert session.close(1) is False
        assert codes == [0]

    def test_start_wires_exit(self) -> None:
        session, handle, exits = _session()
        assert session.status == SessionStatus.RUNNING
        handle.exit(5)
        assert exits == [5]

    def test_summary(self) -> None:
        session, handle, _ = _session()
        session.attach("a", lambda d: None)
        handle.emit("abc")
        summary = session.summary()
        assert summary.id == "s1"
        assert summary.workspace_path == "/repo"
        assert summary.listener_count == 1
        assert summary.buffered_size == 3
        assert summary.to_dict()["workspacePath"] == "/repo"
