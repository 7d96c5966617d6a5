import asyncio

import pytest

from wasessions.session.registry import SessionRegistry
from wasessions.session.state import SessionState, SessionTracker


def test_registry_put_replaces_and_remove_clears_retries():
    registry = SessionRegistry()
    first, second = object(), object()

    assert registry.put("u1_a", first) is None
    assert registry.put("u1_a", second) is first
    assert registry.get("u1_a") is second
    assert registry.ids() == ["u1_a"]
    assert len(registry) == 1

    registry.should_reconnect("u1_a")
    assert registry.remove("u1_a") is second
    assert registry.remove("u1_a") is None
    assert not registry.exists("u1_a")
    assert registry.retries("u1_a") == 0


def test_should_reconnect_stops_at_ceiling():
    registry = SessionRegistry(max_retries=5)

    granted = [registry.should_reconnect("u1_a") for _ in range(7)]

    assert granted == [True, True, True, True, True, False, False]
    assert registry.retries("u1_a") == 5
    registry.reset_retries("u1_a")
    assert registry.retries("u1_a") == 0
    assert registry.should_reconnect("u1_a")


def test_registries_are_independent():
    left, right = SessionRegistry(), SessionRegistry()
    left.put("u1_a", object())
    left.should_reconnect("u1_a")

    assert not right.exists("u1_a")
    assert right.retries("u1_a") == 0


@pytest.mark.asyncio
async def test_set_reconnect_cancels_previous_task():
    registry = SessionRegistry()
    older = asyncio.create_task(asyncio.sleep(10))
    newer = asyncio.create_task(asyncio.sleep(10))

    registry.set_reconnect("u1_a", older)
    registry.set_reconnect("u1_a", newer)
    await asyncio.sleep(0)

    assert older.cancelled()
    assert registry.reconnect_pending("u1_a")
    registry.clear_reconnect("u1_a", older)
    assert registry.reconnect_pending("u1_a")
    assert registry.pop_reconnect("u1_a") is newer
    assert not registry.reconnect_pending("u1_a")
    newer.cancel()


def test_tracker_follows_lifecycle():
    tracker = SessionTracker()
    assert tracker.state is SessionState.INITIALIZING

    for state in (
        SessionState.CONNECTING,
        SessionState.AWAITING_QR,
        SessionState.AWAITING_QR,
        SessionState.CONNECTING,
        SessionState.OPEN,
        SessionState.CLOSING_TERMINAL,
        SessionState.DELETED,
    ):
        tracker.transition(state)

    assert tracker.state is SessionState.DELETED
    assert tracker.state.is_closing


@pytest.mark.parametrize(
    "path, invalid",
    [
        ((), SessionState.OPEN),
        ((SessionState.CONNECTING, SessionState.OPEN), SessionState.AWAITING_QR),
        ((SessionState.CONNECTING, SessionState.CLOSING_RETRY), SessionState.OPEN),
        ((SessionState.DELETED,), SessionState.CONNECTING),
    ],
)
def test_tracker_rejects_invalid_transitions(path, invalid):
    tracker = SessionTracker()
    for state in path:
        tracker.transition(state)

    assert not tracker.can_transition(invalid)
    with pytest.raises(ValueError):
        tracker.transition(invalid)
