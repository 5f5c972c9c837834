"""Tests for the caller-owned event bus."""

from fatelog.state import EventBus, EventType, GameEvent


class TestEventBus:
    """Test subscription and emission."""

    def test_handler_receives_event(self):
        bus = EventBus()
        received = []
        bus.on(EventType.TURN_COMMITTED, received.append)

        event = bus.emit(EventType.TURN_COMMITTED, session_id="s1", turn=4, delta_count=2)

        assert received == [event]
        assert isinstance(event, GameEvent)
        assert event.data == {"delta_count": 2}
        assert event.turn == 4

    def test_only_matching_type(self):
        bus = EventBus()
        received = []
        bus.on(EventType.SNAPSHOT_SAVED, received.append)
        bus.emit(EventType.TURN_COMMITTED)
        assert received == []

    def test_duplicate_subscription_ignored(self):
        bus = EventBus()
        handler = lambda e: None  # noqa: E731
        bus.on(EventType.TURN_COMMITTED, handler)
        bus.on(EventType.TURN_COMMITTED, handler)
        assert bus.listener_count(EventType.TURN_COMMITTED) == 1

    def test_off(self):
        bus = EventBus()
        received = []
        bus.on(EventType.TURN_COMMITTED, received.append)
        bus.off(EventType.TURN_COMMITTED, received.append)
        bus.emit(EventType.TURN_COMMITTED)
        assert received == []

    def test_failing_handler_does_not_stop_others(self, caplog):
        """A raising listener is logged; later listeners still run."""
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.on(EventType.CONFLICT_STARTED, broken)
        bus.on(EventType.CONFLICT_STARTED, received.append)
        bus.emit(EventType.CONFLICT_STARTED)

        assert len(received) == 1
        assert "Error in handler" in caplog.text

    def test_history_limit(self):
        bus = EventBus(history_limit=3)
        for turn in range(5):
            bus.emit(EventType.REPLAY_STEPPED, turn=turn)
        assert [e.turn for e in bus.get_history()] == [2, 3, 4]

    def test_history_filter(self):
        bus = EventBus()
        bus.emit(EventType.REPLAY_STEPPED)
        bus.emit(EventType.REPLAY_BREAK)
        assert len(bus.get_history(EventType.REPLAY_BREAK)) == 1

    def test_buses_are_independent(self):
        """No shared global state between buses."""
        a, b = EventBus(), EventBus()
        a.on(EventType.TURN_COMMITTED, lambda e: None)
        a.emit(EventType.TURN_COMMITTED)
        assert b.listener_count(EventType.TURN_COMMITTED) == 0
        assert b.get_history() == []

    def test_clear(self):
        bus = EventBus()
        bus.on(EventType.TURN_COMMITTED, lambda e: None)
        bus.clear()
        assert bus.listener_count(EventType.TURN_COMMITTED) == 0
