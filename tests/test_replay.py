"""Tests for the replay engine."""

import pytest

from fatelog.state import (
    BreakReason,
    EventBus,
    EventType,
    ReplayEngine,
    TurnNotFoundError,
    apply_deltas,
)


@pytest.fixture
def engine(session, memory_store, snapshot_store, play):
    """Replay engine over a 25-turn session (snapshots at 10 and 20)."""
    play(session, 25)
    return ReplayEngine(memory_store, snapshot_store, session.session_id)


def replay_from_genesis(store, session_id, turn):
    return apply_deltas(store.load_genesis(session_id), store.read_deltas(session_id, 1, turn))


class TestReplayPosition:
    """Test stepping and jumping."""

    def test_starts_at_genesis(self, engine):
        assert engine.current_turn == 0
        assert engine.total_turns == 25
        assert engine.state.turn == 0

    def test_step_forward(self, engine):
        """Stepping applies exactly the next turn's deltas."""
        step = engine.step_forward()
        assert step.turn == 1
        assert step.state.turn == 1
        assert step.turn_record.turn_id == 1
        assert step.changed_paths == ["player.fate_points.refresh", "session.turn"]

    def test_step_forward_at_end(self, engine):
        engine.go_to_turn(25)
        step = engine.step_forward()
        assert step.break_reason == BreakReason.END
        assert step.turn == 25

    def test_snapshot_and_genesis_replay_agree(self, engine, memory_store, session):
        """Jumping via a snapshot gives the same state as replaying from genesis."""
        for turn in (9, 10, 17, 20, 25):
            step = engine.go_to_turn(turn)
            assert step.state == replay_from_genesis(memory_store, session.session_id, turn)

    def test_step_backward(self, engine, memory_store, session):
        engine.go_to_turn(12)
        step = engine.step_backward()
        assert step.turn == 11
        assert step.state == replay_from_genesis(memory_store, session.session_id, 11)

    def test_step_backward_at_genesis(self, engine):
        step = engine.step_backward()
        assert step.turn == 0

    def test_reset(self, engine):
        engine.go_to_turn(14)
        assert engine.reset().state.turn == 0

    def test_out_of_range(self, engine):
        with pytest.raises(TurnNotFoundError):
            engine.go_to_turn(26)
        with pytest.raises(TurnNotFoundError):
            engine.go_to_turn(-1)

    def test_replay_never_writes(self, engine, memory_store, session):
        """Moving around history leaves the log untouched."""
        before = memory_store.read_deltas(session.session_id, 1, 25)
        engine.go_to_turn(20)
        engine.step_backward()
        engine.run_until_break()
        assert memory_store.read_deltas(session.session_id, 1, 25) == before
        assert memory_store.latest_turn(session.session_id) == 25

    def test_refresh_sees_new_turns(self, engine, session, play):
        play(session, 2)
        assert engine.refresh() == 27


class TestReplayBreaks:
    """Test run_until_break."""

    def test_runs_to_end(self, engine):
        step = engine.run_until_break()
        assert step.break_reason == BreakReason.END
        assert step.turn == 25

    def test_breakpoint(self, engine):
        engine.set_breakpoint(7)
        step = engine.run_until_break()
        assert step.break_reason == BreakReason.BREAKPOINT
        assert step.turn == 7

    def test_cleared_breakpoint(self, engine):
        engine.set_breakpoint(7)
        engine.clear_breakpoint(7)
        assert engine.breakpoints == []
        assert engine.run_until_break().break_reason == BreakReason.END

    def test_watch_fires_on_change(self, session, memory_store, snapshot_store, play):
        """A watch breaks on the first turn that touches the path."""
        play(session, 3)
        session.begin_turn()
        session.mutate("player", "set", ["name"], "Mara the Bold")
        session.commit_turn()
        play(session, 2)

        engine = ReplayEngine(memory_store, snapshot_store, session.session_id)
        engine.watch_path("player.name")
        step = engine.run_until_break()
        assert step.break_reason == BreakReason.WATCH
        assert step.turn == 4
        assert step.watched_path == "player.name"

    def test_watch_matches_parent_replacement(self, session, memory_store, snapshot_store):
        """Replacing a parent object counts as a change to a watched child."""
        session.begin_turn()
        session.mutate("player", "set", ["fate_points"], {"current": 1, "refresh": 3})
        session.commit_turn()

        engine = ReplayEngine(memory_store, snapshot_store, session.session_id)
        engine.watch_path("player.fate_points.current")
        assert engine.run_until_break().break_reason == BreakReason.WATCH

    def test_unwatch(self, engine):
        engine.watch_path("session.turn")
        engine.unwatch_path("session.turn")
        assert engine.watched_paths == []

    def test_breakpoint_reported_before_watch(self, engine):
        engine.set_breakpoint(1)
        engine.watch_path("session.turn")
        assert engine.run_until_break().break_reason == BreakReason.BREAKPOINT

    def test_max_steps_interrupts(self, engine):
        step = engine.run_until_break(max_steps=2)
        assert step.break_reason == BreakReason.INTERRUPTED
        assert step.turn == 2

    def test_should_stop_interrupts(self, engine):
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 3

        step = engine.run_until_break(should_stop=should_stop)
        assert step.break_reason == BreakReason.INTERRUPTED
        assert step.turn == 3

    def test_emits_events(self, session, memory_store, snapshot_store, play):
        play(session, 2)
        bus = EventBus()
        breaks = []
        bus.on(EventType.REPLAY_BREAK, breaks.append)

        engine = ReplayEngine(memory_store, snapshot_store, session.session_id, bus=bus)
        engine.run_until_break()
        assert len(bus.get_history(EventType.REPLAY_STEPPED)) == 2
        assert breaks[0].data["break_reason"] == "end"
