"""Tests for the conflict state machine."""

import pytest

from fatelog.state import ConflictType, EventBus, EventType, SessionManager, Side, Winner
from fatelog.systems.conflict import ConflictError, ConflictManager, is_player_taken_out


@pytest.fixture
def conflicts(session):
    session.begin_turn()
    return ConflictManager(session)


@pytest.fixture
def fight(conflicts):
    """Physical conflict: hero against both thugs."""
    conflicts.start_conflict(ConflictType.PHYSICAL, opponents=["thug1", "thug2"], name="Dock Brawl")
    return conflicts


class TestStartConflict:
    def test_turn_order_and_sides(self, fight):
        conflict = fight.conflict
        assert conflict.turn_order == ["hero", "thug1", "thug2"]
        assert conflict.participant("hero").side == Side.PLAYER
        assert conflict.participant("thug2").side == Side.OPPOSITION
        assert conflict.current_exchange == 1
        assert fight.current_actor() == "hero"

    def test_allies_follow_player(self, session, conflicts, thugs):
        conflicts.start_conflict(ConflictType.SOCIAL, opponents=["thug1"], allies=["thug2"])
        assert conflicts.conflict.turn_order == ["hero", "thug2", "thug1"]
        assert conflicts.conflict.participant("thug2").side == Side.PLAYER

    def test_recorded_as_delta(self, fight, session):
        [delta] = session.pending_deltas
        assert delta.dotted_path == "scene.conflict"
        assert delta.cause == "conflict_started"

    def test_already_in_progress(self, fight):
        with pytest.raises(ConflictError):
            fight.start_conflict(ConflictType.PHYSICAL, opponents=["thug1"])

    def test_needs_opponents(self, conflicts):
        with pytest.raises(ConflictError):
            conflicts.start_conflict(ConflictType.PHYSICAL, opponents=[])

    def test_unknown_character(self, conflicts):
        with pytest.raises(ConflictError):
            conflicts.start_conflict(ConflictType.PHYSICAL, opponents=["kraken"])

    def test_no_scene(self, manager, player):
        session = manager.create_session(player)
        session.begin_turn()
        with pytest.raises(ConflictError):
            ConflictManager(session).start_conflict(ConflictType.PHYSICAL, opponents=["x"])

    def test_emits_event(self, memory_store, player, thugs, scene):
        bus = EventBus()
        session = SessionManager(memory_store, bus=bus).create_session(player, npcs=thugs, scene=scene)
        session.begin_turn()
        ConflictManager(session).start_conflict(ConflictType.PHYSICAL, opponents=["thug1"])
        [event] = bus.get_history(EventType.CONFLICT_STARTED)
        assert event.data["participants"] == ["hero", "thug1"]


class TestTurnOrder:
    def test_next_turn_advances(self, fight):
        assert fight.next_turn() == "thug1"
        assert fight.next_turn() == "thug2"

    def test_wrap_starts_new_exchange(self, fight):
        """Wrapping resets has_acted and bumps the exchange."""
        fight.mark_acted("hero")
        fight.next_turn()
        fight.mark_acted("thug1")
        fight.next_turn()
        assert fight.next_turn() == "hero"

        conflict = fight.conflict
        assert conflict.current_exchange == 2
        assert not any(p.has_acted for p in conflict.participants)

    def test_conceded_not_skipped(self, fight):
        fight.concede("thug1")
        assert fight.next_turn() == "thug1"


class TestHits:
    def test_hit_marks_stress(self, fight, session):
        plan = fight.apply_hit("thug1", 2, attacker_id="hero")
        assert plan.boxes == [0, 1]
        track = session.state.npcs["thug1"].stress_tracks[0]
        assert track.boxes == [True, True, False]

    def test_hit_adds_consequence(self, fight, session):
        fight.apply_hit("hero", 5)
        player = session.state.player
        assert all(player.stress_tracks[0].boxes)
        assert [c.severity.value for c in player.consequences] == ["mild"]

    def test_social_conflict_hits_mental_track(self, conflicts, session):
        conflicts.start_conflict(ConflictType.SOCIAL, opponents=["thug1"])
        conflicts.apply_hit("thug1", 1)
        thug = session.state.npcs["thug1"]
        assert thug.track("mental").boxes[0] is True
        assert not any(thug.track("physical").boxes)

    def test_overwhelming_hit_takes_out(self, fight):
        plan = fight.apply_hit("thug1", 20, attacker_id="hero")
        assert plan.taken_out
        assert fight.conflict.participant("thug1").is_taken_out

    def test_non_participant(self, conflicts, session):
        conflicts.start_conflict(ConflictType.PHYSICAL, opponents=["thug1"])
        with pytest.raises(ConflictError):
            conflicts.apply_hit("thug2", 1)


class TestResolution:
    def test_ongoing(self, fight):
        assert fight.check_resolution().resolved is False

    def test_player_wins_when_opponents_out(self, fight):
        fight.take_out("thug1", victor="hero")
        fight.concede("thug2")
        resolution = fight.check_resolution()
        assert resolution.resolved
        assert resolution.winner == Winner.PLAYER
        assert fight.conflict.is_resolved
        assert not fight.in_conflict

    def test_player_concede_loses(self, fight):
        fight.concede("hero")
        assert fight.check_resolution().winner == Winner.OPPOSITION

    def test_player_taken_out_by_consequences(self, fight, session):
        """Full track plus three consequences ends the fight for the opposition."""
        fight.apply_hit("hero", 3)
        fight.apply_hit("hero", 2)
        fight.apply_hit("hero", 4)
        fight.apply_hit("hero", 6)
        assert is_player_taken_out(session.state.player, ConflictType.PHYSICAL)
        assert fight.check_resolution().winner == Winner.OPPOSITION

    def test_resolved_conflict_is_terminal(self, fight):
        fight.end_conflict(Winner.DRAW, "Both sides withdraw")
        with pytest.raises(ConflictError):
            fight.next_turn()
        assert fight.check_resolution().winner == Winner.DRAW

    def test_end_clears_stress(self, fight, session):
        fight.apply_hit("hero", 2)
        fight.end_conflict(Winner.PLAYER, clear_stress=True)
        assert not any(session.state.player.stress_tracks[0].boxes)

    def test_counted_in_meta(self, fight, session, memory_store):
        fight.end_conflict(Winner.PLAYER)
        session.commit_turn()
        assert memory_store.load_meta(session.session_id).stats.conflicts_resolved == 1

    def test_conflict_replays(self, fight, session, manager):
        """The whole fight is rebuilt from the delta log."""
        fight.apply_hit("thug1", 2)
        fight.next_turn()
        session.commit_turn()
        assert manager.load_session(session.session_id).state == session.state
