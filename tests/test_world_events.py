"""Tests for scheduled, random and conditional world events."""

import pytest

from fatelog.state import WorldEvent, WorldState
from fatelog.state.schema import Faction, WorldEventEffect, WorldEventTrigger
from fatelog.systems.world_events import (
    add_world_event,
    evaluate_condition,
    parse_condition,
    process_world_events,
)


def event(trigger, effects=(), name="Event"):
    return WorldEvent(name=name, trigger=WorldEventTrigger(**trigger), effects=list(effects))


def run_turn(session):
    session.begin_turn()
    fired = process_world_events(session)
    session.commit_turn()
    return fired


class TestConditions:
    def test_parse(self):
        assert parse_condition("fact:alarm >= 3") == ("fact", "alarm", ">=", 3.0)
        assert parse_condition("reputation:guild<-10") == ("reputation", "guild", "<", -10.0)

    @pytest.mark.parametrize("condition", ["alarm > 3", "fact:alarm ~ 3", "fact:alarm > high", ""])
    def test_malformed(self, condition):
        with pytest.raises(ValueError):
            parse_condition(condition)

    def test_evaluate_fact(self):
        world = WorldState(established_facts={"alarm": 4})
        assert evaluate_condition("fact:alarm >= 3", world)
        assert not evaluate_condition("fact:alarm < 3", world)

    def test_missing_or_non_numeric_fact_is_false(self):
        world = WorldState(established_facts={"mood": "grim", "flag": True})
        assert not evaluate_condition("fact:absent == 0", world)
        assert not evaluate_condition("fact:mood == 0", world)
        assert not evaluate_condition("fact:flag == 1", world)

    def test_evaluate_reputation(self):
        world = WorldState(factions={"guild": Faction(id="guild", name="Thieves Guild", reputation=-20)})
        assert evaluate_condition("reputation:guild < -10", world)
        assert not evaluate_condition("reputation:navy < 0", world)


class TestTriggers:
    def test_time_trigger(self, manager, player):
        world = WorldState(events=[event(
            {"type": "time", "turn": 2},
            [WorldEventEffect(type="aspect_add", aspect_name="Harbor Ablaze")],
            name="Fire",
        )])
        session = manager.create_session(player, world=world, seed=1)

        assert run_turn(session) == []
        assert [e.name for e in run_turn(session)] == ["Fire"]
        assert run_turn(session) == []

        state = session.state
        assert state.world.events[0].triggered
        assert [a.name for a in state.world.aspects] == ["Harbor Ablaze"]

    def test_condition_trigger_sets_fact(self, session):
        session.begin_turn()
        add_world_event(session, event(
            {"type": "condition", "condition": "fact:alarm >= 3"},
            [WorldEventEffect(type="fact_set", key="guards_alerted", value=True)],
        ))
        session.mutate("world", "set", ["established_facts", "alarm"], 2)
        assert process_world_events(session) == []

        session.mutate("world", "set", ["established_facts", "alarm"], 3)
        assert len(process_world_events(session)) == 1
        assert session.state.world.established_facts["guards_alerted"] is True

    def test_add_rejects_bad_condition(self, session):
        session.begin_turn()
        with pytest.raises(ValueError):
            add_world_event(session, event({"type": "condition", "condition": "whenever"}))
        assert session.pending_deltas == []

    def test_bad_genesis_condition_never_fires(self, manager, player, caplog):
        world = WorldState(events=[event({"type": "condition", "condition": "whenever"})])
        session = manager.create_session(player, world=world)
        assert run_turn(session) == []
        assert "never fires" in caplog.text

    def test_inactive_event_skipped(self, manager, player):
        inactive = event({"type": "time", "turn": 1}).model_copy(update={"active": False})
        session = manager.create_session(player, world=WorldState(events=[inactive]))
        assert run_turn(session) == []

    @pytest.mark.parametrize("chance,fires", [(1.0, True), (0.0, False)])
    def test_random_extremes(self, manager, player, chance, fires):
        world = WorldState(events=[event({"type": "random", "chance": chance})])
        session = manager.create_session(player, world=world)
        assert bool(run_turn(session)) is fires

    def test_random_is_seeded(self, manager, player):
        """The same seed fires random events on the same turns."""
        def firing_turns(seed):
            world = WorldState(events=[event({"type": "random", "chance": 0.3}, name=f"e{i}") for i in range(8)])
            session = manager.create_session(player, world=world, seed=seed)
            return [[e.name for e in run_turn(session)] for _ in range(5)]

        assert firing_turns(77) == firing_turns(77)

    def test_fired_event_recorded(self, manager, player):
        world = WorldState(events=[event({"type": "time", "turn": 1}, name="Dawn Bell")])
        session = manager.create_session(player, world=world)
        session.begin_turn()
        process_world_events(session)
        turn = session.commit_turn()
        assert [e.type for e in turn.events] == ["world_event"]
        assert turn.events[0].name == "Dawn Bell"
