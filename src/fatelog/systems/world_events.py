"""
World events: scheduled, random and conditional happenings.

Triggers are checked once per call, normally once per turn:
- time: fires once the session reaches trigger.turn
- random: fires with probability trigger.chance, drawn from the session's
  per-turn seeded generator so a replayed session fires the same events
- condition: fires when a comparison against world state holds

Conditions are a single comparison:
    fact:<key> <op> <number>           established_facts[key]
    reputation:<faction_id> <op> <number>   factions[faction_id].reputation
with <op> one of < <= > >= == !=.
"""

from __future__ import annotations

import logging
import operator
import re
from typing import TYPE_CHECKING

from ..state.schema import Aspect, WorldEvent, WorldState
from ..state.schemas.delta import DeltaOperation, DeltaTarget
from ..state.schemas.event import WorldEventTriggered

if TYPE_CHECKING:
    from ..state.manager import GameSession

logger = logging.getLogger(__name__)

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_CONDITION_RE = re.compile(r"^\s*(fact|reputation):([\w.-]+)\s*(<=|>=|==|!=|<|>)\s*(-?\d+(?:\.\d+)?)\s*$")


def parse_condition(condition: str) -> tuple[str, str, str, float]:
    """Split a condition into (kind, key, op, number). Raises ValueError."""
    match = _CONDITION_RE.match(condition or "")
    if not match:
        raise ValueError(f"Unsupported world event condition: {condition!r}")
    kind, key, op, number = match.groups()
    return kind, key, op, float(number)


def evaluate_condition(condition: str, world: WorldState) -> bool:
    """Missing facts/factions and non-numeric facts compare as False."""
    kind, key, op, number = parse_condition(condition)
    if kind == "fact":
        value = world.established_facts.get(key)
    else:
        faction = world.factions.get(key)
        value = faction.reputation if faction else None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return _OPERATORS[op](value, number)


def _should_trigger(event: WorldEvent, session: "GameSession", world: WorldState, turn: int) -> bool:
    trigger = event.trigger
    if trigger.type == "time":
        return trigger.turn is not None and turn >= trigger.turn
    if trigger.type == "random":
        return session.rng().random() < (trigger.chance or 0.0)
    try:
        return evaluate_condition(trigger.condition, world)
    except ValueError as e:
        logger.warning(f"World event {event.id} never fires: {e}")
        return False


def process_world_events(session: "GameSession") -> list[WorldEvent]:
    """
    Fire every active, untriggered event whose trigger holds.

    Effects are applied as world deltas and each fired event is marked
    triggered and recorded as a world_event TurnEvent. Needs an open turn.
    """
    state = session.state
    turn = session.pending_turn_id or state.turn
    fired = []

    for i, event in enumerate(state.world.events):
        if not event.active or event.triggered:
            continue
        if not _should_trigger(event, session, state.world, turn):
            continue

        recorded = session.add_event(WorldEventTriggered(
            actor="world",
            world_event_id=event.id,
            name=event.name,
            summary=event.description or event.name,
        ))
        for effect in event.effects:
            if effect.type == "aspect_add" and effect.aspect_name:
                aspect = Aspect(name=effect.aspect_name, source=f"world_event:{event.id}")
                session.mutate(
                    DeltaTarget.WORLD, DeltaOperation.APPEND, ["aspects"], aspect.model_dump(mode="json"),
                    cause="world_event", event_id=recorded.event_id,
                )
            elif effect.type == "fact_set" and effect.key:
                session.mutate(
                    DeltaTarget.WORLD, DeltaOperation.SET, ["established_facts", effect.key], effect.value,
                    cause="world_event", event_id=recorded.event_id,
                )
        session.mutate(
            DeltaTarget.WORLD, DeltaOperation.SET, ["events", i, "triggered"], True,
            cause="world_event", event_id=recorded.event_id,
        )
        fired.append(event)
        logger.info(f"World event fired: {event.name}")

    return fired


def add_world_event(session: "GameSession", event: WorldEvent) -> WorldEvent:
    """Schedule a new event. Conditions are checked up front."""
    if event.trigger.type == "condition":
        parse_condition(event.trigger.condition)
    session.mutate(
        DeltaTarget.WORLD, DeltaOperation.APPEND, ["events"], event.model_dump(mode="json"),
        cause="event_creation",
    )
    return event
