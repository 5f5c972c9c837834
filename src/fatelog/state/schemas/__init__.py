"""
Record schemas for the fatelog session logs.

Two parallel streams are persisted per session:

    Turn  — narrative unit (actor, scene, ordered TurnEvents)
    Delta — atomic state mutation tagged with the turn that produced it

Both are Pydantic models and are validated before they are written.
"""

from .delta import (
    Delta,
    DeltaOperation,
    DeltaTarget,
    KNOWN_OPERATIONS,
    KNOWN_TARGETS,
)
from .event import (
    AspectCompelledEvent,
    AspectCreatedEvent,
    AspectInvokedEvent,
    BaseTurnEvent,
    CharacterDefeatedEvent,
    CharacterMovedEvent,
    ConflictEndedEvent,
    ConflictStartedEvent,
    ConsequenceTakenEvent,
    DiceRolledEvent,
    FatePointEvent,
    NarrativeEvent,
    SceneChangedEvent,
    StressTakenEvent,
    SystemMessageEvent,
    TurnEvent,
    WorldEventTriggered,
    turn_event_adapter,
)
from .turn import GameTime, Turn

__all__ = [
    # Deltas
    "Delta",
    "DeltaOperation",
    "DeltaTarget",
    "KNOWN_OPERATIONS",
    "KNOWN_TARGETS",
    # Turns
    "GameTime",
    "Turn",
    # Events
    "TurnEvent",
    "BaseTurnEvent",
    "NarrativeEvent",
    "DiceRolledEvent",
    "AspectCreatedEvent",
    "AspectInvokedEvent",
    "AspectCompelledEvent",
    "StressTakenEvent",
    "ConsequenceTakenEvent",
    "CharacterDefeatedEvent",
    "ConflictStartedEvent",
    "ConflictEndedEvent",
    "SceneChangedEvent",
    "CharacterMovedEvent",
    "FatePointEvent",
    "WorldEventTriggered",
    "SystemMessageEvent",
    "turn_event_adapter",
]
