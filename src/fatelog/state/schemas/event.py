"""
TurnEvent schemas — what happened during a turn, as a closed tagged union.

Events are narrative records. They never mutate state; the deltas
produced alongside them do. Each event kind is its own model keyed by a
literal `type`, so a turn record either validates completely or is
rejected at the log-write boundary.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..schema import Aspect, Consequence, ConflictType, TrackType, Winner


class BaseTurnEvent(BaseModel):
    event_id: str = ""  # "{session_id}-{turn_id}-{sequence}", assigned by the recorder
    turn_id: int = 0
    sequence: int = 0
    actor: str = ""
    summary: str = ""  # Human-readable line for feeds and narration fallbacks
    timestamp: datetime = Field(default_factory=datetime.now)


class NarrativeEvent(BaseTurnEvent):
    type: Literal["narrative"] = "narrative"
    text: str
    speaker: str | None = None


class DiceRolledEvent(BaseTurnEvent):
    type: Literal["dice_rolled"] = "dice_rolled"
    action: str = "overcome"
    skill: str | None = None
    skill_rank: int = 0
    dice: list[int]
    roll_total: int
    invoke_bonus: int = 0
    total: int
    difficulty: int
    difficulty_name: str
    shifts: int
    outcome: str


class AspectCreatedEvent(BaseTurnEvent):
    type: Literal["aspect_created"] = "aspect_created"
    aspect: Aspect
    owner: str  # Character id, "scene", or zone id


class AspectInvokedEvent(BaseTurnEvent):
    type: Literal["aspect_invoked"] = "aspect_invoked"
    aspect_id: str
    aspect_name: str
    effect: Literal["+2", "reroll"]
    fate_point_spent: bool


class AspectCompelledEvent(BaseTurnEvent):
    type: Literal["aspect_compelled"] = "aspect_compelled"
    aspect_id: str
    aspect_name: str
    target: str
    complication: str
    accepted: bool


class StressTakenEvent(BaseTurnEvent):
    type: Literal["stress_taken"] = "stress_taken"
    character_id: str
    track_type: TrackType
    boxes: int
    remaining_boxes: int


class ConsequenceTakenEvent(BaseTurnEvent):
    type: Literal["consequence_taken"] = "consequence_taken"
    character_id: str
    consequence: Consequence
    shifts_absorbed: int


class CharacterDefeatedEvent(BaseTurnEvent):
    type: Literal["character_defeated"] = "character_defeated"
    character_id: str
    method: Literal["taken_out", "conceded"]
    victor: str | None = None


class ConflictStartedEvent(BaseTurnEvent):
    type: Literal["conflict_started"] = "conflict_started"
    conflict_id: str
    conflict_type: ConflictType
    participants: list[str]


class ConflictEndedEvent(BaseTurnEvent):
    type: Literal["conflict_ended"] = "conflict_ended"
    conflict_id: str
    winner: Winner
    resolution: str = ""


class SceneChangedEvent(BaseTurnEvent):
    type: Literal["scene_changed"] = "scene_changed"
    previous_scene_id: str | None = None
    new_scene_id: str
    scene_name: str
    location_id: str = ""


class CharacterMovedEvent(BaseTurnEvent):
    type: Literal["character_moved"] = "character_moved"
    character_id: str
    from_zone_id: str | None
    to_zone_id: str
    cost_shifts: int = 0


class FatePointEvent(BaseTurnEvent):
    type: Literal["fate_point"] = "fate_point"
    character_id: str
    change: int
    reason: str
    new_total: int


class WorldEventTriggered(BaseTurnEvent):
    type: Literal["world_event"] = "world_event"
    world_event_id: str
    name: str


class SystemMessageEvent(BaseTurnEvent):
    type: Literal["system_message"] = "system_message"
    level: Literal["info", "warning", "error"] = "info"
    message: str


TurnEvent = Annotated[
    Union[
        NarrativeEvent,
        DiceRolledEvent,
        AspectCreatedEvent,
        AspectInvokedEvent,
        AspectCompelledEvent,
        StressTakenEvent,
        ConsequenceTakenEvent,
        CharacterDefeatedEvent,
        ConflictStartedEvent,
        ConflictEndedEvent,
        SceneChangedEvent,
        CharacterMovedEvent,
        FatePointEvent,
        WorldEventTriggered,
        SystemMessageEvent,
    ],
    Field(discriminator="type"),
]

turn_event_adapter: TypeAdapter[TurnEvent] = TypeAdapter(TurnEvent)
