"""
Pydantic models for fatelog game state.

GameState is the complete truth of a session. It is only ever changed by
applying Delta records (see deltas.py), so every model here forbids unknown
fields: a delta that writes somewhere the model does not define fails
validation instead of silently growing the state.

Designed to serialize to JSON; delta paths address the snake_case dump.
"""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator, model_validator


LADDER_MIN = -2
LADDER_MAX = 8


def generate_id() -> str:
    return str(uuid4())[:8]


class StateModel(BaseModel):
    """Base for every model that lives inside GameState."""
    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class AspectType(str, Enum):
    HIGH_CONCEPT = "high_concept"
    TROUBLE = "trouble"
    RELATIONSHIP = "relationship"
    BACKGROUND = "background"
    SITUATIONAL = "situational"
    BOOST = "boost"          # Single free invoke, gone once used


class TrackType(str, Enum):
    PHYSICAL = "physical"
    MENTAL = "mental"


class ConsequenceSeverity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    EXTREME = "extreme"


# Shifts a consequence soaks up when taken
CONSEQUENCE_SHIFT_ABSORB: dict[ConsequenceSeverity, int] = {
    ConsequenceSeverity.MILD: 2,
    ConsequenceSeverity.MODERATE: 4,
    ConsequenceSeverity.SEVERE: 6,
    ConsequenceSeverity.EXTREME: 8,
}


class CharacterKind(str, Enum):
    PLAYER = "player"
    NPC = "npc"


class ConflictType(str, Enum):
    PHYSICAL = "physical"
    MENTAL = "mental"
    SOCIAL = "social"


class Side(str, Enum):
    PLAYER = "player"
    OPPOSITION = "opposition"
    NEUTRAL = "neutral"


class Winner(str, Enum):
    PLAYER = "player"
    OPPOSITION = "opposition"
    DRAW = "draw"


class SceneType(str, Enum):
    EXPLORATION = "exploration"
    SOCIAL = "social"
    CONFLICT = "conflict"
    DOWNTIME = "downtime"


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# -----------------------------------------------------------------------------
# Fate mechanics
# -----------------------------------------------------------------------------

class Aspect(StateModel):
    """A named narrative fact that can be invoked or compelled."""
    id: str = Field(default_factory=generate_id)
    name: str = Field(min_length=1, max_length=100)
    type: AspectType = AspectType.SITUATIONAL
    free_invokes: int = Field(default=0, ge=0)
    description: str = ""
    source: str | None = None  # Who or what created it


class StressTrack(StateModel):
    """Checklist of stress boxes; each box soaks one shift."""
    type: TrackType
    capacity: int = Field(ge=2, le=4)
    boxes: list[bool]

    @classmethod
    def empty(cls, track_type: TrackType, capacity: int = 3) -> "StressTrack":
        return cls(type=track_type, capacity=capacity, boxes=[False] * capacity)

    @model_validator(mode="after")
    def _boxes_match_capacity(self) -> "StressTrack":
        if len(self.boxes) != self.capacity:
            raise ValueError(
                f"{self.type.value} track has {len(self.boxes)} boxes, capacity {self.capacity}"
            )
        return self

    @property
    def is_full(self) -> bool:
        return all(self.boxes)

    @property
    def free_boxes(self) -> list[int]:
        return [i for i, marked in enumerate(self.boxes) if not marked]


class Consequence(StateModel):
    """A lasting injury aspect taken to absorb shifts."""
    id: str = Field(default_factory=generate_id)
    severity: ConsequenceSeverity
    name: str
    recovering: bool = False
    recovery_start_turn: int | None = None

    @property
    def shifts_absorbed(self) -> int:
        return CONSEQUENCE_SHIFT_ABSORB[self.severity]


class FatePoints(StateModel):
    current: int = Field(default=3, ge=0)
    refresh: int = Field(default=3, ge=1)


class Character(StateModel):
    """Player character or NPC. Both follow the same Fate rules."""
    id: str = Field(default_factory=generate_id)
    name: str
    kind: CharacterKind = CharacterKind.NPC

    aspects: list[Aspect] = Field(default_factory=list)
    skills: dict[str, int] = Field(default_factory=dict)  # Skill name -> ladder rank

    stress_tracks: list[StressTrack] = Field(
        default_factory=lambda: [
            StressTrack.empty(TrackType.PHYSICAL),
            StressTrack.empty(TrackType.MENTAL),
        ]
    )
    consequences: list[Consequence] = Field(default_factory=list)
    fate_points: FatePoints = Field(default_factory=FatePoints)

    current_location: str = ""
    is_alive: bool = True

    @field_validator("skills")
    @classmethod
    def _skills_on_ladder(cls, skills: dict[str, int]) -> dict[str, int]:
        for skill, rank in skills.items():
            if not LADDER_MIN <= rank <= LADDER_MAX:
                raise ValueError(f"Skill {skill} rank {rank} is off the ladder")
        return skills

    def skill_rank(self, skill: str | None) -> int:
        """Rank for a skill; untrained skills are Mediocre (+0)."""
        if skill is None:
            return 0
        return self.skills.get(skill, 0)

    def track(self, track_type: TrackType) -> StressTrack | None:
        for track in self.stress_tracks:
            if track.type == track_type:
                return track
        return None

    def find_aspect(self, aspect_id: str) -> Aspect | None:
        for aspect in self.aspects:
            if aspect.id == aspect_id:
                return aspect
        return None


# -----------------------------------------------------------------------------
# Zones and conflicts
# -----------------------------------------------------------------------------

class Zone(StateModel):
    id: str
    name: str
    description: str = ""
    aspects: list[Aspect] = Field(default_factory=list)
    character_ids: list[str] = Field(default_factory=list)


class ZoneConnection(StateModel):
    """Unordered link between two zones."""
    from_zone_id: str
    to_zone_id: str
    barrier: int = Field(default=0, ge=0)  # Difficulty to cross in combat; 0 = free
    description: str = ""
    aspects: list[Aspect] = Field(default_factory=list)

    def links(self, zone_a: str, zone_b: str) -> bool:
        return {self.from_zone_id, self.to_zone_id} == {zone_a, zone_b}


class ZoneMap(StateModel):
    zones: list[Zone] = Field(default_factory=list)
    connections: list[ZoneConnection] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_zone_per_character(self) -> "ZoneMap":
        seen: dict[str, str] = {}
        for zone in self.zones:
            for character_id in zone.character_ids:
                if character_id in seen:
                    raise ValueError(
                        f"Character {character_id} is in both {seen[character_id]} and {zone.id}"
                    )
                seen[character_id] = zone.id
        return self

    def get_zone(self, zone_id: str) -> Zone | None:
        for zone in self.zones:
            if zone.id == zone_id:
                return zone
        return None

    def zone_index(self, zone_id: str) -> int:
        for i, zone in enumerate(self.zones):
            if zone.id == zone_id:
                return i
        raise KeyError(zone_id)

    def zone_of(self, character_id: str) -> Zone | None:
        for zone in self.zones:
            if character_id in zone.character_ids:
                return zone
        return None

    def connection_between(self, zone_a: str, zone_b: str) -> ZoneConnection | None:
        for connection in self.connections:
            if connection.links(zone_a, zone_b):
                return connection
        return None


class ConflictParticipant(StateModel):
    character_id: str
    side: Side
    has_acted: bool = False
    has_conceded: bool = False
    is_taken_out: bool = False

    @property
    def is_active(self) -> bool:
        return not (self.has_conceded or self.is_taken_out)


class ConflictState(StateModel):
    """
    An ongoing conflict.

    forming (constructed) -> active (turns progressing) -> resolved (terminal).
    turn_order is fixed when the conflict starts.
    """
    id: str = Field(default_factory=generate_id)
    type: ConflictType
    name: str = ""
    aspects: list[Aspect] = Field(default_factory=list)
    participants: list[ConflictParticipant] = Field(default_factory=list)
    turn_order: list[str] = Field(default_factory=list)
    current_turn_index: int = Field(default=0, ge=0)
    current_exchange: int = Field(default=1, ge=1)
    is_resolved: bool = False
    winner: Winner | None = None
    resolution: str | None = None

    def participant(self, character_id: str) -> ConflictParticipant | None:
        for p in self.participants:
            if p.character_id == character_id:
                return p
        return None

    def participant_index(self, character_id: str) -> int:
        for i, p in enumerate(self.participants):
            if p.character_id == character_id:
                return i
        raise KeyError(character_id)

    def side_members(self, side: Side, active_only: bool = False) -> list[ConflictParticipant]:
        return [
            p for p in self.participants
            if p.side == side and (p.is_active or not active_only)
        ]

    @property
    def current_actor(self) -> str | None:
        if not self.turn_order:
            return None
        return self.turn_order[self.current_turn_index]


class SceneState(StateModel):
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    location_id: str = ""
    aspects: list[Aspect] = Field(default_factory=list)
    type: SceneType = SceneType.EXPLORATION
    start_turn: int = 0
    end_turn: int | None = None
    zones: ZoneMap | None = None
    conflict: ConflictState | None = None


# -----------------------------------------------------------------------------
# World
# -----------------------------------------------------------------------------

class Theme(StateModel):
    name: str = "default"
    genre: str = ""
    tone: str = ""


class Location(StateModel):
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    aspects: list[Aspect] = Field(default_factory=list)
    connections: list[str] = Field(default_factory=list)  # Location ids
    present_npcs: list[str] = Field(default_factory=list)
    discovered: bool = False


class Faction(StateModel):
    id: str = Field(default_factory=generate_id)
    name: str
    aspects: list[Aspect] = Field(default_factory=list)
    reputation: int = Field(default=0, ge=-100, le=100)  # Player standing


class Quest(StateModel):
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    status: QuestStatus = QuestStatus.ACTIVE
    objectives: list[str] = Field(default_factory=list)
    completed_objectives: list[str] = Field(default_factory=list)


class WorldTime(StateModel):
    value: str = "1"
    period: str | None = None  # "dawn", "night", ...


class WorldEventTrigger(StateModel):
    type: Literal["time", "random", "condition"]
    turn: int | None = None          # time: fires at or after this turn
    chance: float | None = Field(default=None, ge=0.0, le=1.0)  # random
    condition: str | None = None     # condition: "fact:<key> <op> <number>"


class WorldEventEffect(StateModel):
    type: Literal["aspect_add", "fact_set"]
    aspect_name: str | None = None
    key: str | None = None
    value: JsonValue = None


class WorldEvent(StateModel):
    id: str = Field(default_factory=generate_id)
    name: str
    description: str = ""
    trigger: WorldEventTrigger
    effects: list[WorldEventEffect] = Field(default_factory=list)
    active: bool = True
    triggered: bool = False


class WorldState(StateModel):
    theme: Theme = Field(default_factory=Theme)
    locations: dict[str, Location] = Field(default_factory=dict)
    factions: dict[str, Faction] = Field(default_factory=dict)
    aspects: list[Aspect] = Field(default_factory=list)
    quests: list[Quest] = Field(default_factory=list)
    time: WorldTime = Field(default_factory=WorldTime)
    established_facts: dict[str, JsonValue] = Field(default_factory=dict)
    events: list[WorldEvent] = Field(default_factory=list)


class GameState(StateModel):
    """
    Complete state of a session.

    Owned by the session and changed only through delta application.
    The seed drives every random draw so replay is deterministic.
    """
    session_id: str
    turn: int = Field(default=0, ge=0)
    world: WorldState = Field(default_factory=WorldState)
    player: Character
    npcs: dict[str, Character] = Field(default_factory=dict)
    current_scene: SceneState | None = None
    session_aspects: list[Aspect] = Field(default_factory=list)
    seed: int = 0

    def character(self, character_id: str) -> Character:
        """Player or NPC by id. Raises KeyError if unknown."""
        if self.player.id == character_id:
            return self.player
        if character_id in self.npcs:
            return self.npcs[character_id]
        raise KeyError(character_id)


# -----------------------------------------------------------------------------
# Session metadata (session.meta.json)
# -----------------------------------------------------------------------------

class SessionFiles(BaseModel):
    genesis_state: str = "genesis.state.json"
    world_state: str = "world.state.json"
    player_state: str = "player.state.json"
    turns_dir: str = "turns"
    deltas_dir: str = "deltas"
    snapshots_dir: str = "snapshots"


class SessionStats(BaseModel):
    total_turns: int = 0
    total_deltas: int = 0
    total_snapshots: int = 0
    conflicts_resolved: int = 0
    npcs_encountered: int = 0


class SessionMeta(BaseModel):
    """Descriptive metadata. Never authoritative over the logs."""
    id: str
    name: str = "Untitled Session"
    theme: str = "default"
    player_name: str = ""
    character_name: str = ""
    current_turn: int = 0
    current_scene_id: str | None = None
    chunk_size: int = Field(default=100, ge=1)
    schema_version: str = "1.0.0"

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    last_played_at: datetime = Field(default_factory=datetime.now)

    files: SessionFiles = Field(default_factory=SessionFiles)
    stats: SessionStats = Field(default_factory=SessionStats)
