"""State management for fatelog sessions."""

from .schema import (
    Aspect,
    AspectType,
    Character,
    CharacterKind,
    ConflictParticipant,
    ConflictState,
    ConflictType,
    Consequence,
    ConsequenceSeverity,
    FatePoints,
    GameState,
    Location,
    SceneState,
    SessionMeta,
    Side,
    StressTrack,
    TrackType,
    Winner,
    WorldEvent,
    WorldState,
    Zone,
    ZoneConnection,
    ZoneMap,
)
from .schemas import Delta, DeltaOperation, DeltaTarget, GameTime, Turn, TurnEvent
from .deltas import (
    DeltaApplicationError,
    DeltaCollector,
    DeltaError,
    InvalidDeltaOperationError,
    InvalidDeltaTargetError,
    apply_delta,
    apply_deltas,
)
from .store import (
    JsonlSessionStore,
    LogWriteError,
    MemorySessionStore,
    SessionNotFoundError,
    SessionStore,
    StoreError,
    TurnNotFoundError,
)
from .snapshots import JsonSnapshotStore, MemorySnapshotStore, Snapshot, SnapshotStore
from .event_bus import EventBus, EventType, GameEvent
from .manager import GameSession, SessionManager
from .replay import BreakReason, ReplayEngine, ReplayStep
from .inspector import StateChange, StateInspector, ValidationIssue, ValidationResult

__all__ = [
    # Schema
    "Aspect",
    "AspectType",
    "Character",
    "CharacterKind",
    "ConflictParticipant",
    "ConflictState",
    "ConflictType",
    "Consequence",
    "ConsequenceSeverity",
    "FatePoints",
    "GameState",
    "Location",
    "SceneState",
    "SessionMeta",
    "Side",
    "StressTrack",
    "TrackType",
    "Winner",
    "WorldEvent",
    "WorldState",
    "Zone",
    "ZoneConnection",
    "ZoneMap",
    # Records
    "Delta",
    "DeltaOperation",
    "DeltaTarget",
    "GameTime",
    "Turn",
    "TurnEvent",
    # Deltas
    "DeltaApplicationError",
    "DeltaCollector",
    "DeltaError",
    "InvalidDeltaOperationError",
    "InvalidDeltaTargetError",
    "apply_delta",
    "apply_deltas",
    # Store
    "JsonlSessionStore",
    "LogWriteError",
    "MemorySessionStore",
    "SessionNotFoundError",
    "SessionStore",
    "StoreError",
    "TurnNotFoundError",
    "JsonSnapshotStore",
    "MemorySnapshotStore",
    "Snapshot",
    "SnapshotStore",
    # Events
    "EventBus",
    "EventType",
    "GameEvent",
    # Sessions
    "GameSession",
    "SessionManager",
    # Replay
    "BreakReason",
    "ReplayEngine",
    "ReplayStep",
    "StateChange",
    "StateInspector",
    "ValidationIssue",
    "ValidationResult",
]
