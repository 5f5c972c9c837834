"""
Delta schema — the atom of state evolution.

Every change to GameState is recorded as a Delta before it is applied.
Replaying the ordered delta stream from the genesis state reproduces the
live state exactly, so the delta log (not the state cache) is authoritative.

Deltas encode transitions (previous_value -> new_value), never relative
increments, so replaying the same log twice yields the same result.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DeltaOperation(str, Enum):
    SET = "set"          # Replace the value at path
    APPEND = "append"    # Push new_value onto the list at path
    REMOVE = "remove"    # Delete the key/index at path, or new_value from the list at path


class DeltaTarget(str, Enum):
    """Which part of GameState the path is relative to."""
    SESSION = "session"    # GameState root (turn, session_aspects, current_scene, ...)
    WORLD = "world"
    PLAYER = "player"
    NPC = "npc"            # path[0] is the NPC id
    SCENE = "scene"        # current_scene
    LOCATION = "location"  # world.locations


KNOWN_OPERATIONS = frozenset(op.value for op in DeltaOperation)
KNOWN_TARGETS = frozenset(t.value for t in DeltaTarget)


class Delta(BaseModel):
    """
    One atomic state mutation.

    operation and target are stored as plain strings: a record read back
    from a log with an operation this build does not know must still load,
    so that replay can reject it loudly instead of the reader dropping it.
    The write boundary (DeltaCollector, session stores) only accepts known
    values.
    """
    delta_id: str  # "{session_id}-{turn_id}-{sequence}"
    turn_id: int = Field(ge=1)
    sequence: int = Field(ge=1)  # Order within the turn
    timestamp: datetime = Field(default_factory=datetime.now)

    target: str
    operation: str
    path: list[str | int] = Field(min_length=1)

    previous_value: Any = None
    new_value: Any = None

    cause: str = ""       # Provenance tag: "invoke", "conflict_started", ...
    event_id: str = ""    # TurnEvent that produced this change

    @property
    def dotted_path(self) -> str:
        """Target-qualified path, e.g. 'player.fate_points.current'."""
        return ".".join([self.target, *(str(p) for p in self.path)])

    @property
    def is_known_operation(self) -> bool:
        return self.operation in KNOWN_OPERATIONS

    @property
    def is_known_target(self) -> bool:
        return self.target in KNOWN_TARGETS
