"""
Turn schema — the narrative unit of the log.

A Turn is created once per action resolution, finalized by the turn
recorder, appended to the turn log, and never modified afterwards. Its
turn_id matches the turn_id of every Delta produced during the same turn.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .event import TurnEvent


class GameTime(BaseModel):
    day: int = Field(default=1, ge=1)
    time_of_day: Literal["morning", "afternoon", "evening", "night"] = "morning"
    tick: int = 0  # Abstract in-game clock


class Turn(BaseModel):
    turn_id: int = Field(ge=1)
    turn_number: int = Field(default=1, ge=1)  # Position within the scene
    actor: str  # "player", "gm", or an NPC id
    scene_id: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    game_time: GameTime = Field(default_factory=GameTime)
    events: list[TurnEvent] = Field(default_factory=list)
    narration: str | None = None

    @property
    def event_summary(self) -> list[str]:
        """Human-readable summary of events for quick display."""
        return [f"[{e.type}] {e.summary}" for e in self.events if e.summary]
