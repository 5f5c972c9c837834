"""
Turn recorder for fatelog's event-sourced session engine.

Owns the phase state machine for a single turn:
    IDLE → OPEN → COMMITTING → IDLE

While a turn is OPEN, every TurnEvent and Delta produced by the rules is
stamped with the turn's id and a 1-based sequence. Finalizing hands back
the immutable Turn record and its ordered deltas for the log; aborting
drops both.

Usage:
    recorder = TurnRecorder(session_id)
    recorder.begin(turn_id=4, actor="player")
    event = recorder.record_event(NarrativeEvent(text="You step inside."))
    recorder.record_delta("player", "set", ["current_location"], "", "inn", event_id=event.event_id)
    turn, deltas = recorder.finalize(narration="...")
    ... write to the log ...
    recorder.close()
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from ..state.deltas import DeltaCollector
from ..state.schemas.delta import Delta
from ..state.schemas.event import BaseTurnEvent
from ..state.schemas.turn import GameTime, Turn


class TurnPhase(str, Enum):
    """Phase state machine for a single turn."""
    IDLE = "idle"              # No turn in progress
    OPEN = "open"              # Collecting events and deltas
    COMMITTING = "committing"  # Records handed out, being written


# Valid phase transitions: each phase maps to allowed next phases
VALID_TRANSITIONS: dict[TurnPhase, set[TurnPhase]] = {
    TurnPhase.IDLE: {TurnPhase.OPEN},
    TurnPhase.OPEN: {TurnPhase.COMMITTING, TurnPhase.IDLE},  # Can abort
    TurnPhase.COMMITTING: {TurnPhase.IDLE},
}


class TurnError(Exception):
    """Error during turn processing."""
    pass


class InvalidPhaseError(TurnError):
    """Attempted operation not valid in current phase."""
    def __init__(self, current: TurnPhase, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} during {current.value} phase."
        )


class StaleSessionError(TurnError):
    """Session's log may no longer match its in-memory state."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} has a partially written turn in its log. "
            "Reload it with SessionManager.load_session()."
        )


class TurnRecorder:
    """
    Collects one turn's records. Records, never applies.

    Responsibilities:
    - Phase state machine enforcement
    - Event and delta identity (turn_id, sequence, ids)

    NOT responsible for:
    - Applying deltas (GameSession)
    - Writing the log (SessionStore)
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._phase = TurnPhase.IDLE
        self._turn: Turn | None = None
        self._collector: DeltaCollector | None = None

    @property
    def phase(self) -> TurnPhase:
        """Current phase of the turn state machine."""
        return self._phase

    @property
    def turn_id(self) -> int | None:
        """Id of the turn being recorded, if any."""
        return self._turn.turn_id if self._turn else None

    @property
    def pending_deltas(self) -> list[Delta]:
        return self._collector.get_deltas() if self._collector else []

    def _transition(self, to: TurnPhase, attempted: str) -> None:
        if to not in VALID_TRANSITIONS[self._phase]:
            raise InvalidPhaseError(self._phase, attempted)
        self._phase = to

    def _require_open(self, attempted: str) -> None:
        if self._phase != TurnPhase.OPEN:
            raise InvalidPhaseError(self._phase, attempted)

    def begin(
        self,
        turn_id: int,
        actor: str = "player",
        scene_id: str = "",
        game_time: GameTime | None = None,
        turn_number: int = 1,
    ) -> Turn:
        """Open a new turn."""
        self._transition(TurnPhase.OPEN, "begin a turn")
        self._turn = Turn(
            turn_id=turn_id,
            turn_number=turn_number,
            actor=actor,
            scene_id=scene_id,
            game_time=game_time or GameTime(),
        )
        self._collector = DeltaCollector(self.session_id, turn_id)
        return self._turn

    def record_event(self, event: BaseTurnEvent) -> BaseTurnEvent:
        """
        Stamp an event with this turn's identity and queue it.

        Returns the stamped copy; the caller's object is left untouched.
        """
        self._require_open("record an event")
        sequence = len(self._turn.events) + 1
        stamped = event.model_copy(update={
            "event_id": f"{self.session_id}-{self._turn.turn_id}-{sequence}",
            "turn_id": self._turn.turn_id,
            "sequence": sequence,
            "actor": event.actor or self._turn.actor,
            "timestamp": datetime.now(),
        })
        self._turn.events.append(stamped)
        return stamped

    def record_delta(
        self,
        target: str,
        operation: str,
        path: list[str | int],
        previous_value: Any,
        new_value: Any,
        cause: str = "",
        event_id: str = "",
    ) -> Delta:
        self._require_open("record a delta")
        return self._collector.collect(
            target, operation, path, previous_value, new_value, cause=cause, event_id=event_id
        )

    def discard_last_delta(self) -> Delta:
        """Drop the most recent delta (it failed to apply)."""
        self._require_open("discard a delta")
        return self._collector.pop()

    def finalize(self, narration: str | None = None) -> tuple[Turn, list[Delta]]:
        """Freeze the turn and hand back its records for writing."""
        self._transition(TurnPhase.COMMITTING, "finalize a turn")
        turn = self._turn.model_copy(update={"narration": narration, "timestamp": datetime.now()})
        return turn, self._collector.get_deltas()

    def close(self) -> None:
        """Return to IDLE after the records are written."""
        if self._phase != TurnPhase.COMMITTING:
            raise InvalidPhaseError(self._phase, "close a turn")
        self._reset()

    def abort(self) -> None:
        """Drop the open turn and everything recorded in it."""
        if self._phase == TurnPhase.IDLE:
            raise InvalidPhaseError(self._phase, "abort a turn")
        self._reset()

    def _reset(self) -> None:
        self._phase = TurnPhase.IDLE
        self._turn = None
        self._collector = None
