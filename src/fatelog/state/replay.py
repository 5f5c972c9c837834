"""
Replay engine: time travel over a session's delta log.

The engine keeps a private GameState and never writes to the store, so
stepping through history cannot disturb a live session.

Cost is asymmetric. Deltas carry no inverse, so:
- step_forward applies one turn's deltas to the working state (O(1) per turn)
- step_backward / go_to_turn rebuild from the nearest snapshot at or before
  the target and replay the tail (O(distance to that snapshot))
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .deltas import apply_deltas, path_matches
from .event_bus import EventBus, EventType
from .schema import GameState
from .schemas.turn import Turn
from .snapshots import SnapshotStore
from .store import SessionStore, TurnNotFoundError

logger = logging.getLogger(__name__)


class BreakReason(str, Enum):
    BREAKPOINT = "breakpoint"
    WATCH = "watch"
    END = "end"
    INTERRUPTED = "interrupted"


@dataclass
class ReplayStep:
    """Where the engine stands after a step or jump."""
    turn: int
    state: GameState
    turn_record: Turn | None = None
    changed_paths: list[str] = field(default_factory=list)
    break_reason: BreakReason | None = None
    watched_path: str | None = None  # Watch that fired, for BreakReason.WATCH


def _changed_paths(deltas) -> list[str]:
    paths: list[str] = []
    for delta in deltas:
        path = delta.dotted_path
        if path not in paths:
            paths.append(path)
    return paths


class ReplayEngine:
    """
    Step through a session's history.

    Usage:
        engine = ReplayEngine(store, snapshots, session_id)
        engine.set_breakpoint(12)
        engine.watch_path("player.fate_points")
        step = engine.run_until_break()
        if step.break_reason == BreakReason.WATCH:
            print(step.turn, step.watched_path, step.changed_paths)
    """

    def __init__(
        self,
        store: SessionStore,
        snapshots: SnapshotStore,
        session_id: str,
        bus: EventBus | None = None,
    ):
        self.store = store
        self.snapshots = snapshots
        self.session_id = session_id
        self.bus = bus

        self._latest = store.latest_turn(session_id)
        self._state = store.load_genesis(session_id)
        self._turn = 0
        self._breakpoints: set[int] = set()
        self._watched: list[str] = []

    # ─── Position ───────────────────────────────────────────────

    @property
    def current_turn(self) -> int:
        return self._turn

    @property
    def total_turns(self) -> int:
        return self._latest

    @property
    def state(self) -> GameState:
        """Copy of the working state."""
        return self._state.model_copy(deep=True)

    @property
    def at_end(self) -> bool:
        return self._turn >= self._latest

    def refresh(self) -> int:
        """Pick up turns committed since the engine was created."""
        self._latest = self.store.latest_turn(self.session_id)
        return self._latest

    # ─── Breakpoints and watches ────────────────────────────────

    @property
    def breakpoints(self) -> list[int]:
        return sorted(self._breakpoints)

    @property
    def watched_paths(self) -> list[str]:
        return list(self._watched)

    def set_breakpoint(self, turn: int) -> None:
        self._breakpoints.add(turn)

    def clear_breakpoint(self, turn: int) -> None:
        self._breakpoints.discard(turn)

    def watch_path(self, path: str) -> None:
        """Break when a turn changes this dotted path or anything under it."""
        if path not in self._watched:
            self._watched.append(path)

    def unwatch_path(self, path: str) -> None:
        if path in self._watched:
            self._watched.remove(path)

    # ─── Movement ───────────────────────────────────────────────

    def _turn_record(self, turn: int) -> Turn | None:
        if turn < 1:
            return None
        records = self.store.read_turns(self.session_id, turn, turn)
        return records[0] if records else None

    def _emit(self, event_type: EventType, step: ReplayStep) -> None:
        if self.bus:
            self.bus.emit(
                event_type,
                session_id=self.session_id,
                turn=step.turn,
                changed_paths=step.changed_paths,
                break_reason=step.break_reason.value if step.break_reason else None,
            )

    def step_forward(self) -> ReplayStep:
        """Apply the next turn's deltas, in sequence order."""
        if self.at_end:
            return ReplayStep(turn=self._turn, state=self.state, break_reason=BreakReason.END)

        next_turn = self._turn + 1
        deltas = self.store.read_deltas(self.session_id, next_turn, next_turn)
        self._state = apply_deltas(self._state, deltas)
        self._turn = next_turn

        step = ReplayStep(
            turn=next_turn,
            state=self.state,
            turn_record=self._turn_record(next_turn),
            changed_paths=_changed_paths(deltas),
        )
        logger.debug(f"Replay {self.session_id}: stepped to turn {next_turn} ({len(deltas)} deltas)")
        self._emit(EventType.REPLAY_STEPPED, step)
        return step

    def step_backward(self) -> ReplayStep:
        """Rebuild the previous turn from the nearest snapshot."""
        if self._turn == 0:
            return ReplayStep(turn=0, state=self.state)
        return self.go_to_turn(self._turn - 1)

    def go_to_turn(self, turn: int) -> ReplayStep:
        """
        Jump to the state after `turn` (0 = genesis).

        Raises:
            TurnNotFoundError: turn is outside [0, latest turn]
        """
        self.refresh()
        if not 0 <= turn <= self._latest:
            raise TurnNotFoundError(turn, self._latest)

        snapshot = self.snapshots.load_nearest_snapshot(self.session_id, turn)
        if self._turn <= turn and snapshot.turn_id <= self._turn:
            # Nothing closer than where we already are
            start_state, start_turn = self._state, self._turn
        else:
            start_state, start_turn = snapshot.state, snapshot.turn_id

        tail = self.store.read_deltas(self.session_id, start_turn + 1, turn)
        self._state = apply_deltas(start_state, tail)
        self._turn = turn

        if turn > start_turn:
            own = [d for d in tail if d.turn_id == turn]
        else:
            own = self.store.read_deltas(self.session_id, turn, turn) if turn > 0 else []

        step = ReplayStep(
            turn=turn,
            state=self.state,
            turn_record=self._turn_record(turn),
            changed_paths=_changed_paths(own),
        )
        logger.debug(f"Replay {self.session_id}: jumped to turn {turn} from {start_turn}")
        self._emit(EventType.REPLAY_STEPPED, step)
        return step

    def reset(self) -> ReplayStep:
        """Back to genesis."""
        return self.go_to_turn(0)

    def run_until_break(
        self,
        should_stop: Callable[[], bool] | None = None,
        max_steps: int | None = None,
    ) -> ReplayStep:
        """
        Step forward until a breakpoint turn or a watched path change.

        The caller can interrupt between steps with should_stop() or bound
        the walk with max_steps; both report BreakReason.INTERRUPTED.
        """
        self.refresh()
        step = ReplayStep(turn=self._turn, state=self.state)
        steps = 0

        while True:
            if self.at_end:
                step.break_reason = BreakReason.END
                break
            if (should_stop and should_stop()) or (max_steps is not None and steps >= max_steps):
                step.break_reason = BreakReason.INTERRUPTED
                break

            step = self.step_forward()
            steps += 1

            if step.turn in self._breakpoints:
                step.break_reason = BreakReason.BREAKPOINT
                break
            watched = self._first_watch_hit(step.changed_paths)
            if watched:
                step.break_reason = BreakReason.WATCH
                step.watched_path = watched
                break

        logger.debug(f"Replay {self.session_id}: {step.break_reason.value} at turn {step.turn}")
        self._emit(EventType.REPLAY_BREAK, step)
        return step

    def _first_watch_hit(self, changed_paths: list[str]) -> str | None:
        for watched in self._watched:
            for changed in changed_paths:
                # A change at or under the watch, or a parent replaced wholesale
                if path_matches(watched, changed) or path_matches(changed, watched):
                    return watched
        return None
