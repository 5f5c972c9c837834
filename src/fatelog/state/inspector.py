"""
Read-only inspection of a session's history.

Answers questions a debugger or test needs: what was the state at turn N,
what differs between two states, which deltas touched a path, and whether
a session's logs, snapshots and cache agree with each other.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .deltas import DeltaError, apply_deltas, path_matches
from .schema import GameState
from .schemas.delta import Delta
from .snapshots import SnapshotStore
from .store import SessionStore, TurnNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class StateChange:
    """One differing leaf (or whole container) between two states."""
    path: str
    before: Any
    after: Any


@dataclass
class ValidationIssue:
    kind: str  # turn_gap, orphan_delta, sequence_gap, replay_error, snapshot_mismatch, cache_mismatch
    message: str
    turn: int | None = None


@dataclass
class ValidationResult:
    valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    turns_checked: int = 0
    deltas_checked: int = 0


# Root keys of the GameState dump, renamed to delta target vocabulary
_ROOT_ALIASES = {"npcs": "npc", "current_scene": "scene"}


def _root_path(key: str) -> str:
    if key in _ROOT_ALIASES:
        return _ROOT_ALIASES[key]
    if key in ("world", "player"):
        return key
    return f"session.{key}"


def _diff(before: Any, after: Any, path: str, changes: list[StateChange]) -> None:
    if isinstance(before, dict) and isinstance(after, dict):
        for key in list(before) + [k for k in after if k not in before]:
            _diff(before.get(key), after.get(key), f"{path}.{key}", changes)
    elif isinstance(before, list) and isinstance(after, list) and len(before) == len(after):
        for i, (b, a) in enumerate(zip(before, after)):
            _diff(b, a, f"{path}.{i}", changes)
    elif before != after:
        changes.append(StateChange(path=path, before=before, after=after))


class StateInspector:
    """Read-only queries over a session's logs and snapshots."""

    def __init__(self, store: SessionStore, snapshots: SnapshotStore):
        self.store = store
        self.snapshots = snapshots

    def get_state_at_turn(self, session_id: str, turn: int) -> GameState:
        """State after `turn` (0 = genesis). Raises TurnNotFoundError out of range."""
        latest = self.store.latest_turn(session_id)
        if not 0 <= turn <= latest:
            raise TurnNotFoundError(turn, latest)
        snapshot = self.snapshots.load_nearest_snapshot(session_id, turn)
        tail = self.store.read_deltas(session_id, snapshot.turn_id + 1, turn)
        return apply_deltas(snapshot.state, tail)

    @staticmethod
    def diff_states(before: GameState, after: GameState) -> list[StateChange]:
        """
        Leaf-level differences, with paths in changed-path form.

        world.locations.<id>.name is reported as location.<id>.name to match
        delta paths. Lists of different length are reported whole.
        """
        before_dump = before.model_dump(mode="json")
        after_dump = after.model_dump(mode="json")
        changes: list[StateChange] = []
        for key in before_dump:
            if key == "world":
                world_b, world_a = before_dump["world"], after_dump["world"]
                for wkey in world_b:
                    path = "location" if wkey == "locations" else f"world.{wkey}"
                    _diff(world_b[wkey], world_a[wkey], path, changes)
            else:
                _diff(before_dump[key], after_dump[key], _root_path(key), changes)
        return changes

    def find_deltas_for_path(
        self,
        session_id: str,
        path: str,
        start: int = 1,
        end: int | None = None,
    ) -> list[Delta]:
        """Deltas that changed `path`, something under it, or a parent of it."""
        if end is None:
            end = self.store.latest_turn(session_id)
        return [
            d for d in self.store.read_deltas(session_id, start, end)
            if path_matches(path, d.dotted_path) or path_matches(d.dotted_path, path)
        ]

    def validate_session(self, session_id: str) -> ValidationResult:
        """
        Cross-check a session's records.

        - Turn ids run 1..latest without gaps or duplicates
        - Every delta belongs to a logged turn, with sequences 1..k per turn
        - Replaying from genesis succeeds and matches every stored snapshot
        - The current-state cache matches the replayed tip
        """
        latest = self.store.latest_turn(session_id)
        turns = self.store.read_turns(session_id, 1, latest)
        deltas = self.store.read_deltas(session_id, 1, latest)
        issues: list[ValidationIssue] = []

        turn_ids = [t.turn_id for t in turns]
        for expected in range(1, latest + 1):
            count = turn_ids.count(expected)
            if count == 0:
                issues.append(ValidationIssue("turn_gap", f"Turn {expected} missing from turn log", expected))
            elif count > 1:
                issues.append(ValidationIssue("turn_gap", f"Turn {expected} logged {count} times", expected))

        by_turn: dict[int, list[Delta]] = {}
        for delta in deltas:
            by_turn.setdefault(delta.turn_id, []).append(delta)
        known_turns = set(turn_ids)
        for turn_id, turn_deltas in by_turn.items():
            if turn_id not in known_turns:
                issues.append(ValidationIssue(
                    "orphan_delta", f"{len(turn_deltas)} deltas for unlogged turn {turn_id}", turn_id
                ))
            sequences = [d.sequence for d in turn_deltas]
            if sequences != list(range(1, len(sequences) + 1)):
                issues.append(ValidationIssue(
                    "sequence_gap", f"Turn {turn_id} delta sequences are {sequences}", turn_id
                ))

        state = self.store.load_genesis(session_id)
        snapshot_turns = set(self.snapshots.list_snapshots(session_id))
        replay_ok = True
        for turn_id in range(1, latest + 1):
            try:
                state = apply_deltas(state, by_turn.get(turn_id, []))
            except DeltaError as e:
                issues.append(ValidationIssue("replay_error", str(e), turn_id))
                replay_ok = False
                break
            if turn_id in snapshot_turns:
                snapshot = self.snapshots.load_nearest_snapshot(session_id, turn_id)
                if snapshot.turn_id == turn_id and snapshot.state != state:
                    changes = self.diff_states(snapshot.state, state)
                    issues.append(ValidationIssue(
                        "snapshot_mismatch",
                        f"Snapshot at turn {turn_id} differs from replay at {len(changes)} paths "
                        f"(first: {changes[0].path if changes else '?'})",
                        turn_id,
                    ))

        if replay_ok:
            cached = self.store.load_current_state(session_id)
            if cached is not None and cached != state:
                changes = self.diff_states(state, cached)
                issues.append(ValidationIssue(
                    "cache_mismatch",
                    f"Current-state cache differs from replayed tip at {len(changes)} paths",
                    latest,
                ))

        for issue in issues:
            logger.warning(f"Session {session_id}: {issue.kind}: {issue.message}")

        return ValidationResult(
            valid=not issues,
            issues=issues,
            turns_checked=len(turns),
            deltas_checked=len(deltas),
        )
