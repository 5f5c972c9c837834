"""
Snapshot storage.

Snapshots are full GameState copies keyed by turn. They only accelerate
reconstruction: when no snapshot covers a turn, the session's genesis
state is used and every delta is replayed from turn 1.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from .schema import GameState
from .store import JsonlSessionStore, MemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

_SNAPSHOT_RE = re.compile(r"^snapshot-turn-(\d+)\.json$")


@dataclass
class Snapshot:
    """A state together with the turn it reflects (0 = genesis)."""
    turn_id: int
    state: GameState

    @property
    def is_genesis(self) -> bool:
        return self.turn_id == 0


def snapshot_filename(turn_id: int) -> str:
    return f"snapshot-turn-{turn_id:04d}.json"


class SnapshotStore:
    """
    Base snapshot store.

    Subclasses provide raw storage; nearest-snapshot selection and the
    genesis fallback are shared.
    """

    def __init__(self, sessions: SessionStore):
        self.sessions = sessions

    def save_snapshot(self, session_id: str, turn_id: int, state: GameState) -> None:
        raise NotImplementedError

    def list_snapshots(self, session_id: str) -> list[int]:
        """Turns with a stored snapshot, ascending."""
        raise NotImplementedError

    def _read(self, session_id: str, turn_id: int) -> GameState | None:
        raise NotImplementedError

    def load_nearest_snapshot(self, session_id: str, turn_id: int) -> Snapshot:
        """
        Latest snapshot at or before turn_id, or genesis if none qualifies.

        Unreadable snapshots are skipped in favour of the next older one.
        """
        candidates = [t for t in self.list_snapshots(session_id) if t <= turn_id]
        for snapshot_turn in reversed(candidates):
            state = self._read(session_id, snapshot_turn)
            if state is not None:
                return Snapshot(turn_id=snapshot_turn, state=state)

        if turn_id > 0:
            logger.warning(
                f"No snapshot at or before turn {turn_id} for {session_id}; replaying from genesis"
            )
        return Snapshot(turn_id=0, state=self.sessions.load_genesis(session_id))


class JsonSnapshotStore(SnapshotStore):
    """Snapshots as snapshots/snapshot-turn-<n>.json beside the session logs."""

    def __init__(self, sessions: JsonlSessionStore):
        super().__init__(sessions)
        self.sessions: JsonlSessionStore = sessions

    def _dir(self, session_id: str) -> Path:
        return self.sessions.session_dir(session_id) / "snapshots"

    def save_snapshot(self, session_id: str, turn_id: int, state: GameState) -> None:
        self.sessions._require(session_id)
        path = self._dir(session_id)
        path.mkdir(parents=True, exist_ok=True)
        (path / snapshot_filename(turn_id)).write_text(state.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Saved snapshot for {session_id} at turn {turn_id}")

    def list_snapshots(self, session_id: str) -> list[int]:
        path = self._dir(session_id)
        if not path.exists():
            return []
        turns = []
        for f in path.glob("snapshot-turn-*.json"):
            match = _SNAPSHOT_RE.match(f.name)
            if match:
                turns.append(int(match.group(1)))
        return sorted(turns)

    def _read(self, session_id: str, turn_id: int) -> GameState | None:
        path = self._dir(session_id) / snapshot_filename(turn_id)
        try:
            return GameState.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Skipping unreadable snapshot {path.name}: {e}")
            return None


class MemorySnapshotStore(SnapshotStore):
    """In-memory snapshots for testing."""

    def __init__(self, sessions: MemorySessionStore):
        super().__init__(sessions)
        self._snapshots: dict[str, dict[int, GameState]] = {}

    def save_snapshot(self, session_id: str, turn_id: int, state: GameState) -> None:
        self.sessions._require(session_id)
        self._snapshots.setdefault(session_id, {})[turn_id] = state.model_copy(deep=True)

    def list_snapshots(self, session_id: str) -> list[int]:
        return sorted(self._snapshots.get(session_id, {}))

    def _read(self, session_id: str, turn_id: int) -> GameState | None:
        state = self._snapshots.get(session_id, {}).get(turn_id)
        return state.model_copy(deep=True) if state else None
