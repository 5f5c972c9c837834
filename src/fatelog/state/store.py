"""
Session log storage.

Separates persistence from domain logic for testability.

Each session keeps two append-only streams, Turns and Deltas, chunked by
turn number into line-delimited JSON files:

    sessions/active/<session_id>/
        session.meta.json
        genesis.state.json
        world.state.json, player.state.json, npcs.state.json, scene.state.json
        turns/turns-0001-0100.jsonl
        deltas/deltas-0001-0100.jsonl
        snapshots/snapshot-turn-0010.json

The chunk a record lands in is a pure function of its turn_id, so any turn's
records live in exactly one chunk file regardless of write order.
"""

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from .deltas import DeltaError, check_delta_kind
from .schema import GameState, SessionMeta
from .schemas.delta import Delta
from .schemas.turn import Turn

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100


class StoreError(Exception):
    """Error reading or writing session storage."""
    pass


class SessionNotFoundError(StoreError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionExistsError(StoreError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session already exists: {session_id}")


class TurnNotFoundError(StoreError):
    """Requested turn lies outside what the log knows about."""
    def __init__(self, turn: int, latest: int):
        self.turn = turn
        self.latest = latest
        super().__init__(f"Turn {turn} not found: log covers turns 0-{latest}")


class LogWriteError(StoreError):
    """Record rejected at the log-write boundary."""
    pass


# -----------------------------------------------------------------------------
# Chunking
# -----------------------------------------------------------------------------

def chunk_index(turn_id: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Chunk holding turn_id: floor((turn_id - 1) / chunk_size)."""
    if turn_id < 1:
        raise ValueError(f"turn_id must be >= 1, got {turn_id}")
    return (turn_id - 1) // chunk_size


def chunk_bounds(index: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> tuple[int, int]:
    """Inclusive (first, last) turn ids of a chunk."""
    return index * chunk_size + 1, (index + 1) * chunk_size


def chunk_filename(kind: str, index: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """e.g. chunk_filename("turns", 0) -> "turns-0001-0100.jsonl"."""
    start, end = chunk_bounds(index, chunk_size)
    return f"{kind}-{start:04d}-{end:04d}.jsonl"


def chunks_for_range(start: int, end: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> range:
    return range(chunk_index(start, chunk_size), chunk_index(end, chunk_size) + 1)


def _parse_chunk_bounds(filename: str) -> tuple[int, int] | None:
    # "turns-0101-0200.jsonl" -> (101, 200)
    parts = filename.rsplit(".", 1)[0].split("-")
    if len(parts) != 3:
        return None
    try:
        return int(parts[1]), int(parts[2])
    except ValueError:
        return None


def _line_turn_id(line: bytes) -> int | None:
    """turn_id of a raw log line, or None if the line does not parse."""
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("turn_id"), int):
        return data["turn_id"]
    return None


# -----------------------------------------------------------------------------
# Store protocol
# -----------------------------------------------------------------------------

@runtime_checkable
class SessionStore(Protocol):
    """
    Storage interface for session logs.

    Implementations:
    - JsonlSessionStore: File-based persistence (production)
    - MemorySessionStore: In-memory storage (testing)
    """

    def create_session(self, meta: SessionMeta, genesis: GameState) -> None: ...

    def exists(self, session_id: str) -> bool: ...

    def load_meta(self, session_id: str) -> SessionMeta: ...

    def save_meta(self, meta: SessionMeta) -> None: ...

    def load_genesis(self, session_id: str) -> GameState: ...

    def append_turn(self, session_id: str, turn: Turn) -> None: ...

    def append_delta(self, session_id: str, delta: Delta) -> None: ...

    def read_turns(self, session_id: str, start: int, end: int) -> list[Turn]: ...

    def read_deltas(self, session_id: str, start: int, end: int) -> list[Delta]: ...

    def latest_turn(self, session_id: str) -> int: ...

    def discard_after(self, session_id: str, turn_id: int) -> int: ...

    def update_current_state(self, session_id: str, state: GameState) -> None: ...

    def load_current_state(self, session_id: str) -> GameState | None: ...

    def list_sessions(self) -> list[dict]: ...

    def delete_session(self, session_id: str) -> bool: ...


def _check_delta_for_write(delta: Delta) -> None:
    try:
        check_delta_kind(delta.operation, delta.target, delta.delta_id)
    except DeltaError as e:
        raise LogWriteError(str(e)) from e


def _sort_turns(turns: list[Turn]) -> list[Turn]:
    return sorted(turns, key=lambda t: t.turn_id)


def _sort_deltas(deltas: list[Delta]) -> list[Delta]:
    return sorted(deltas, key=lambda d: (d.turn_id, d.sequence))


# -----------------------------------------------------------------------------
# File-backed store
# -----------------------------------------------------------------------------

class JsonlSessionStore:
    """
    File-based session storage using chunked JSONL logs.

    Features:
    - Append-only turn and delta logs, one JSON record per line
    - Corrupt lines are skipped with a warning; the rest of the chunk loads
    - Write-through cache of the latest state (never authoritative)

    chunk_size applies to sessions this store creates. An existing session
    keeps the chunk size recorded in its metadata.
    """

    def __init__(self, root: Path | str = "sessions", chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.root = Path(root)
        self.chunk_size = chunk_size
        self.active_dir = self.root / "active"
        self.active_dir.mkdir(parents=True, exist_ok=True)
        self._chunk_sizes: dict[str, int] = {}

    def session_dir(self, session_id: str) -> Path:
        return self.active_dir / session_id

    def session_chunk_size(self, session_id: str) -> int:
        """Chunk size the session was created with."""
        if session_id not in self._chunk_sizes:
            self._chunk_sizes[session_id] = self.load_meta(session_id).chunk_size
        return self._chunk_sizes[session_id]

    def _require(self, session_id: str) -> Path:
        path = self.session_dir(session_id)
        if not (path / "session.meta.json").exists():
            raise SessionNotFoundError(session_id)
        return path

    # ─── Session lifecycle ──────────────────────────────────────

    def create_session(self, meta: SessionMeta, genesis: GameState) -> None:
        path = self.session_dir(meta.id)
        if (path / "session.meta.json").exists():
            raise SessionExistsError(meta.id)

        for sub in (meta.files.turns_dir, meta.files.deltas_dir, meta.files.snapshots_dir, "scenes"):
            (path / sub).mkdir(parents=True, exist_ok=True)

        meta.chunk_size = self.chunk_size
        self._chunk_sizes[meta.id] = self.chunk_size
        (path / meta.files.genesis_state).write_text(genesis.model_dump_json(indent=2), encoding="utf-8")
        self.save_meta(meta)
        self.update_current_state(meta.id, genesis)

    def exists(self, session_id: str) -> bool:
        return (self.session_dir(session_id) / "session.meta.json").exists()

    def load_meta(self, session_id: str) -> SessionMeta:
        path = self._require(session_id) / "session.meta.json"
        return SessionMeta.model_validate_json(path.read_text(encoding="utf-8"))

    def save_meta(self, meta: SessionMeta) -> None:
        path = self.session_dir(meta.id)
        path.mkdir(parents=True, exist_ok=True)
        meta.updated_at = datetime.now()
        (path / "session.meta.json").write_text(meta.model_dump_json(indent=2), encoding="utf-8")

    def load_genesis(self, session_id: str) -> GameState:
        path = self._require(session_id) / "genesis.state.json"
        if not path.exists():
            raise SessionNotFoundError(session_id)
        return GameState.model_validate_json(path.read_text(encoding="utf-8"))

    def list_sessions(self) -> list[dict]:
        """
        List all sessions sorted by modification time.

        Returns list of dicts with: id, name, current_turn, updated_at
        """
        sessions = []
        meta_files = sorted(
            self.active_dir.glob("*/session.meta.json"),
            key=lambda x: x.stat().st_mtime,
            reverse=True,
        )
        for f in meta_files:
            try:
                meta = SessionMeta.model_validate_json(f.read_text(encoding="utf-8"))
            except (ValidationError, OSError) as e:
                logger.warning(f"Skipping unreadable session metadata {f}: {e}")
                continue
            sessions.append({
                "id": meta.id,
                "name": meta.name,
                "current_turn": meta.current_turn,
                "updated_at": meta.updated_at,
            })
        return sessions

    def delete_session(self, session_id: str) -> bool:
        path = self.session_dir(session_id)
        self._chunk_sizes.pop(session_id, None)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True

    # ─── Logs ───────────────────────────────────────────────────

    def _chunk_path(self, session_id: str, kind: str, index: int) -> Path:
        chunk_size = self.session_chunk_size(session_id)
        return self.session_dir(session_id) / kind / chunk_filename(kind, index, chunk_size)

    def _chunk_for_turn(self, session_id: str, kind: str, turn_id: int) -> Path:
        index = chunk_index(turn_id, self.session_chunk_size(session_id))
        return self._chunk_path(session_id, kind, index)

    def _append_line(self, path: Path, record: BaseModel) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")

    def append_turn(self, session_id: str, turn: Turn) -> None:
        self._require(session_id)
        self._append_line(self._chunk_for_turn(session_id, "turns", turn.turn_id), turn)

    def append_delta(self, session_id: str, delta: Delta) -> None:
        self._require(session_id)
        _check_delta_for_write(delta)
        path = self._chunk_for_turn(session_id, "deltas", delta.turn_id)
        self._append_line(path, delta)
        logger.debug(f"Appended delta {delta.delta_id} to {path.name}")

    def _iter_records(self, path: Path, model: type[BaseModel]) -> Iterator[BaseModel]:
        """Yield valid records from a chunk, skipping corrupt lines."""
        with open(path, "rb") as f:
            for lineno, raw in enumerate(f, start=1):
                if not raw.strip():
                    continue
                try:
                    record = model.model_validate_json(raw.decode("utf-8"))
                except UnicodeDecodeError as e:
                    logger.warning(f"Skipping corrupt record {path.name}:{lineno} (not UTF-8: {e.reason})")
                    continue
                except ValidationError as e:
                    logger.warning(
                        f"Skipping corrupt record {path.name}:{lineno} "
                        f"({e.error_count()} errors: {e.errors()[0]['msg']})"
                    )
                    continue
                yield record

    def _read_range(self, session_id: str, kind: str, model: type[BaseModel], start: int, end: int) -> list:
        self._require(session_id)
        start = max(start, 1)
        if end < start:
            return []

        records = []
        for index in chunks_for_range(start, end, self.session_chunk_size(session_id)):
            path = self._chunk_path(session_id, kind, index)
            if not path.exists():
                continue
            for record in self._iter_records(path, model):
                if start <= record.turn_id <= end:
                    records.append(record)
        return records

    def read_turns(self, session_id: str, start: int, end: int) -> list[Turn]:
        return _sort_turns(self._read_range(session_id, "turns", Turn, start, end))

    def read_deltas(self, session_id: str, start: int, end: int) -> list[Delta]:
        return _sort_deltas(self._read_range(session_id, "deltas", Delta, start, end))

    def _chunk_files(self, session_id: str, kind: str) -> list[tuple[int, int, Path]]:
        """(first, last, path) for every chunk file of a stream, oldest first."""
        files = []
        for path in (self._require(session_id) / kind).glob(f"{kind}-*.jsonl"):
            bounds = _parse_chunk_bounds(path.name)
            if bounds:
                files.append((*bounds, path))
        return sorted(files)

    def latest_turn(self, session_id: str) -> int:
        """Highest turn_id recorded in the turn log (0 for a fresh session)."""
        for _, _, path in reversed(self._chunk_files(session_id, "turns")):
            turn_ids = [t.turn_id for t in self._iter_records(path, Turn)]
            if turn_ids:
                return max(turn_ids)
        return 0

    def discard_after(self, session_id: str, turn_id: int) -> int:
        """
        Remove turn and delta records newer than turn_id.

        Backs out a turn whose write did not complete. An unterminated last
        line (a torn write) is removed too. Lines that do not parse are kept
        for the reader to skip. Returns the number of lines removed.
        """
        removed = 0
        for kind in ("turns", "deltas"):
            for _, last, path in self._chunk_files(session_id, kind):
                if last <= turn_id:
                    continue
                lines = path.read_bytes().splitlines(keepends=True)
                kept = [
                    line for line in lines
                    if line.endswith(b"\n") and (_line_turn_id(line) or 0) <= turn_id
                ]
                if len(kept) == len(lines):
                    continue
                removed += len(lines) - len(kept)
                if kept:
                    tmp = path.with_suffix(".tmp")
                    tmp.write_bytes(b"".join(kept))
                    tmp.replace(path)
                else:
                    path.unlink()
        if removed:
            logger.warning(f"Discarded {removed} log lines after turn {turn_id} in {session_id}")
        return removed

    # ─── Current-state cache ────────────────────────────────────

    def update_current_state(self, session_id: str, state: GameState) -> None:
        """Write-through cache of the log's tip. Not authoritative."""
        path = self.session_dir(session_id)
        dump = state.model_dump(mode="json")
        files = {
            "world.state.json": dump["world"],
            "player.state.json": dump["player"],
            "npcs.state.json": dump["npcs"],
            "scene.state.json": {
                "session_id": dump["session_id"],
                "turn": dump["turn"],
                "seed": dump["seed"],
                "current_scene": dump["current_scene"],
                "session_aspects": dump["session_aspects"],
            },
        }
        for name, data in files.items():
            (path / name).write_text(json.dumps(data, indent=2), encoding="utf-8")

    def load_current_state(self, session_id: str) -> GameState | None:
        path = self._require(session_id)
        try:
            scene = json.loads((path / "scene.state.json").read_text(encoding="utf-8"))
            data = {
                **scene,
                "world": json.loads((path / "world.state.json").read_text(encoding="utf-8")),
                "player": json.loads((path / "player.state.json").read_text(encoding="utf-8")),
                "npcs": json.loads((path / "npcs.state.json").read_text(encoding="utf-8")),
            }
            return GameState.model_validate(data)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Current-state cache for {session_id} is unreadable: {e}")
            return None


# -----------------------------------------------------------------------------
# In-memory store
# -----------------------------------------------------------------------------

class _MemorySession:
    def __init__(self, meta: SessionMeta, genesis: GameState):
        self.meta = meta
        self.genesis = genesis
        self.turns: list[Turn] = []
        self.deltas: list[Delta] = []
        self.current: GameState | None = None


class MemorySessionStore:
    """
    In-memory session storage for testing.

    No file I/O; records are deep-copied on the way in and out so callers
    can never alias stored history.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size
        self.sessions: dict[str, _MemorySession] = {}

    def _require(self, session_id: str) -> _MemorySession:
        if session_id not in self.sessions:
            raise SessionNotFoundError(session_id)
        return self.sessions[session_id]

    def create_session(self, meta: SessionMeta, genesis: GameState) -> None:
        if meta.id in self.sessions:
            raise SessionExistsError(meta.id)
        meta.chunk_size = self.chunk_size
        self.sessions[meta.id] = _MemorySession(meta.model_copy(deep=True), genesis.model_copy(deep=True))
        self.update_current_state(meta.id, genesis)

    def exists(self, session_id: str) -> bool:
        return session_id in self.sessions

    def load_meta(self, session_id: str) -> SessionMeta:
        return self._require(session_id).meta.model_copy(deep=True)

    def save_meta(self, meta: SessionMeta) -> None:
        meta.updated_at = datetime.now()
        self._require(meta.id).meta = meta.model_copy(deep=True)

    def load_genesis(self, session_id: str) -> GameState:
        return self._require(session_id).genesis.model_copy(deep=True)

    def append_turn(self, session_id: str, turn: Turn) -> None:
        self._require(session_id).turns.append(turn.model_copy(deep=True))

    def append_delta(self, session_id: str, delta: Delta) -> None:
        session = self._require(session_id)
        _check_delta_for_write(delta)
        session.deltas.append(delta.model_copy(deep=True))

    def read_turns(self, session_id: str, start: int, end: int) -> list[Turn]:
        turns = self._require(session_id).turns
        return _sort_turns([t.model_copy(deep=True) for t in turns if start <= t.turn_id <= end])

    def read_deltas(self, session_id: str, start: int, end: int) -> list[Delta]:
        deltas = self._require(session_id).deltas
        return _sort_deltas([d.model_copy(deep=True) for d in deltas if start <= d.turn_id <= end])

    def latest_turn(self, session_id: str) -> int:
        turns = self._require(session_id).turns
        return max((t.turn_id for t in turns), default=0)

    def discard_after(self, session_id: str, turn_id: int) -> int:
        session = self._require(session_id)
        before = len(session.turns) + len(session.deltas)
        session.turns = [t for t in session.turns if t.turn_id <= turn_id]
        session.deltas = [d for d in session.deltas if d.turn_id <= turn_id]
        return before - len(session.turns) - len(session.deltas)

    def update_current_state(self, session_id: str, state: GameState) -> None:
        self._require(session_id).current = state.model_copy(deep=True)

    def load_current_state(self, session_id: str) -> GameState | None:
        current = self._require(session_id).current
        return current.model_copy(deep=True) if current else None

    def list_sessions(self) -> list[dict]:
        sessions = [
            {
                "id": s.meta.id,
                "name": s.meta.name,
                "current_turn": s.meta.current_turn,
                "updated_at": s.meta.updated_at,
            }
            for s in self.sessions.values()
        ]
        sessions.sort(key=lambda x: x["updated_at"], reverse=True)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        if session_id in self.sessions:
            del self.sessions[session_id]
            return True
        return False

    def clear(self) -> None:
        """Clear all sessions (test utility)."""
        self.sessions.clear()
