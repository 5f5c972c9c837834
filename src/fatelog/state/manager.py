"""
Session lifecycle and the live mutation path.

SessionManager handles create, load, list and delete. GameSession owns
one session's authoritative GameState and is the only place state
changes: every change is recorded as a Delta, applied through
apply_delta, and written to the log when the turn commits.
"""

import logging
import random
import secrets
from pathlib import Path
from typing import Any

from ..config import DEFAULT_CONFIG, Config, configure_logging, load_config
from ..llm.retry import RetryPolicy, get_retry_policy
from ..systems.turns import StaleSessionError, TurnPhase, TurnRecorder
from ..tools.dice import session_rng
from .deltas import DeltaError, apply_delta, apply_deltas, read_value
from .event_bus import EventBus, EventType
from .schema import (
    Character,
    CharacterKind,
    GameState,
    SceneState,
    SessionMeta,
    WorldState,
    generate_id,
)
from .schemas.delta import KNOWN_TARGETS, Delta, DeltaOperation, DeltaTarget
from .schemas.event import BaseTurnEvent, ConflictEndedEvent
from .schemas.turn import GameTime, Turn
from .snapshots import JsonSnapshotStore, MemorySnapshotStore, SnapshotStore
from .store import JsonlSessionStore, MemorySessionStore, SessionStore

logger = logging.getLogger(__name__)


class GameSession:
    """
    One live session: authoritative state plus the open turn.

    Turn lifecycle:
        session.begin_turn(actor="player")
        session.mutate("player", "set", ["fate_points", "current"], 2, cause="invoke")
        session.add_event(...)
        session.commit_turn(narration="...")
    """

    def __init__(
        self,
        state: GameState,
        store: SessionStore,
        snapshots: SnapshotStore,
        config: Config | None = None,
        bus: EventBus | None = None,
    ):
        self._state = state
        self.store = store
        self.snapshots = snapshots
        self.config: Config = {**DEFAULT_CONFIG, **(config or {})}
        self.bus = bus

        self._recorder = TurnRecorder(state.session_id)
        self._pre_turn_state: GameState | None = None
        self._rng: random.Random | None = None
        self._stale = False

    # ─── Read access ────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def state(self) -> GameState:
        """Deep copy of the current state. Mutate through mutate()."""
        return self._state.model_copy(deep=True)

    @property
    def turn(self) -> int:
        """Last committed turn."""
        return self._pre_turn_state.turn if self._pre_turn_state else self._state.turn

    @property
    def phase(self) -> TurnPhase:
        return self._recorder.phase

    @property
    def pending_turn_id(self) -> int | None:
        return self._recorder.turn_id

    @property
    def pending_deltas(self) -> list[Delta]:
        return self._recorder.pending_deltas

    @property
    def is_stale(self) -> bool:
        """True after a failed write that could not be backed out."""
        return self._stale

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy for generation calls, from config["retry_preset"]."""
        return get_retry_policy(self.config["retry_preset"])

    def get_value(self, target: str, path: list[str | int], default: Any = None) -> Any:
        return read_value(self._state, getattr(target, "value", target), path, default)

    def character_ref(self, character_id: str) -> tuple[DeltaTarget, list[str]]:
        """Delta target and path prefix for a character. Raises KeyError."""
        if self._state.player.id == character_id:
            return DeltaTarget.PLAYER, []
        if character_id in self._state.npcs:
            return DeltaTarget.NPC, [character_id]
        raise KeyError(character_id)

    def rng(self) -> random.Random:
        """Seeded generator for the open turn; same seed and turn, same draws."""
        if self._rng is None:
            turn_id = self._recorder.turn_id or self._state.turn + 1
            self._rng = session_rng(self._state.seed, turn_id)
        return self._rng

    # ─── Turn lifecycle ─────────────────────────────────────────

    def begin_turn(
        self,
        actor: str = "player",
        scene_id: str | None = None,
        game_time: GameTime | None = None,
    ) -> Turn:
        if self._stale:
            raise StaleSessionError(self.session_id)
        if scene_id is None:
            scene_id = self._state.current_scene.id if self._state.current_scene else ""
        turn = self._recorder.begin(
            turn_id=self._state.turn + 1,
            actor=actor,
            scene_id=scene_id,
            game_time=game_time,
        )
        self._pre_turn_state = self._state
        self._rng = session_rng(self._state.seed, turn.turn_id)
        return turn

    def add_event(self, event: BaseTurnEvent) -> BaseTurnEvent:
        """Record a TurnEvent in the open turn. Returns the stamped copy."""
        return self._recorder.record_event(event)

    def mutate(
        self,
        target: str,
        operation: str,
        path: list[str | int],
        new_value: Any = None,
        cause: str = "",
        event_id: str = "",
    ) -> Delta:
        """
        Record and apply one state change.

        previous_value is read from the current state. If the delta cannot
        be applied it is discarded and the error propagates; state is left
        as it was.
        """
        target = getattr(target, "value", target)
        operation = getattr(operation, "value", operation)
        previous = read_value(self._state, target, path) if target in KNOWN_TARGETS else None

        delta = self._recorder.record_delta(
            target, operation, path, previous, new_value, cause=cause, event_id=event_id
        )
        try:
            self._state = apply_delta(self._state, delta)
        except DeltaError:
            self._recorder.discard_last_delta()
            raise
        return delta

    def commit_turn(self, narration: str | None = None) -> Turn:
        """
        Close the open turn and write it.

        Deltas are appended first and the turn record last, so a turn
        record in the log means all of its deltas are there. If a write
        fails, whatever part of the turn reached the log is discarded and
        the state returns to the last commit. If the discard fails too, the
        session is stale and must be reloaded.

        After the log write the current-state cache and metadata are
        refreshed, and a snapshot is taken every snapshot_interval turns.
        """
        turn_id = self._recorder.turn_id
        if self._recorder.phase == TurnPhase.OPEN:
            self.mutate(DeltaTarget.SESSION, DeltaOperation.SET, ["turn"], turn_id, cause="turn_advance")
        turn, deltas = self._recorder.finalize(narration)

        try:
            for delta in deltas:
                self.store.append_delta(self.session_id, delta)
            self.store.append_turn(self.session_id, turn)
        except Exception:
            logger.error(f"Failed to write turn {turn_id} for {self.session_id}; rolling back")
            self._recorder.abort()
            self._state = self._pre_turn_state
            self._pre_turn_state = None
            self._rng = None
            self._discard_partial_turn()
            raise

        self._recorder.close()
        self._pre_turn_state = None
        self._rng = None

        self.store.update_current_state(self.session_id, self._state)
        self._update_meta(turn, deltas)

        interval = self.config.get("snapshot_interval", 0)
        if interval and turn.turn_id % interval == 0:
            self.snapshot()

        if self.bus:
            self.bus.emit(
                EventType.TURN_COMMITTED,
                session_id=self.session_id,
                turn=turn.turn_id,
                turn_id=turn.turn_id,
                delta_count=len(deltas),
                event_count=len(turn.events),
            )
        logger.debug(f"Committed turn {turn.turn_id} ({len(deltas)} deltas)")
        return turn

    def abort_turn(self) -> None:
        """Discard the open turn and restore the state from before it."""
        self._recorder.abort()
        if self._pre_turn_state is not None:
            self._state = self._pre_turn_state
        self._pre_turn_state = None
        self._rng = None

    def _discard_partial_turn(self) -> None:
        try:
            self.store.discard_after(self.session_id, self._state.turn)
        except Exception as e:
            self._stale = True
            logger.error(
                f"Could not discard partial turn {self._state.turn + 1} for {self.session_id}: {e}. "
                "Session must be reloaded."
            )

    def snapshot(self) -> int:
        """Snapshot the committed state. Returns the snapshot turn."""
        state = self._pre_turn_state or self._state
        self.snapshots.save_snapshot(self.session_id, state.turn, state)

        meta = self.store.load_meta(self.session_id)
        meta.stats.total_snapshots += 1
        self.store.save_meta(meta)

        if self.bus:
            self.bus.emit(EventType.SNAPSHOT_SAVED, session_id=self.session_id, turn=state.turn)
        return state.turn

    def _update_meta(self, turn: Turn, deltas: list[Delta]) -> None:
        meta = self.store.load_meta(self.session_id)
        meta.current_turn = turn.turn_id
        meta.current_scene_id = self._state.current_scene.id if self._state.current_scene else None
        meta.stats.total_turns += 1
        meta.stats.total_deltas += len(deltas)
        meta.stats.conflicts_resolved += sum(1 for e in turn.events if isinstance(e, ConflictEndedEvent))
        meta.stats.npcs_encountered = len(self._state.npcs)
        meta.last_played_at = turn.timestamp
        self.store.save_meta(meta)


class SessionManager:
    """
    Manages session lifecycle.

    Storage is delegated to a SessionStore implementation:
    - JsonlSessionStore for production (file-based)
    - MemorySessionStore for testing (in-memory)
    """

    def __init__(
        self,
        store: SessionStore | Path | str | None = None,
        snapshots: SnapshotStore | None = None,
        config: Config | None = None,
        bus: EventBus | None = None,
    ):
        """
        Initialize with a store.

        Args:
            store: SessionStore instance, or path for JsonlSessionStore;
                defaults to config["sessions_dir"]
            snapshots: SnapshotStore; defaults to the one matching the store
            config: Engine configuration (merged over DEFAULT_CONFIG)
            bus: Caller-owned event bus for notifications
        """
        self.config: Config = {**DEFAULT_CONFIG, **(config or {})}
        if store is None:
            store = self.config["sessions_dir"]
        if isinstance(store, (Path, str)):
            store = JsonlSessionStore(store, chunk_size=self.config["chunk_size"])
        self.store = store

        if snapshots is None:
            if isinstance(store, JsonlSessionStore):
                snapshots = JsonSnapshotStore(store)
            elif isinstance(store, MemorySessionStore):
                snapshots = MemorySnapshotStore(store)
            else:
                raise ValueError("A SnapshotStore is required for custom session stores")
        self.snapshots = snapshots
        self.bus = bus

    @classmethod
    def from_config(cls, sessions_dir: Path | str = "sessions", bus: EventBus | None = None) -> "SessionManager":
        """
        Manager for a sessions directory, using the config file kept there.

        Also sets up logging at the configured log_level.
        """
        config = load_config(sessions_dir)
        config["sessions_dir"] = str(sessions_dir)
        configure_logging(config["log_level"])
        return cls(config=config, bus=bus)

    @property
    def retry_policy(self) -> RetryPolicy:
        return get_retry_policy(self.config["retry_preset"])

    def create_session(
        self,
        player: Character,
        world: WorldState | None = None,
        name: str = "Untitled Session",
        seed: int | None = None,
        npcs: list[Character] | None = None,
        scene: SceneState | None = None,
    ) -> GameSession:
        """Create a session and write its genesis state."""
        session_id = generate_id()
        world = world or WorldState()
        if seed is None:
            seed = secrets.randbits(31)

        genesis = GameState(
            session_id=session_id,
            turn=0,
            world=world,
            player=player.model_copy(update={"kind": CharacterKind.PLAYER}),
            npcs={npc.id: npc.model_copy(update={"kind": CharacterKind.NPC}) for npc in npcs or []},
            current_scene=scene,
            seed=seed,
        )
        meta = SessionMeta(
            id=session_id,
            name=name,
            theme=world.theme.name,
            character_name=player.name,
            current_scene_id=scene.id if scene else None,
            chunk_size=self.config["chunk_size"],
        )
        meta.stats.npcs_encountered = len(genesis.npcs)
        self.store.create_session(meta, genesis)

        if self.bus:
            self.bus.emit(EventType.SESSION_CREATED, session_id=session_id, name=name, seed=seed)
        logger.info(f"Created session {session_id} ({name})")
        return GameSession(genesis, self.store, self.snapshots, self.config, self.bus)

    def rebuild_state(self, session_id: str, turn: int | None = None) -> GameState:
        """Authoritative state at a turn: nearest snapshot plus the delta tail."""
        if turn is None:
            turn = self.store.latest_turn(session_id)
        snapshot = self.snapshots.load_nearest_snapshot(session_id, turn)
        tail = self.store.read_deltas(session_id, snapshot.turn_id + 1, turn)
        return apply_deltas(snapshot.state, tail)

    def load_session(self, session_id: str) -> GameSession:
        """
        Resume a session. State is rebuilt from the log, never the cache.

        Records past the last logged turn belong to a turn whose write did
        not finish; they are discarded first.
        """
        latest = self.store.latest_turn(session_id)
        self.store.discard_after(session_id, latest)
        state = self.rebuild_state(session_id, latest)
        logger.info(f"Loaded session {session_id} at turn {state.turn}")
        return GameSession(state, self.store, self.snapshots, self.config, self.bus)

    def list_sessions(self) -> list[dict]:
        return self.store.list_sessions()

    def delete_session(self, session_id: str) -> bool:
        return self.store.delete_session(session_id)
