"""Tests for session log storage."""

import pytest

from fatelog.state import (
    Character,
    Delta,
    GameState,
    JsonlSessionStore,
    LogWriteError,
    MemorySessionStore,
    SessionNotFoundError,
    SessionStore,
    Turn,
)
from fatelog.state.schema import SessionMeta
from fatelog.state.store import (
    SessionExistsError,
    chunk_bounds,
    chunk_filename,
    chunk_index,
    chunks_for_range,
)


def genesis(session_id="s1"):
    return GameState(session_id=session_id, player=Character(id="hero", name="Mara", kind="player"))


def delta(turn_id, sequence=1, operation="set"):
    return Delta(
        delta_id=f"s1-{turn_id}-{sequence}",
        turn_id=turn_id,
        sequence=sequence,
        target="session",
        operation=operation,
        path=["turn"],
        previous_value=turn_id - 1,
        new_value=turn_id,
    )


@pytest.fixture
def jsonl_store(tmp_path):
    store = JsonlSessionStore(tmp_path / "sessions", chunk_size=100)
    store.create_session(SessionMeta(id="s1", name="Docks"), genesis())
    return store


class TestChunking:
    """Test chunk arithmetic."""

    def test_chunk_index(self):
        assert chunk_index(1) == 0
        assert chunk_index(100) == 0
        assert chunk_index(101) == 1

    def test_chunk_index_rejects_turn_zero(self):
        with pytest.raises(ValueError):
            chunk_index(0)

    def test_chunk_bounds_and_filename(self):
        assert chunk_bounds(1) == (101, 200)
        assert chunk_filename("turns", 0) == "turns-0001-0100.jsonl"
        assert chunk_filename("deltas", 1) == "deltas-0101-0200.jsonl"

    def test_range_spans_chunks(self):
        assert list(chunks_for_range(95, 105)) == [0, 1]


class TestJsonlSessionStore:
    """Test the file-backed store."""

    def test_satisfies_protocol(self, jsonl_store):
        assert isinstance(jsonl_store, SessionStore)

    def test_creates_layout(self, jsonl_store):
        """Session directory holds meta, genesis, cache and log dirs."""
        path = jsonl_store.session_dir("s1")
        assert (path / "session.meta.json").exists()
        assert (path / "genesis.state.json").exists()
        assert (path / "player.state.json").exists()
        assert (path / "turns").is_dir()
        assert (path / "deltas").is_dir()
        assert (path / "snapshots").is_dir()

    def test_duplicate_session_rejected(self, jsonl_store):
        with pytest.raises(SessionExistsError):
            jsonl_store.create_session(SessionMeta(id="s1"), genesis())

    def test_unknown_session(self, jsonl_store):
        with pytest.raises(SessionNotFoundError):
            jsonl_store.load_meta("nope")

    def test_records_land_in_chunk_by_turn(self, jsonl_store):
        """Turns 99-102 are split across two chunk files."""
        for turn_id in range(99, 103):
            jsonl_store.append_turn("s1", Turn(turn_id=turn_id, actor="player"))
            jsonl_store.append_delta("s1", delta(turn_id))

        turns_dir = jsonl_store.session_dir("s1") / "turns"
        assert sorted(p.name for p in turns_dir.iterdir()) == [
            "turns-0001-0100.jsonl",
            "turns-0101-0200.jsonl",
        ]
        assert [t.turn_id for t in jsonl_store.read_turns("s1", 95, 105)] == [99, 100, 101, 102]
        assert [d.turn_id for d in jsonl_store.read_deltas("s1", 95, 105)] == [99, 100, 101, 102]

    def test_read_range_is_inclusive_and_sorted(self, jsonl_store):
        for turn_id in (3, 1, 2):
            jsonl_store.append_turn("s1", Turn(turn_id=turn_id, actor="player"))
        assert [t.turn_id for t in jsonl_store.read_turns("s1", 2, 3)] == [2, 3]

    def test_latest_turn(self, jsonl_store):
        assert jsonl_store.latest_turn("s1") == 0
        for turn_id in (1, 2, 101):
            jsonl_store.append_turn("s1", Turn(turn_id=turn_id, actor="player"))
        assert jsonl_store.latest_turn("s1") == 101

    def test_corrupt_line_skipped(self, jsonl_store, caplog):
        """A bad line is logged and skipped; the rest of the chunk loads."""
        jsonl_store.append_delta("s1", delta(1))
        path = jsonl_store.session_dir("s1") / "deltas" / "deltas-0001-0100.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
        jsonl_store.append_delta("s1", delta(2))

        deltas = jsonl_store.read_deltas("s1", 1, 100)
        assert [d.turn_id for d in deltas] == [1, 2]
        assert "Skipping corrupt record" in caplog.text

    def test_undecodable_line_skipped(self, jsonl_store, caplog):
        """Bytes that are not UTF-8 cost one line, not the chunk."""
        for turn_id in (1, 2):
            jsonl_store.append_delta("s1", delta(turn_id))
        path = jsonl_store.session_dir("s1") / "deltas" / "deltas-0001-0100.jsonl"
        with open(path, "ab") as f:
            f.write(b"\xff\xfe garbage\n")
        jsonl_store.append_delta("s1", delta(3))

        deltas = jsonl_store.read_deltas("s1", 1, 3)
        assert [d.turn_id for d in deltas] == [1, 2, 3]
        assert "deltas-0001-0100.jsonl:3 (not UTF-8" in caplog.text

    def test_session_keeps_its_chunk_size(self, tmp_path):
        """A store opened with another chunk size still finds every chunk."""
        root = tmp_path / "sessions"
        small = JsonlSessionStore(root, chunk_size=50)
        small.create_session(SessionMeta(id="s1"), genesis())
        for turn_id in (49, 50, 51, 52):
            small.append_turn("s1", Turn(turn_id=turn_id, actor="player"))
            small.append_delta("s1", delta(turn_id))

        reopened = JsonlSessionStore(root)
        assert reopened.session_chunk_size("s1") == 50
        assert reopened.latest_turn("s1") == 52
        assert [d.turn_id for d in reopened.read_deltas("s1", 1, 100)] == [49, 50, 51, 52]

        reopened.append_delta("s1", delta(53))
        deltas_dir = reopened.session_dir("s1") / "deltas"
        assert sorted(p.name for p in deltas_dir.iterdir()) == [
            "deltas-0001-0050.jsonl",
            "deltas-0051-0100.jsonl",
        ]

    def test_discard_after(self, jsonl_store):
        """Records past a turn are removed, along with a torn last line."""
        for turn_id in (1, 2, 101):
            jsonl_store.append_turn("s1", Turn(turn_id=turn_id, actor="player"))
            jsonl_store.append_delta("s1", delta(turn_id))
        path = jsonl_store.session_dir("s1") / "deltas" / "deltas-0001-0100.jsonl"
        with open(path, "ab") as f:
            f.write(b'{"delta_id": "s1-3-1", "turn_')

        assert jsonl_store.discard_after("s1", 1) == 5
        assert jsonl_store.latest_turn("s1") == 1
        assert [d.turn_id for d in jsonl_store.read_deltas("s1", 1, 200)] == [1]
        assert not (jsonl_store.session_dir("s1") / "turns" / "turns-0101-0200.jsonl").exists()

        jsonl_store.append_delta("s1", delta(2))
        assert [d.turn_id for d in jsonl_store.read_deltas("s1", 1, 200)] == [1, 2]

    def test_discard_after_nothing_to_do(self, jsonl_store):
        jsonl_store.append_turn("s1", Turn(turn_id=1, actor="player"))
        jsonl_store.append_delta("s1", delta(1))
        assert jsonl_store.discard_after("s1", 1) == 0
        assert len(jsonl_store.read_deltas("s1", 1, 1)) == 1

    def test_unknown_operation_rejected_at_write(self, jsonl_store):
        """Deltas with an unknown operation never reach the file."""
        with pytest.raises(LogWriteError):
            jsonl_store.append_delta("s1", delta(1, operation="increment"))
        assert jsonl_store.read_deltas("s1", 1, 100) == []

    def test_unknown_operation_loads_from_log(self, jsonl_store):
        """A foreign operation already on disk still loads, for replay to reject."""
        path = jsonl_store.session_dir("s1") / "deltas" / "deltas-0001-0100.jsonl"
        path.write_text(delta(1, operation="increment").model_dump_json() + "\n", encoding="utf-8")
        [loaded] = jsonl_store.read_deltas("s1", 1, 1)
        assert loaded.operation == "increment"
        assert not loaded.is_known_operation

    def test_current_state_cache_round_trip(self, jsonl_store):
        state = genesis().model_copy(update={"turn": 4})
        jsonl_store.update_current_state("s1", state)
        assert jsonl_store.load_current_state("s1") == state

    def test_current_state_cache_missing(self, jsonl_store):
        (jsonl_store.session_dir("s1") / "npcs.state.json").unlink()
        assert jsonl_store.load_current_state("s1") is None

    def test_list_and_delete(self, jsonl_store):
        assert [s["id"] for s in jsonl_store.list_sessions()] == ["s1"]
        assert jsonl_store.delete_session("s1") is True
        assert jsonl_store.delete_session("s1") is False
        assert jsonl_store.list_sessions() == []


class TestMemorySessionStore:
    """Test the in-memory store."""

    def test_records_are_copied(self):
        """Changing a record after writing does not change history."""
        store = MemorySessionStore()
        store.create_session(SessionMeta(id="s1"), genesis())
        turn = Turn(turn_id=1, actor="player")
        store.append_turn("s1", turn)
        turn.actor = "gm"
        assert store.read_turns("s1", 1, 1)[0].actor == "player"

    def test_rejects_unknown_operation(self):
        store = MemorySessionStore()
        store.create_session(SessionMeta(id="s1"), genesis())
        with pytest.raises(LogWriteError):
            store.append_delta("s1", delta(1, operation="increment"))

    def test_discard_after(self):
        store = MemorySessionStore()
        store.create_session(SessionMeta(id="s1"), genesis())
        for turn_id in (1, 2):
            store.append_turn("s1", Turn(turn_id=turn_id, actor="player"))
            store.append_delta("s1", delta(turn_id))
        store.append_delta("s1", delta(3))

        assert store.discard_after("s1", 1) == 3
        assert store.latest_turn("s1") == 1
        assert [d.turn_id for d in store.read_deltas("s1", 1, 10)] == [1]

    def test_clear(self):
        store = MemorySessionStore()
        store.create_session(SessionMeta(id="s1"), genesis())
        store.clear()
        assert not store.exists("s1")
