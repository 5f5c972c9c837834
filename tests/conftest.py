"""
Pytest fixtures for fatelog tests.

Provides in-memory stores, sample characters and a scene with zones.
"""

import random

import pytest

from fatelog.state import (
    Aspect,
    AspectType,
    Character,
    MemorySessionStore,
    MemorySnapshotStore,
    SceneState,
    SessionManager,
    Zone,
    ZoneConnection,
    ZoneMap,
)
from fatelog.state.schema import FatePoints


class StubRandom(random.Random):
    """Generator whose dice always land on `face` and whose random() is fixed."""

    def __init__(self, face: int = 0, value: float = 0.5):
        super().__init__(0)
        self.face = face
        self.value = value

    def choice(self, seq):
        return self.face

    def random(self):
        return self.value


@pytest.fixture
def memory_store():
    """In-memory session store for testing."""
    return MemorySessionStore()


@pytest.fixture
def snapshot_store(memory_store):
    return MemorySnapshotStore(memory_store)


@pytest.fixture
def manager(memory_store, snapshot_store):
    """Session manager with in-memory stores, snapshot every 10 turns."""
    return SessionManager(memory_store, snapshot_store, config={"snapshot_interval": 10})


@pytest.fixture
def player():
    """Sample player character."""
    return Character(
        id="hero",
        name="Mara Voss",
        aspects=[
            Aspect(id="hc", name="Disgraced Duelist", type=AspectType.HIGH_CONCEPT),
            Aspect(id="trouble", name="Debts In Every Port", type=AspectType.TROUBLE),
        ],
        skills={"Fight": 3, "Athletics": 2, "Rapport": 1},
        fate_points=FatePoints(current=3, refresh=3),
    )


@pytest.fixture
def thugs():
    """Two nameless opponents."""
    return [
        Character(id="thug1", name="Dock Thug", skills={"Fight": 1}),
        Character(id="thug2", name="Dock Thug", skills={"Fight": 1}),
    ]


@pytest.fixture
def scene():
    """Scene with three zones: alley - street (free), street - roof (barrier 2)."""
    return SceneState(
        id="scene1",
        name="The Docks at Night",
        aspects=[Aspect(id="fog", name="Thick Fog")],
        zones=ZoneMap(
            zones=[
                Zone(id="alley", name="Alley", character_ids=["hero"]),
                Zone(id="street", name="Street", character_ids=["thug1", "thug2"]),
                Zone(id="roof", name="Rooftop"),
            ],
            connections=[
                ZoneConnection(from_zone_id="alley", to_zone_id="street"),
                ZoneConnection(from_zone_id="street", to_zone_id="roof", barrier=2),
            ],
        ),
    )


@pytest.fixture
def session(manager, player, thugs, scene):
    """Fresh seeded session with the player, two thugs and the dock scene."""
    return manager.create_session(player, name="Test Session", seed=1234, npcs=thugs, scene=scene)


@pytest.fixture
def stub_dice(session, monkeypatch):
    """Make every die in the session land on 0 (override .face per test)."""
    rng = StubRandom(face=0)
    monkeypatch.setattr(session, "rng", lambda: rng)
    return rng


@pytest.fixture
def play():
    """Commit N turns on a session, each changing the player's refresh."""
    def _play(session, count: int):
        for _ in range(count):
            session.begin_turn()
            refresh = session.state.player.fate_points.refresh
            session.mutate("player", "set", ["fate_points", "refresh"], refresh % 5 + 1, cause="test")
            session.commit_turn()
    return _play
