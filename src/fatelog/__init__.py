"""
fatelog: event-sourced session engine for Fate Core games.

Every state change is a logged Delta, so any session can be rebuilt,
stepped through, or audited from its logs.
"""

__version__ = "0.4.0"

# state must load before systems: the session manager imports the turn recorder
from .state import GameSession, GameState, ReplayEngine, SessionManager, StateInspector

__all__ = [
    "__version__",
    "GameSession",
    "GameState",
    "ReplayEngine",
    "SessionManager",
    "StateInspector",
]
