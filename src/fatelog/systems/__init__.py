"""Fate rules that act on a live GameSession."""

from .actions import ActionOutcome, ActionService, ActionType
from .aspects import (
    AspectError,
    AspectService,
    InsufficientFatePointsError,
    InvokeError,
    UnknownAspectError,
    UnknownOwnerError,
    find_aspect,
)
from .conflict import ConflictError, ConflictManager, Resolution
from .stress import Absorption, plan_absorption
from .turns import InvalidPhaseError, StaleSessionError, TurnError, TurnPhase, TurnRecorder
from .world_events import add_world_event, evaluate_condition, process_world_events
from .zones import MovementResult, ZoneService, analyze_positioning, move_character

__all__ = [
    "ActionOutcome",
    "ActionService",
    "ActionType",
    "AspectError",
    "AspectService",
    "InsufficientFatePointsError",
    "InvokeError",
    "UnknownAspectError",
    "UnknownOwnerError",
    "find_aspect",
    "ConflictError",
    "ConflictManager",
    "Resolution",
    "Absorption",
    "plan_absorption",
    "InvalidPhaseError",
    "StaleSessionError",
    "TurnError",
    "TurnPhase",
    "TurnRecorder",
    "add_world_event",
    "evaluate_condition",
    "process_world_events",
    "MovementResult",
    "ZoneService",
    "analyze_positioning",
    "move_character",
]
