"""Dice and ladder tools for fatelog."""

from .dice import (
    LADDER,
    FateDice,
    FateRoll,
    Invoke,
    InvokeEffect,
    LadderError,
    Outcome,
    ResolutionResult,
    classify_outcome,
    format_ladder,
    ladder_name,
    ladder_value,
    resolve_action,
    session_rng,
)

__all__ = [
    "LADDER",
    "FateDice",
    "FateRoll",
    "Invoke",
    "InvokeEffect",
    "LadderError",
    "Outcome",
    "ResolutionResult",
    "classify_outcome",
    "format_ladder",
    "ladder_name",
    "ladder_value",
    "resolve_action",
    "session_rng",
]
