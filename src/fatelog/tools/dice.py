"""
Dice rolling tools for fatelog.

Handles Fate dice (4dF), the adjective ladder, and action resolution with
aspect invokes. Every roll draws from an explicit random.Random so that a
session seeded once replays identically.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from ..state.schema import LADDER_MAX, LADDER_MIN


LADDER: dict[int, str] = {
    -2: "Terrible",
    -1: "Poor",
    0: "Mediocre",
    1: "Average",
    2: "Fair",
    3: "Good",
    4: "Great",
    5: "Superb",
    6: "Fantastic",
    7: "Epic",
    8: "Legendary",
}

_LADDER_BY_NAME = {name.lower(): value for value, name in LADDER.items()}


class LadderError(ValueError):
    """Value or name is not on the ladder."""
    pass


def ladder_name(value: int) -> str:
    """Adjective for a ladder value. Raises LadderError outside [-2, 8]."""
    if not LADDER_MIN <= value <= LADDER_MAX:
        raise LadderError(f"{value} is off the ladder ({LADDER_MIN}..{LADDER_MAX})")
    return LADDER[value]


def ladder_value(name: str) -> int:
    """Ladder value for an adjective (case-insensitive)."""
    try:
        return _LADDER_BY_NAME[name.strip().lower()]
    except KeyError:
        raise LadderError(f"'{name}' is not a ladder rung") from None


def format_ladder(value: int) -> str:
    """e.g. 'Good (+3)'."""
    return f"{ladder_name(value)} ({value:+d})"


def session_rng(seed: int, turn_id: int) -> random.Random:
    """Generator for one turn of one session; same inputs, same draws."""
    return random.Random(f"{seed}:{turn_id}")


# -----------------------------------------------------------------------------
# Rolling
# -----------------------------------------------------------------------------

@dataclass
class FateRoll:
    """Four Fate dice, each -1, 0 or +1."""
    dice: list[int]

    @property
    def total(self) -> int:
        return sum(self.dice)

    @property
    def faces(self) -> str:
        """e.g. '[+][-][ ][+]'."""
        symbols = {-1: "-", 0: " ", 1: "+"}
        return "".join(f"[{symbols[d]}]" for d in self.dice)


class FateDice:
    """Rolls 4dF from a caller-supplied generator."""

    def __init__(self, rng: random.Random):
        self.rng = rng

    def roll_die(self) -> int:
        return self.rng.choice((-1, 0, 1))

    def roll(self) -> FateRoll:
        return FateRoll(dice=[self.roll_die() for _ in range(4)])


# -----------------------------------------------------------------------------
# Resolution
# -----------------------------------------------------------------------------

class Outcome(str, Enum):
    FAIL = "fail"
    TIE = "tie"
    SUCCESS = "success"
    SUCCESS_WITH_STYLE = "success_with_style"


def classify_outcome(shifts: int) -> Outcome:
    if shifts < 0:
        return Outcome.FAIL
    if shifts == 0:
        return Outcome.TIE
    if shifts <= 2:
        return Outcome.SUCCESS
    return Outcome.SUCCESS_WITH_STYLE


class InvokeEffect(str, Enum):
    BONUS = "+2"
    REROLL = "reroll"


@dataclass
class Invoke:
    """An already-paid invoke to fold into a roll."""
    aspect_id: str
    effect: InvokeEffect = InvokeEffect.BONUS
    aspect_name: str = ""


@dataclass
class ResolutionResult:
    """Result of an action roll against a difficulty."""
    skill_rank: int
    roll: FateRoll  # The roll that counted
    invoke_bonus: int
    total: int
    difficulty: int
    shifts: int
    outcome: Outcome
    rerolls: list[FateRoll] = field(default_factory=list)  # Rolls replaced by reroll invokes
    invokes: list[Invoke] = field(default_factory=list)

    @property
    def difficulty_name(self) -> str:
        return ladder_name(self.difficulty)

    @property
    def result_name(self) -> str:
        """Ladder adjective for the total, clamped to the ladder ends."""
        return LADDER[max(LADDER_MIN, min(LADDER_MAX, self.total))]

    @property
    def narrative(self) -> str:
        """Narrative description of the result."""
        if self.outcome == Outcome.SUCCESS_WITH_STYLE:
            return "success with style"
        if self.outcome == Outcome.SUCCESS:
            return "clean success" if self.shifts == 2 else "narrow success"
        if self.outcome == Outcome.TIE:
            return "success at a minor cost"
        if self.shifts <= -3:
            return "complete failure"
        return "near miss"


def resolve_action(
    roll: FateRoll,
    skill_rank: int,
    difficulty: int,
    invokes: Iterable[Invoke] = (),
    dice: FateDice | None = None,
) -> ResolutionResult:
    """
    Resolve an action: skill + roll + invoke bonuses against a difficulty.

    Invokes are applied in order before the total is computed. A +2 invoke
    adds 2; a reroll invoke replaces the die pool with a fresh roll from
    `dice`, and the new roll stands even if it is worse.

    Raises:
        LadderError: difficulty is not a ladder value
        ValueError: a reroll invoke was given without dice to roll
    """
    ladder_name(difficulty)

    invokes = list(invokes)
    current = roll
    rerolls: list[FateRoll] = []
    bonus = 0

    for invoke in invokes:
        if invoke.effect == InvokeEffect.REROLL:
            if dice is None:
                raise ValueError(f"Reroll invoke on {invoke.aspect_id} needs dice to roll")
            rerolls.append(current)
            current = dice.roll()
        else:
            bonus += 2

    total = skill_rank + current.total + bonus
    shifts = total - difficulty

    return ResolutionResult(
        skill_rank=skill_rank,
        roll=current,
        invoke_bonus=bonus,
        total=total,
        difficulty=difficulty,
        shifts=shifts,
        outcome=classify_outcome(shifts),
        rerolls=rerolls,
        invokes=invokes,
    )
