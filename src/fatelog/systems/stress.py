"""
Stress and consequence absorption.

Pure planning: given a character and incoming shifts, decide which stress
boxes and consequence slots soak the hit. Applying the plan is the
conflict manager's job.
"""

from dataclasses import dataclass, field

from ..state.schema import (
    CONSEQUENCE_SHIFT_ABSORB,
    Character,
    ConsequenceSeverity,
    TrackType,
)

# Slots in the order they are filled
CONSEQUENCE_ORDER = [
    ConsequenceSeverity.MILD,
    ConsequenceSeverity.MODERATE,
    ConsequenceSeverity.SEVERE,
    ConsequenceSeverity.EXTREME,
]


@dataclass
class Absorption:
    """How a hit is absorbed. taken_out means it cannot be."""
    shifts: int
    boxes: list[int] = field(default_factory=list)  # Stress box indices to mark
    consequences: list[ConsequenceSeverity] = field(default_factory=list)
    taken_out: bool = False

    @property
    def absorbed(self) -> int:
        return len(self.boxes) + sum(CONSEQUENCE_SHIFT_ABSORB[c] for c in self.consequences)


def open_consequence_slots(character: Character, allow_extreme: bool = False) -> list[ConsequenceSeverity]:
    held = {c.severity for c in character.consequences}
    slots = [s for s in CONSEQUENCE_ORDER if s not in held]
    if not allow_extreme:
        slots = [s for s in slots if s != ConsequenceSeverity.EXTREME]
    return slots


def plan_absorption(
    character: Character,
    track_type: TrackType,
    shifts: int,
    allow_extreme: bool = False,
) -> Absorption:
    """
    Soak `shifts` with free stress boxes first (one shift each), then the
    smallest open consequence slots (2/4/6/8). If the total is not enough
    the character is taken out and nothing is marked.
    """
    plan = Absorption(shifts=max(shifts, 0))
    remaining = plan.shifts
    if remaining == 0:
        return plan

    track = character.track(track_type)
    if track is not None:
        for index in track.free_boxes:
            if remaining == 0:
                break
            plan.boxes.append(index)
            remaining -= 1

    for severity in open_consequence_slots(character, allow_extreme):
        if remaining <= 0:
            break
        plan.consequences.append(severity)
        remaining -= CONSEQUENCE_SHIFT_ABSORB[severity]

    if remaining > 0:
        return Absorption(shifts=plan.shifts, taken_out=True)
    return plan
