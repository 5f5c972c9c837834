"""
Zones, movement and positioning.

move_character() only plans: it checks the scene's zone map and, for a
barrier crossed mid-conflict, resolves the Overcome-style check. The
ZoneService turns a successful plan into deltas. Everything else here is
a read-only view over the zone map and the conflict's participants.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..state.schema import ConflictState, SceneState, Side, Zone
from ..state.schemas.delta import DeltaOperation, DeltaTarget
from ..state.schemas.event import CharacterMovedEvent

if TYPE_CHECKING:
    from ..state.manager import GameSession

# Shifts spent crossing a barrier, whatever the margin
BARRIER_MOVE_COST = 1


@dataclass
class MovementResult:
    success: bool
    message: str
    from_zone_id: str | None = None
    to_zone_id: str | None = None
    cost_shifts: int = 0
    difficulty: int | None = None  # Barrier, when one was rolled against
    deficit: int = 0  # How far short a failed barrier roll fell


def move_character(
    scene: SceneState,
    character_id: str,
    target_zone_id: str,
    skill_rating: int = 0,
    dice_roll: int = 0,
    in_combat: bool = False,
) -> MovementResult:
    """
    Plan a move between zones.

    Free movement (no barrier, or out of combat) always succeeds at no
    cost. In combat a barrier > 0 must be beaten: skill_rating + dice_roll
    below the barrier fails with the deficit reported; otherwise the move
    succeeds and costs exactly one shift.
    """
    if scene.zones is None:
        return MovementResult(False, "No zones defined in this scene.")

    target = scene.zones.get_zone(target_zone_id)
    if target is None:
        return MovementResult(False, f"Zone {target_zone_id} not found.")

    current = scene.zones.zone_of(character_id)
    if current is None:
        return MovementResult(True, f"Entered {target.name}.", to_zone_id=target.id)

    if current.id == target.id:
        return MovementResult(False, f"Already in {target.name}.", from_zone_id=current.id)

    connection = scene.zones.connection_between(current.id, target.id)
    if connection is None:
        return MovementResult(
            False, f"No direct path from {current.name} to {target.name}.", from_zone_id=current.id
        )

    if in_combat and connection.barrier > 0:
        roll = skill_rating + dice_roll
        if roll < connection.barrier:
            return MovementResult(
                False,
                f"Movement blocked: needed {connection.barrier}, got {roll}.",
                from_zone_id=current.id,
                to_zone_id=target.id,
                difficulty=connection.barrier,
                deficit=connection.barrier - roll,
            )
        return MovementResult(
            True,
            f"Crossed into {target.name} (1 shift spent on the barrier).",
            from_zone_id=current.id,
            to_zone_id=target.id,
            cost_shifts=BARRIER_MOVE_COST,
            difficulty=connection.barrier,
        )

    return MovementResult(True, f"Moved to {target.name}.", from_zone_id=current.id, to_zone_id=target.id)


class ZoneService:
    """Applies movement to a session's current scene."""

    def __init__(self, session: "GameSession"):
        self.session = session

    def move(
        self,
        character_id: str,
        target_zone_id: str,
        skill_rating: int = 0,
        dice_roll: int = 0,
        in_combat: bool | None = None,
    ) -> MovementResult:
        """
        Plan and, on success, apply a move.

        in_combat defaults to whether the scene has an unresolved conflict.
        """
        scene = self.session.state.current_scene
        if scene is None:
            return MovementResult(False, "No current scene.")
        if in_combat is None:
            in_combat = scene.conflict is not None and not scene.conflict.is_resolved

        result = move_character(scene, character_id, target_zone_id, skill_rating, dice_roll, in_combat)
        if not result.success:
            return result

        event = self.session.add_event(CharacterMovedEvent(
            character_id=character_id,
            from_zone_id=result.from_zone_id,
            to_zone_id=result.to_zone_id,
            cost_shifts=result.cost_shifts,
            summary=result.message,
        ))
        if result.from_zone_id is not None:
            from_index = scene.zones.zone_index(result.from_zone_id)
            self.session.mutate(
                DeltaTarget.SCENE, DeltaOperation.REMOVE,
                ["zones", "zones", from_index, "character_ids"], character_id,
                cause="move", event_id=event.event_id,
            )
        to_index = scene.zones.zone_index(result.to_zone_id)
        self.session.mutate(
            DeltaTarget.SCENE, DeltaOperation.APPEND,
            ["zones", "zones", to_index, "character_ids"], character_id,
            cause="move", event_id=event.event_id,
        )
        return result


# -----------------------------------------------------------------------------
# Read-only views
# -----------------------------------------------------------------------------

def zone_of(scene: SceneState, character_id: str) -> Zone | None:
    return scene.zones.zone_of(character_id) if scene.zones else None


def characters_in_zone(scene: SceneState, zone_id: str) -> list[str]:
    if scene.zones is None:
        return []
    zone = scene.zones.get_zone(zone_id)
    return list(zone.character_ids) if zone else []


def zone_info(scene: SceneState, zone_id: str) -> dict | None:
    """Zone summary with its neighbours and their barriers."""
    if scene.zones is None:
        return None
    zone = scene.zones.get_zone(zone_id)
    if zone is None:
        return None
    neighbours = []
    for c in scene.zones.connections:
        if zone_id in (c.from_zone_id, c.to_zone_id):
            other = c.to_zone_id if c.from_zone_id == zone_id else c.from_zone_id
            neighbours.append({"zone_id": other, "barrier": c.barrier})
    return {
        "id": zone.id,
        "name": zone.name,
        "aspects": [a.name for a in zone.aspects],
        "characters": list(zone.character_ids),
        "connections": neighbours,
    }


def zone_control(scene: SceneState, conflict: ConflictState) -> dict[str, dict[Side, int]]:
    """Active participants per zone, by side."""
    if scene.zones is None:
        return {}
    sides = {p.character_id: p.side for p in conflict.participants if p.is_active}
    control = {}
    for zone in scene.zones.zones:
        counts = {Side.PLAYER: 0, Side.OPPOSITION: 0}
        for character_id in zone.character_ids:
            side = sides.get(character_id)
            if side in counts:
                counts[side] += 1
        control[zone.id] = counts
    return control


def _other(side: Side) -> Side:
    return Side.OPPOSITION if side == Side.PLAYER else Side.PLAYER


def controlled_zones(scene: SceneState, conflict: ConflictState, side: Side) -> list[str]:
    """Zones where `side` outnumbers the other side."""
    return [
        zone_id for zone_id, counts in zone_control(scene, conflict).items()
        if counts[side] > counts[_other(side)]
    ]


def has_numerical_advantage(conflict: ConflictState, side: Side) -> bool:
    """More active participants than the other side."""
    return len(conflict.side_members(side, active_only=True)) > len(
        conflict.side_members(_other(side), active_only=True)
    )


def is_tight_formation(scene: SceneState, conflict: ConflictState, side: Side) -> bool:
    """At least half (rounded up) of the side's active members share one zone."""
    members = conflict.side_members(side, active_only=True)
    if not members or scene.zones is None:
        return False
    per_zone: dict[str, int] = {}
    for p in members:
        zone = scene.zones.zone_of(p.character_id)
        if zone:
            per_zone[zone.id] = per_zone.get(zone.id, 0) + 1
    if not per_zone:
        return False
    return max(per_zone.values()) >= math.ceil(len(members) / 2)


@dataclass
class PositioningAnalysis:
    controlled_zones: list[str] = field(default_factory=list)
    numerical_advantage: bool = False
    tight_formation: bool = False
    recommendation: str = ""


def analyze_positioning(scene: SceneState, conflict: ConflictState, side: Side = Side.PLAYER) -> PositioningAnalysis:
    if scene.zones is None:
        return PositioningAnalysis(recommendation="No zone information available")

    analysis = PositioningAnalysis(
        controlled_zones=controlled_zones(scene, conflict, side),
        numerical_advantage=has_numerical_advantage(conflict, side),
        tight_formation=is_tight_formation(scene, conflict, side),
    )
    if analysis.controlled_zones and analysis.numerical_advantage:
        analysis.recommendation = "Strong position: press the advantage with coordinated attacks"
    elif analysis.tight_formation:
        analysis.recommendation = "Well positioned: hold formation and support allies"
    elif analysis.numerical_advantage:
        analysis.recommendation = "Numerical advantage: spread out to control more zones"
    else:
        analysis.recommendation = "Outnumbered: close ranks and stay defensive"
    return analysis
