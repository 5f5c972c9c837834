"""
Conflict state machine.

    forming (constructed) → active (turns progressing) → resolved (terminal)

The conflict lives on the current scene (scene.conflict); every change to
it, and every hit a participant takes, goes through GameSession.mutate so
the whole fight replays from the delta log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from ..state.event_bus import EventType
from ..state.schema import (
    Character,
    ConflictParticipant,
    ConflictState,
    ConflictType,
    Consequence,
    SceneState,
    Side,
    TrackType,
    Winner,
)
from ..state.schemas.delta import DeltaOperation, DeltaTarget
from ..state.schemas.event import (
    CharacterDefeatedEvent,
    ConflictEndedEvent,
    ConflictStartedEvent,
    ConsequenceTakenEvent,
    StressTakenEvent,
)
from .stress import Absorption, plan_absorption

if TYPE_CHECKING:
    from ..state.manager import GameSession

logger = logging.getLogger(__name__)

SET = DeltaOperation.SET
APPEND = DeltaOperation.APPEND
SCENE = DeltaTarget.SCENE

# Which stress track a conflict type hits
STRESS_TRACK_FOR_CONFLICT: dict[ConflictType, TrackType] = {
    ConflictType.PHYSICAL: TrackType.PHYSICAL,
    ConflictType.MENTAL: TrackType.MENTAL,
    ConflictType.SOCIAL: TrackType.MENTAL,
}

# Consequences the player must hold, with a full track, to be taken out
PLAYER_TAKEN_OUT_CONSEQUENCES = 3


class ConflictError(Exception):
    """Conflict operation not possible in the current scene."""
    pass


@dataclass
class Resolution:
    resolved: bool
    winner: Winner | None = None


def is_player_taken_out(player: Character, conflict_type: ConflictType) -> bool:
    """Full stress track for the conflict's type and at least 3 consequences."""
    track = player.track(STRESS_TRACK_FOR_CONFLICT[conflict_type])
    if track is None:
        return False
    return track.is_full and len(player.consequences) >= PLAYER_TAKEN_OUT_CONSEQUENCES


class ConflictManager:
    """
    Runs the conflict in the current scene of a GameSession.

    All operations need an open turn on the session.
    """

    def __init__(self, session: "GameSession"):
        self.session = session

    # ─── Lookups ────────────────────────────────────────────────

    def _scene(self) -> SceneState:
        scene = self.session.state.current_scene
        if scene is None:
            raise ConflictError("No current scene")
        return scene

    def _conflict(self, allow_resolved: bool = False) -> ConflictState:
        conflict = self._scene().conflict
        if conflict is None:
            raise ConflictError("No conflict in the current scene")
        if conflict.is_resolved and not allow_resolved:
            raise ConflictError(f"Conflict {conflict.id} is already resolved")
        return conflict

    def _participant_index(self, conflict: ConflictState, character_id: str) -> int:
        try:
            return conflict.participant_index(character_id)
        except KeyError:
            raise ConflictError(f"{character_id} is not in conflict {conflict.id}") from None

    @property
    def conflict(self) -> ConflictState | None:
        scene = self.session.state.current_scene
        return scene.conflict if scene else None

    @property
    def in_conflict(self) -> bool:
        conflict = self.conflict
        return conflict is not None and not conflict.is_resolved

    def current_actor(self) -> str | None:
        return self._conflict().current_actor

    # ─── Transitions ────────────────────────────────────────────

    def start_conflict(
        self,
        conflict_type: ConflictType,
        opponents: Iterable[str],
        allies: Iterable[str] = (),
        name: str = "",
    ) -> ConflictState:
        """
        Put the player, allies and opponents into a new conflict.

        Turn order is the player, then allies, then opponents, fixed for
        the life of the conflict.
        """
        scene = self._scene()
        if scene.conflict is not None and not scene.conflict.is_resolved:
            raise ConflictError(f"Conflict {scene.conflict.id} is already in progress")

        state = self.session.state
        opponents, allies = list(opponents), list(allies)
        if not opponents:
            raise ConflictError("A conflict needs at least one opponent")

        order = [state.player.id, *allies, *opponents]
        if len(set(order)) != len(order):
            raise ConflictError("A character can only take one side")
        for character_id in order:
            try:
                state.character(character_id)
            except KeyError:
                raise ConflictError(f"Unknown character {character_id}") from None

        participants = [ConflictParticipant(character_id=state.player.id, side=Side.PLAYER)]
        participants += [ConflictParticipant(character_id=c, side=Side.PLAYER) for c in allies]
        participants += [ConflictParticipant(character_id=c, side=Side.OPPOSITION) for c in opponents]

        conflict = ConflictState(
            type=conflict_type,
            name=name,
            participants=participants,
            turn_order=order,
        )
        event = self.session.add_event(ConflictStartedEvent(
            conflict_id=conflict.id,
            conflict_type=conflict_type,
            participants=order,
            summary=f"{conflict_type.value.title()} conflict begins: {name or conflict.id}",
        ))
        self.session.mutate(
            SCENE, SET, ["conflict"], conflict.model_dump(mode="json"),
            cause="conflict_started", event_id=event.event_id,
        )

        if self.session.bus:
            self.session.bus.emit(
                EventType.CONFLICT_STARTED,
                session_id=self.session.session_id,
                turn=self.session.pending_turn_id or 0,
                conflict_id=conflict.id,
                participants=order,
            )
        logger.info(f"Conflict {conflict.id} started with {len(order)} participants")
        return self._conflict()

    def next_turn(self) -> str:
        """
        Advance to the next actor and return their id.

        Wrapping past the end of the turn order starts a new exchange and
        clears every participant's has_acted flag. Conceded or taken-out
        participants are not skipped.
        """
        conflict = self._conflict()
        index = conflict.current_turn_index + 1

        if index >= len(conflict.turn_order):
            index = 0
            self.session.mutate(
                SCENE, SET, ["conflict", "current_exchange"], conflict.current_exchange + 1,
                cause="new_exchange",
            )
            for i, _ in enumerate(conflict.participants):
                self.session.mutate(
                    SCENE, SET, ["conflict", "participants", i, "has_acted"], False,
                    cause="new_exchange",
                )

        self.session.mutate(SCENE, SET, ["conflict", "current_turn_index"], index, cause="next_turn")
        return conflict.turn_order[index]

    def mark_acted(self, character_id: str) -> None:
        conflict = self._conflict()
        i = self._participant_index(conflict, character_id)
        self.session.mutate(SCENE, SET, ["conflict", "participants", i, "has_acted"], True, cause="acted")

    def concede(self, character_id: str) -> None:
        """Participant gives in before being taken out."""
        conflict = self._conflict()
        i = self._participant_index(conflict, character_id)
        event = self.session.add_event(CharacterDefeatedEvent(
            character_id=character_id,
            method="conceded",
            summary=f"{character_id} concedes",
        ))
        self.session.mutate(
            SCENE, SET, ["conflict", "participants", i, "has_conceded"], True,
            cause="concede", event_id=event.event_id,
        )

    def take_out(self, character_id: str, victor: str | None = None) -> None:
        """Mark a participant as taken out (rules or narrative)."""
        conflict = self._conflict()
        i = self._participant_index(conflict, character_id)
        event = self.session.add_event(CharacterDefeatedEvent(
            character_id=character_id,
            method="taken_out",
            victor=victor,
            summary=f"{character_id} is taken out",
        ))
        self.session.mutate(
            SCENE, SET, ["conflict", "participants", i, "is_taken_out"], True,
            cause="taken_out", event_id=event.event_id,
        )

    def apply_hit(
        self,
        character_id: str,
        shifts: int,
        attacker_id: str | None = None,
        allow_extreme: bool = False,
    ) -> Absorption:
        """
        Absorb an attack's shifts with stress boxes and consequences.

        A hit that cannot be absorbed takes the character out instead.
        """
        conflict = self._conflict()
        self._participant_index(conflict, character_id)
        character = self.session.state.character(character_id)
        track_type = STRESS_TRACK_FOR_CONFLICT[conflict.type]

        plan = plan_absorption(character, track_type, shifts, allow_extreme=allow_extreme)
        if plan.taken_out:
            self.take_out(character_id, victor=attacker_id)
            return plan

        target, prefix = self.session.character_ref(character_id)
        if plan.boxes:
            track_index = next(i for i, t in enumerate(character.stress_tracks) if t.type == track_type)
            track = character.stress_tracks[track_index]
            event = self.session.add_event(StressTakenEvent(
                character_id=character_id,
                track_type=track_type,
                boxes=len(plan.boxes),
                remaining_boxes=len(track.free_boxes) - len(plan.boxes),
                summary=f"{character.name} takes {len(plan.boxes)} {track_type.value} stress",
            ))
            for box in plan.boxes:
                self.session.mutate(
                    target, SET, [*prefix, "stress_tracks", track_index, "boxes", box], True,
                    cause="stress", event_id=event.event_id,
                )

        for severity in plan.consequences:
            consequence = Consequence(
                severity=severity,
                name=f"{severity.value.title()} {track_type.value} consequence",
            )
            event = self.session.add_event(ConsequenceTakenEvent(
                character_id=character_id,
                consequence=consequence,
                shifts_absorbed=consequence.shifts_absorbed,
                summary=f"{character.name} takes a {severity.value} consequence",
            ))
            self.session.mutate(
                target, APPEND, [*prefix, "consequences"], consequence.model_dump(mode="json"),
                cause="consequence", event_id=event.event_id,
            )
        return plan

    def check_resolution(self) -> Resolution:
        """
        End the conflict if one side is out.

        The player side loses when the player conceded, was taken out, or
        has a full stress track for the conflict's type together with at
        least 3 consequences. The opposition loses only when every opponent
        has conceded or been explicitly taken out.
        """
        conflict = self._conflict(allow_resolved=True)
        if conflict.is_resolved:
            return Resolution(resolved=True, winner=conflict.winner)

        state = self.session.state
        player = conflict.participant(state.player.id)
        if (
            (player is not None and not player.is_active)
            or is_player_taken_out(state.player, conflict.type)
        ):
            self.end_conflict(Winner.OPPOSITION, "The player is taken out")
            return Resolution(resolved=True, winner=Winner.OPPOSITION)

        # TODO: opponents are never taken out by stress and consequences
        # alone; add the per-opponent track check once the rule is settled.
        if not conflict.side_members(Side.OPPOSITION, active_only=True):
            self.end_conflict(Winner.PLAYER, "All opponents are out of the fight")
            return Resolution(resolved=True, winner=Winner.PLAYER)

        return Resolution(resolved=False)

    def end_conflict(self, winner: Winner, resolution: str = "", clear_stress: bool = False) -> None:
        """
        Set the terminal fields directly, whatever state the conflict is in.

        clear_stress empties every participant's stress boxes afterwards.
        """
        conflict = self._conflict(allow_resolved=True)
        event = self.session.add_event(ConflictEndedEvent(
            conflict_id=conflict.id,
            winner=winner,
            resolution=resolution,
            summary=f"Conflict ends: {winner.value} wins",
        ))
        for field_name, value in (("is_resolved", True), ("winner", winner.value), ("resolution", resolution)):
            self.session.mutate(
                SCENE, SET, ["conflict", field_name], value,
                cause="conflict_ended", event_id=event.event_id,
            )

        if clear_stress:
            for participant in conflict.participants:
                self.clear_stress(participant.character_id, event_id=event.event_id)

        if self.session.bus:
            self.session.bus.emit(
                EventType.CONFLICT_RESOLVED,
                session_id=self.session.session_id,
                turn=self.session.pending_turn_id or 0,
                conflict_id=conflict.id,
                winner=winner.value,
            )
        logger.info(f"Conflict {conflict.id} resolved: {winner.value}")

    def clear_stress(self, character_id: str, event_id: str = "") -> None:
        """Empty all stress boxes for a character."""
        character = self.session.state.character(character_id)
        target, prefix = self.session.character_ref(character_id)
        for i, track in enumerate(character.stress_tracks):
            if any(track.boxes):
                self.session.mutate(
                    target, SET, [*prefix, "stress_tracks", i, "boxes"], [False] * track.capacity,
                    cause="clear_stress", event_id=event_id,
                )
