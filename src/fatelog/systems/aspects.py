"""
Aspects and Fate Points.

Handles paying for invokes, creating aspects, compels, and refresh.
Every invoke costs exactly one unit: a free invoke on the aspect if it
has one, otherwise one of the invoking character's Fate Points. Fate
Points never go below zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from ..state.schema import Aspect, AspectType, GameState
from ..state.schemas.delta import DeltaOperation, DeltaTarget
from ..state.schemas.event import (
    AspectCompelledEvent,
    AspectCreatedEvent,
    AspectInvokedEvent,
    FatePointEvent,
)
from ..tools.dice import Invoke, InvokeEffect

if TYPE_CHECKING:
    from ..state.manager import GameSession

SET = DeltaOperation.SET


class AspectError(Exception):
    """Error working with aspects."""
    pass


class InvokeError(AspectError):
    """Invoke could not be paid for."""
    pass


class InsufficientFatePointsError(InvokeError):
    def __init__(self, character_id: str, needed: int = 1, available: int = 0):
        self.character_id = character_id
        self.needed = needed
        self.available = available
        super().__init__(f"{character_id} needs {needed} Fate Point(s), has {available}")


class UnknownAspectError(InvokeError):
    def __init__(self, aspect_id: str):
        self.aspect_id = aspect_id
        super().__init__(f"No aspect with id {aspect_id} in reach")


class UnknownOwnerError(AspectError):
    def __init__(self, owner: str):
        self.owner = owner
        super().__init__(f"Nothing named {owner} can hold an aspect")


@dataclass
class AspectLocation:
    """Where an aspect lives: the delta target and path of its list."""
    target: DeltaTarget
    list_path: list[str | int]
    index: int
    aspect: Aspect

    @property
    def path(self) -> list[str | int]:
        return [*self.list_path, self.index]


def _aspect_lists(state: GameState) -> list[tuple[DeltaTarget, list, list[Aspect]]]:
    lists: list[tuple[DeltaTarget, list, list[Aspect]]] = [
        (DeltaTarget.PLAYER, ["aspects"], state.player.aspects),
    ]
    for npc_id, npc in state.npcs.items():
        lists.append((DeltaTarget.NPC, [npc_id, "aspects"], npc.aspects))

    scene = state.current_scene
    if scene is not None:
        lists.append((DeltaTarget.SCENE, ["aspects"], scene.aspects))
        if scene.zones is not None:
            for i, zone in enumerate(scene.zones.zones):
                lists.append((DeltaTarget.SCENE, ["zones", "zones", i, "aspects"], zone.aspects))
        if scene.conflict is not None:
            lists.append((DeltaTarget.SCENE, ["conflict", "aspects"], scene.conflict.aspects))

    lists.append((DeltaTarget.SESSION, ["session_aspects"], state.session_aspects))
    lists.append((DeltaTarget.WORLD, ["aspects"], state.world.aspects))
    return lists


def find_aspect(session: "GameSession", aspect_id: str) -> AspectLocation | None:
    """Look through characters, scene, zones, conflict, session and world."""
    state = session.state
    for target, list_path, aspects in _aspect_lists(state):
        for i, aspect in enumerate(aspects):
            if aspect.id == aspect_id:
                return AspectLocation(target=target, list_path=list_path, index=i, aspect=aspect)
    return None


class AspectService:
    """Aspect and Fate Point operations on a GameSession (needs an open turn)."""

    def __init__(self, session: "GameSession"):
        self.session = session

    def fate_points(self, character_id: str) -> int:
        return self.session.state.character(character_id).fate_points.current

    def _set_fate_points(self, character_id: str, change: int, reason: str) -> int:
        current = self.fate_points(character_id)
        new_total = current + change
        if new_total < 0:
            raise InsufficientFatePointsError(character_id, needed=-change, available=current)

        target, prefix = self.session.character_ref(character_id)
        event = self.session.add_event(FatePointEvent(
            character_id=character_id,
            change=change,
            reason=reason,
            new_total=new_total,
            summary=f"{character_id} {'gains' if change > 0 else 'spends'} {abs(change)} Fate Point ({reason})",
        ))
        self.session.mutate(
            target, SET, [*prefix, "fate_points", "current"], new_total,
            cause=reason, event_id=event.event_id,
        )
        return new_total

    def check_invokes(self, character_id: str, aspect_ids: Iterable[str]) -> int:
        """
        Check that a set of invokes can all be paid, without paying any.

        Free invokes are counted first, as pay_for_invoke uses them.
        Returns the number of Fate Points the set will cost.
        """
        remaining: dict[str, Aspect | None] = {}
        needed = 0
        for aspect_id in aspect_ids:
            if aspect_id not in remaining:
                location = find_aspect(self.session, aspect_id)
                remaining[aspect_id] = location.aspect.model_copy() if location else None
            aspect = remaining[aspect_id]
            if aspect is None:
                raise UnknownAspectError(aspect_id)

            if aspect.free_invokes == 0:
                needed += 1
            elif aspect.type == AspectType.BOOST and aspect.free_invokes == 1:
                remaining[aspect_id] = None  # removed once used
            else:
                aspect.free_invokes -= 1

        available = self.fate_points(character_id)
        if needed > available:
            raise InsufficientFatePointsError(character_id, needed=needed, available=available)
        return needed

    def pay_for_invoke(
        self,
        character_id: str,
        aspect_id: str,
        effect: InvokeEffect = InvokeEffect.BONUS,
    ) -> Invoke:
        """
        Pay for one invoke and return it, ready for resolve_action().

        A free invoke is used first; a boost whose last free invoke is used
        is removed. Otherwise one Fate Point is spent.
        """
        location = find_aspect(self.session, aspect_id)
        if location is None:
            raise UnknownAspectError(aspect_id)
        aspect = location.aspect
        self.session.state.character(character_id)

        free = aspect.free_invokes > 0
        if not free and self.fate_points(character_id) < 1:
            raise InsufficientFatePointsError(character_id, needed=1, available=0)

        event = self.session.add_event(AspectInvokedEvent(
            actor=character_id,
            aspect_id=aspect.id,
            aspect_name=aspect.name,
            effect=effect.value,
            fate_point_spent=not free,
            summary=f"{character_id} invokes '{aspect.name}' ({effect.value})",
        ))

        if free:
            if aspect.type == AspectType.BOOST and aspect.free_invokes == 1:
                self.session.mutate(
                    location.target, DeltaOperation.REMOVE, location.path,
                    cause="boost_used", event_id=event.event_id,
                )
            else:
                self.session.mutate(
                    location.target, SET, [*location.path, "free_invokes"], aspect.free_invokes - 1,
                    cause="free_invoke", event_id=event.event_id,
                )
        else:
            self._set_fate_points(character_id, -1, "invoke")

        return Invoke(aspect_id=aspect.id, effect=effect, aspect_name=aspect.name)

    def _owner_list(self, owner: str) -> tuple[DeltaTarget, list[str | int]]:
        state = self.session.state
        if owner == "scene":
            if state.current_scene is None:
                raise UnknownOwnerError(owner)
            return DeltaTarget.SCENE, ["aspects"]
        if owner == "session":
            return DeltaTarget.SESSION, ["session_aspects"]
        if owner == "world":
            return DeltaTarget.WORLD, ["aspects"]
        try:
            target, prefix = self.session.character_ref(owner)
            return target, [*prefix, "aspects"]
        except KeyError:
            pass
        scene = state.current_scene
        if scene is not None and scene.zones is not None and scene.zones.get_zone(owner):
            return DeltaTarget.SCENE, ["zones", "zones", scene.zones.zone_index(owner), "aspects"]
        raise UnknownOwnerError(owner)

    def create_aspect(self, owner: str, aspect: Aspect) -> Aspect:
        """
        Attach an aspect to a character id, "scene", "session", "world",
        or a zone id in the current scene.
        """
        target, list_path = self._owner_list(owner)
        event = self.session.add_event(AspectCreatedEvent(
            aspect=aspect,
            owner=owner,
            summary=f"New aspect on {owner}: '{aspect.name}'",
        ))
        self.session.mutate(
            target, DeltaOperation.APPEND, list_path, aspect.model_dump(mode="json"),
            cause="aspect_created", event_id=event.event_id,
        )
        return aspect

    def compel(self, character_id: str, aspect_id: str, complication: str, accepted: bool) -> int:
        """
        Offer a compel. Accepting earns a Fate Point; refusing costs one.

        Returns the new Fate Point total.
        """
        location = find_aspect(self.session, aspect_id)
        if location is None:
            raise UnknownAspectError(aspect_id)
        if not accepted and self.fate_points(character_id) < 1:
            raise InsufficientFatePointsError(character_id, needed=1, available=0)

        self.session.add_event(AspectCompelledEvent(
            aspect_id=aspect_id,
            aspect_name=location.aspect.name,
            target=character_id,
            complication=complication,
            accepted=accepted,
            summary=f"'{location.aspect.name}' compelled: {complication} ({'accepted' if accepted else 'refused'})",
        ))
        return self._set_fate_points(character_id, 1 if accepted else -1, "compel" if accepted else "compel_refused")

    def refresh(self, character_id: str) -> int:
        """Bring Fate Points up to refresh; a higher balance is kept."""
        character = self.session.state.character(character_id)
        current, refresh = character.fate_points.current, character.fate_points.refresh
        if current >= refresh:
            return current
        return self._set_fate_points(character_id, refresh - current, "refresh")

    def award_fate_point(self, character_id: str, amount: int = 1, reason: str = "award") -> int:
        if amount < 1:
            raise ValueError(f"Award must be positive, got {amount}")
        return self._set_fate_points(character_id, amount, reason)
