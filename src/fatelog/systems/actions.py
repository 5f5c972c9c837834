"""
Action resolution: roll, pay invokes, resolve, apply the aftermath.

The four Fate actions:
- overcome: get past an obstacle; a tie or success with style earns a boost
- create_advantage: a success puts a situational aspect in play with one
  free invoke (two with style); a tie gives a boost instead
- attack: shifts > 0 land as a hit on the target in the current conflict
- defend: resolved like any roll, with no aftermath here
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from ..state.schema import Aspect, AspectType
from ..state.schemas.event import DiceRolledEvent
from ..tools.dice import FateDice, InvokeEffect, Outcome, ResolutionResult, ladder_name, resolve_action
from .aspects import AspectService
from .conflict import ConflictManager
from .stress import Absorption

if TYPE_CHECKING:
    from ..state.manager import GameSession

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    OVERCOME = "overcome"
    CREATE_ADVANTAGE = "create_advantage"
    ATTACK = "attack"
    DEFEND = "defend"


@dataclass
class ActionOutcome:
    result: ResolutionResult
    action: ActionType
    skill: str | None
    created_aspect: Aspect | None = None
    hit: Absorption | None = None
    events: list[str] = field(default_factory=list)  # event_ids recorded for this action

    @property
    def succeeded(self) -> bool:
        return self.result.outcome in (Outcome.SUCCESS, Outcome.SUCCESS_WITH_STYLE)


class ActionService:
    """Resolves a character's action inside the session's open turn."""

    def __init__(self, session: "GameSession"):
        self.session = session
        self.aspects = AspectService(session)
        self.conflicts = ConflictManager(session)

    def attempt(
        self,
        actor_id: str,
        skill: str | None,
        difficulty: int,
        action: ActionType = ActionType.OVERCOME,
        invokes: Iterable[tuple[str, InvokeEffect]] = (),
        target_id: str | None = None,
        aspect_name: str | None = None,
    ) -> ActionOutcome:
        """
        Roll for an action.

        Args:
            actor_id: Character acting
            skill: Skill used; None or untrained means Mediocre (+0)
            difficulty: Ladder value to beat (opposition or passive)
            action: One of the four actions
            invokes: (aspect_id, effect) pairs; all must be affordable, then
                each is paid before resolving
            target_id: Defender for attacks, aspect owner for advantages
            aspect_name: Name for an aspect created by the action
        """
        ladder_name(difficulty)
        actor = self.session.state.character(actor_id)
        rank = actor.skill_rank(skill)
        invokes = list(invokes)
        self.aspects.check_invokes(actor_id, [aspect_id for aspect_id, _ in invokes])

        dice = FateDice(self.session.rng())
        roll = dice.roll()
        paid = [self.aspects.pay_for_invoke(actor_id, aspect_id, effect) for aspect_id, effect in invokes]
        result = resolve_action(roll, rank, difficulty, paid, dice=dice)

        event = self.session.add_event(DiceRolledEvent(
            actor=actor_id,
            action=action.value,
            skill=skill,
            skill_rank=rank,
            dice=result.roll.dice,
            roll_total=result.roll.total,
            invoke_bonus=result.invoke_bonus,
            total=result.total,
            difficulty=difficulty,
            difficulty_name=result.difficulty_name,
            shifts=result.shifts,
            outcome=result.outcome.value,
            summary=f"{actor.name} rolls {skill or 'unskilled'} {result.roll.faces}: {result.narrative}",
        ))
        outcome = ActionOutcome(result=result, action=action, skill=skill, events=[event.event_id])

        if action == ActionType.CREATE_ADVANTAGE:
            outcome.created_aspect = self._create_advantage(actor_id, result, target_id, aspect_name)
        elif action == ActionType.OVERCOME:
            if result.outcome in (Outcome.TIE, Outcome.SUCCESS_WITH_STYLE):
                outcome.created_aspect = self._boost(actor_id, aspect_name)
        elif action == ActionType.ATTACK and target_id and result.shifts > 0:
            if self.conflicts.in_conflict:
                outcome.hit = self.conflicts.apply_hit(target_id, result.shifts, attacker_id=actor_id)
            else:
                logger.warning(f"Attack on {target_id} outside a conflict; no hit applied")

        conflict = self.conflicts.conflict
        if conflict and not conflict.is_resolved and conflict.participant(actor_id):
            self.conflicts.mark_acted(actor_id)

        return outcome

    def _create_advantage(
        self,
        actor_id: str,
        result: ResolutionResult,
        target_id: str | None,
        aspect_name: str | None,
    ) -> Aspect | None:
        if result.outcome == Outcome.TIE:
            return self._boost(actor_id, aspect_name)
        if result.outcome == Outcome.FAIL:
            return None

        free = 2 if result.outcome == Outcome.SUCCESS_WITH_STYLE else 1
        aspect = Aspect(
            name=aspect_name or "Seized Advantage",
            type=AspectType.SITUATIONAL,
            free_invokes=free,
            source=actor_id,
        )
        return self.aspects.create_aspect(target_id or "scene", aspect)

    def _boost(self, actor_id: str, aspect_name: str | None) -> Aspect:
        boost = Aspect(
            name=aspect_name or "Momentum",
            type=AspectType.BOOST,
            free_invokes=1,
            source=actor_id,
        )
        return self.aspects.create_aspect(actor_id, boost)
