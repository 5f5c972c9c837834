"""
Validated call sites on the generation boundary.

Every call site follows the same shape: build a request, call the backend
with bounded retry, parse the untrusted content into a strict model, and
on any failure return that call site's single fallback value. A backend
outage therefore slows a turn down but never stops it.
"""

import json
import logging
import re
from typing import Literal, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..state.schema import LADDER_MAX, LADDER_MIN, Character
from ..state.schemas.turn import Turn
from .base import GenerationRequest, LLMProvider
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Mid-ladder default when the difficulty cannot be read
FALLBACK_DIFFICULTY = 2  # Fair


class SkillMapping(BaseModel):
    skill: str | None = None  # None: untrained, Mediocre (+0)
    difficulty: int = FALLBACK_DIFFICULTY

    @field_validator("difficulty")
    @classmethod
    def _on_ladder(cls, v: int) -> int:
        if not LADDER_MIN <= v <= LADDER_MAX:
            raise ValueError(f"difficulty {v} is off the ladder")
        return v


IntentKind = Literal[
    "fate_action",
    "dialogue",
    "travel",
    "concede",
    "self_compel",
    "declaration",
    "narrative",
]


class Intent(BaseModel):
    kind: IntentKind = "narrative"
    target: str | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _extract_json_object(content: str) -> str | None:
    """First balanced {...} in the text, ignoring braces inside strings."""
    start = content.find("{")
    while start != -1:
        depth, in_string, escaped = 0, False, False
        for i in range(start, len(content)):
            ch = content[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return content[start:i + 1]
        start = content.find("{", start + 1)
    return None


def parse_structured(content: str, model_cls: type[M]) -> M | None:
    """
    Parse untrusted text into model_cls, or None.

    Strips Markdown code fences and falls back to the first JSON object
    embedded in surrounding prose.
    """
    text = (content or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    candidates = [text]
    embedded = _extract_json_object(text)
    if embedded and embedded != text:
        candidates.append(embedded)

    for candidate in candidates:
        try:
            return model_cls.model_validate_json(candidate)
        except ValidationError:
            continue
    return None


async def _generate(client: LLMProvider, request: GenerationRequest, policy: RetryPolicy | None, call_site: str) -> str | None:
    try:
        response = await with_retry(lambda: client.generate(request), policy)
    except Exception as e:
        logger.warning(f"{call_site}: generation failed, using fallback: {e}")
        return None
    return response.content


# -----------------------------------------------------------------------------
# Call sites
# -----------------------------------------------------------------------------

async def map_action_to_skill(
    client: LLMProvider,
    action_text: str,
    character: Character,
    policy: RetryPolicy | None = None,
) -> SkillMapping:
    """
    Which skill an action uses and how hard it is.

    Fallback: no skill (untrained, +0) against Fair (+2). A skill the
    character does not have is kept by name and rolls at +0.
    """
    request = GenerationRequest(
        system_prompt=(
            "Pick the skill for the action and a difficulty from -2 to 8. "
            'Reply with JSON: {"skill": <name or null>, "difficulty": <int>}.'
        ),
        user_prompt=json.dumps({"action": action_text, "skills": character.skills}),
        temperature=0.1,
        json_mode=True,
    )
    content = await _generate(client, request, policy, "map_action_to_skill")
    if content is None:
        return SkillMapping()

    mapping = parse_structured(content, SkillMapping)
    if mapping is None:
        logger.warning(f"map_action_to_skill: unparseable response, using fallback: {content[:80]!r}")
        return SkillMapping()
    return mapping


async def classify_intent(
    client: LLMProvider,
    player_input: str,
    policy: RetryPolicy | None = None,
) -> Intent:
    """Classify player input. Fallback: narrative."""
    request = GenerationRequest(
        system_prompt=(
            "Classify the player's input. Reply with JSON: "
            '{"kind": one of fate_action, dialogue, travel, concede, self_compel, declaration, narrative, '
            '"target": <id or null>}.'
        ),
        user_prompt=player_input,
        temperature=0.0,
        json_mode=True,
    )
    content = await _generate(client, request, policy, "classify_intent")
    if content is None:
        return Intent()

    intent = parse_structured(content, Intent)
    if intent is None:
        logger.warning(f"classify_intent: unparseable response, using fallback: {content[:80]!r}")
        return Intent()
    return intent


def summarize_turn(turn: Turn) -> str:
    """Plain event summary used when narration is unavailable."""
    lines = [e.summary for e in turn.events if e.summary]
    return " ".join(lines) if lines else f"Turn {turn.turn_id} passes."


async def narrate(
    client: LLMProvider,
    turn: Turn,
    policy: RetryPolicy | None = None,
    max_tokens: int | None = 400,
) -> str:
    """Prose for a finished turn. Fallback: the turn's event summaries."""
    request = GenerationRequest(
        system_prompt="Narrate these game events in second person, in a few sentences.",
        user_prompt="\n".join(turn.event_summary),
        temperature=0.8,
        max_tokens=max_tokens,
    )
    content = await _generate(client, request, policy, "narrate")
    if content is None or not content.strip():
        return summarize_turn(turn)
    return content.strip()
