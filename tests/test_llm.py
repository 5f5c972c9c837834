"""Tests for the generation boundary: retry, parsing and fallbacks."""

import pytest

from fatelog.llm import (
    FALLBACK_DIFFICULTY,
    RETRY_PRESETS,
    GenerationError,
    Intent,
    MockLLMClient,
    RetryExhaustedError,
    RetryPolicy,
    SkillMapping,
    classify_intent,
    get_retry_policy,
    map_action_to_skill,
    narrate,
    parse_structured,
    with_retry,
)
from fatelog.state import Character, Turn
from fatelog.state.schemas import NarrativeEvent

# Retries without waiting
FAST = RetryPolicy(max_retries=2, initial_delay=0.0, max_delay=0.0)


async def no_sleep(delay):
    return None


class TestRetryPolicy:
    def test_presets(self):
        assert get_retry_policy("fast").max_retries == 2
        assert get_retry_policy("standard").initial_delay == 1.0
        assert get_retry_policy("patient").max_delay == 10.0
        assert set(RETRY_PRESETS) == {"fast", "standard", "patient"}

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            get_retry_policy("yolo")

    def test_delays_back_off_to_cap(self):
        policy = RetryPolicy(max_retries=4, initial_delay=1.0, backoff_multiplier=2.0, max_delay=5.0)
        assert policy.delays() == [1.0, 2.0, 4.0, 5.0]


class TestWithRetry:
    """Test bounded retry."""

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        client = MockLLMClient(["ok"], failures=[TimeoutError(), ConnectionError()])
        slept = []

        async def sleep(delay):
            slept.append(delay)

        policy = RetryPolicy(max_retries=3, initial_delay=0.5, max_delay=2.0)
        response = await with_retry(lambda: client.generate(None), policy, sleep=sleep)

        assert response.content == "ok"
        assert client.call_count == 3
        assert slept == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhausted(self):
        client = MockLLMClient(failures=[TimeoutError()] * 5)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(lambda: client.generate(None), FAST, sleep=no_sleep)
        assert exc_info.value.attempts == 3
        assert client.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        client = MockLLMClient(failures=[GenerationError("bad request", retryable=False)])
        with pytest.raises(GenerationError):
            await with_retry(lambda: client.generate(None), FAST, sleep=no_sleep)
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_text_is_retryable(self):
        client = MockLLMClient(["ok"], failures=[RuntimeError("HTTP 429: Too Many Requests")])
        response = await with_retry(lambda: client.generate(None), FAST, sleep=no_sleep)
        assert response.content == "ok"


class TestParseStructured:
    def test_plain_json(self):
        assert parse_structured('{"skill": "Fight", "difficulty": 3}', SkillMapping).skill == "Fight"

    def test_code_fence(self):
        content = '```json\n{"kind": "dialogue"}\n```'
        assert parse_structured(content, Intent).kind == "dialogue"

    def test_embedded_in_prose(self):
        content = 'Sure! Here you go: {"skill": "Notice", "difficulty": 1} Hope that helps.'
        assert parse_structured(content, SkillMapping).difficulty == 1

    def test_invalid_values_rejected(self):
        assert parse_structured('{"skill": "Fight", "difficulty": 12}', SkillMapping) is None
        assert parse_structured('{"kind": "dance"}', Intent) is None

    def test_garbage(self):
        assert parse_structured("no json here", SkillMapping) is None
        assert parse_structured("", Intent) is None


class TestCallSites:
    """Each call site returns its fallback instead of failing."""

    @pytest.fixture
    def hero(self):
        return Character(id="hero", name="Mara", skills={"Fight": 3})

    @pytest.mark.asyncio
    async def test_skill_mapping(self, hero):
        client = MockLLMClient(['{"skill": "Fight", "difficulty": 4}'])
        mapping = await map_action_to_skill(client, "I punch the bosun", hero, FAST)
        assert mapping == SkillMapping(skill="Fight", difficulty=4)
        assert client.calls[0].json_mode

    @pytest.mark.asyncio
    async def test_skill_mapping_fallback_on_garbage(self, hero, caplog):
        client = MockLLMClient(["I think Fight, probably?"])
        mapping = await map_action_to_skill(client, "I punch the bosun", hero, FAST)
        assert mapping.skill is None
        assert mapping.difficulty == FALLBACK_DIFFICULTY
        assert "using fallback" in caplog.text

    @pytest.mark.asyncio
    async def test_skill_mapping_fallback_on_outage(self, hero):
        client = MockLLMClient(failures=[TimeoutError()] * 10)
        mapping = await map_action_to_skill(client, "I punch the bosun", hero, FAST)
        assert mapping == SkillMapping()
        assert client.call_count == 3

    @pytest.mark.asyncio
    async def test_classify_intent(self):
        client = MockLLMClient(['{"kind": "travel", "target": "harbor"}'])
        intent = await classify_intent(client, "I head down to the harbor", FAST)
        assert intent.kind == "travel"
        assert intent.target == "harbor"

    @pytest.mark.asyncio
    async def test_classify_intent_fallback(self):
        client = MockLLMClient(['{"kind": "interpretive_dance"}'])
        intent = await classify_intent(client, "I dance", FAST)
        assert intent.kind == "narrative"

    @pytest.mark.asyncio
    async def test_narrate(self):
        client = MockLLMClient(["  The rain does not stop.  "])
        turn = Turn(turn_id=3, actor="player", events=[NarrativeEvent(text="Rain", summary="It rains")])
        assert await narrate(client, turn, FAST) == "The rain does not stop."
        assert "It rains" in client.calls[0].user_prompt

    @pytest.mark.asyncio
    async def test_narrate_fallback(self):
        client = MockLLMClient(failures=[ConnectionError()] * 10)
        turn = Turn(turn_id=3, actor="player", events=[
            NarrativeEvent(text="Rain", summary="It rains."),
            NarrativeEvent(text="Bell", summary="A bell tolls."),
        ])
        assert await narrate(client, turn, FAST) == "It rains. A bell tolls."

    @pytest.mark.asyncio
    async def test_narrate_fallback_without_events(self):
        client = MockLLMClient([""])
        assert await narrate(client, Turn(turn_id=8, actor="gm"), FAST) == "Turn 8 passes."
