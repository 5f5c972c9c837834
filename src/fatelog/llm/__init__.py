"""
Generation backend boundary.

The engine depends only on LLMProvider. Backends live with the embedding
application; MockLLMClient is provided for tests.
"""

from .base import GenerationError, GenerationRequest, GenerationResponse, LLMProvider
from .boundary import (
    FALLBACK_DIFFICULTY,
    Intent,
    SkillMapping,
    classify_intent,
    map_action_to_skill,
    narrate,
    parse_structured,
    summarize_turn,
)
from .retry import (
    RETRY_PRESETS,
    RetryExhaustedError,
    RetryPolicy,
    default_is_retryable,
    get_retry_policy,
    with_retry,
)


class MockLLMClient(LLMProvider):
    """
    Mock generation client for testing.

    Allows configuring responses without actual API calls.
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        model_name: str = "mock-model",
        failures: list[BaseException] | None = None,
    ):
        """
        Initialize mock client.

        Args:
            responses: List of responses to return in order.
                       Cycles through if more calls than responses.
            model_name: Name to report as model_name property.
            failures: Errors raised by the first calls, in order, before
                      any response is returned.
        """
        self._responses = responses or ["Mock response"]
        self._failures = list(failures or [])
        self._call_count = 0
        self._model_name = model_name
        self.calls: list[GenerationRequest] = []  # Record of all calls made

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Raise the next scripted failure, else return the next response."""
        self.calls.append(request)
        if self._failures:
            raise self._failures.pop(0)
        content = self._responses[self._call_count % len(self._responses)]
        self._call_count += 1
        return GenerationResponse(content=content, model=self._model_name)


__all__ = [
    "LLMProvider",
    "GenerationRequest",
    "GenerationResponse",
    "GenerationError",
    "MockLLMClient",
    # Retry
    "RetryPolicy",
    "RETRY_PRESETS",
    "RetryExhaustedError",
    "default_is_retryable",
    "get_retry_policy",
    "with_retry",
    # Call sites
    "SkillMapping",
    "Intent",
    "FALLBACK_DIFFICULTY",
    "parse_structured",
    "map_action_to_skill",
    "classify_intent",
    "narrate",
    "summarize_turn",
]
