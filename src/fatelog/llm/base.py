"""
Base generation client abstraction.

Defines the boundary every text-generation backend implements. The engine
never trusts what comes back: content is parsed and validated by the call
sites in boundary.py, each of which has a fixed fallback.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class GenerationRequest:
    """One request to a generation backend."""
    system_prompt: str
    user_prompt: str
    temperature: float = 0.7
    max_tokens: int | None = None
    stop: list[str] = field(default_factory=list)
    json_mode: bool = False


@dataclass
class GenerationResponse:
    """Raw, untrusted response."""
    content: str
    model: str = ""
    usage: dict[str, int] | None = None  # prompt_tokens, completion_tokens, ...


class GenerationError(Exception):
    """Backend failed to produce a response."""
    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class LLMProvider(ABC):
    """
    Abstract base class for generation backends.

    All backends must implement:
    - generate(): async request/response
    - model_name: The model identifier
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """The model identifier."""
        pass

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """
        Send a generation request.

        Raises:
            GenerationError: (or any transport error) on failure
        """
        pass
