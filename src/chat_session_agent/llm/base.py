"""
Base classes for LLM providers.

Providers receive a provider-neutral GenerationRequest: an ordered list of
two-party turns, an optional separate instruction, and an output length cap.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TurnRole(str, Enum):
    """The two parties of the generation contract."""
    REQUESTER = "user"
    RESPONDER = "model"


@dataclass(frozen=True)
class Turn:
    """One turn of the conversation sent to the provider."""

    role: TurnRole
    text: str


@dataclass
class GenerationRequest:
    """A formatted conversation ready for a provider."""

    turns: list[Turn] = field(default_factory=list)
    system_instruction: str | None = None
    max_output_tokens: int = 1000


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None
    raw_response: Any = None


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> LLMResponse:
        """Generate a single reply for the formatted conversation."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    def _output_tokens(self, request: GenerationRequest) -> int:
        return request.max_output_tokens or self.max_tokens
