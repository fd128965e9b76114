"""
OpenAI GPT LLM provider, and OpenRouter on the same wire format.
"""

from typing import Any

import openai
import structlog

from ..exceptions import UpstreamError
from .base import BaseLLM, GenerationRequest, LLMResponse, TurnRole

logger = structlog.get_logger()

ROLE_MAP = {
    TurnRole.REQUESTER: "user",
    TurnRole.RESPONDER: "assistant",
}


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_turns(self, request: GenerationRequest) -> list[dict[str, Any]]:
        """Convert turns to OpenAI chat messages."""
        converted = [
            {"role": ROLE_MAP[turn.role], "content": turn.text}
            for turn in request.turns
        ]
        if request.system_instruction:
            converted.insert(0, {"role": "system", "content": request.system_instruction})
        return converted

    async def generate(self, request: GenerationRequest) -> LLMResponse:
        """Generate a response from GPT."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._output_tokens(request),
            "temperature": self.temperature,
            "messages": self._convert_turns(request),
        }

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise UpstreamError(self.provider_name, str(e)) from e

        if not response.choices:
            raise UpstreamError(self.provider_name, "response has no choices")

        choice = response.choices[0]
        content = choice.message.content or ""
        if not content.strip():
            raise UpstreamError(self.provider_name, "empty response")

        return LLMResponse(
            content=content,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )


class OpenRouterLLM(OpenAILLM):
    """OpenRouter through its OpenAI-compatible endpoint."""

    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str,
        model: str = "google/gemini-2.0-flash-001",
        base_url: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url or self.DEFAULT_BASE_URL, max_tokens, temperature)

    @property
    def provider_name(self) -> str:
        return "openrouter"
