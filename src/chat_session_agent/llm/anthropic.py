"""
Anthropic Claude LLM provider.
"""

from typing import Any

import anthropic
import structlog

from ..exceptions import UpstreamError
from .base import BaseLLM, GenerationRequest, LLMResponse, TurnRole

logger = structlog.get_logger()

ROLE_MAP = {
    TurnRole.REQUESTER: "user",
    TurnRole.RESPONDER: "assistant",
}


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_turns(self, request: GenerationRequest) -> list[dict[str, Any]]:
        """Convert turns to Anthropic messages."""
        return [
            {"role": ROLE_MAP[turn.role], "content": turn.text}
            for turn in request.turns
        ]

    async def generate(self, request: GenerationRequest) -> LLMResponse:
        """Generate a response from Claude."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._output_tokens(request),
            "temperature": self.temperature,
            "messages": self._convert_turns(request),
        }

        if request.system_instruction:
            kwargs["system"] = request.system_instruction

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise UpstreamError(self.provider_name, str(e)) from e

        content = "".join(
            block.text for block in response.content if block.type == "text"
        )
        if not content.strip():
            raise UpstreamError(self.provider_name, "empty response")

        return LLMResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            stop_reason=response.stop_reason,
            raw_response=response,
        )
