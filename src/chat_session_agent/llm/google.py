"""
Native Google Gemini LLM provider.

Gemini's own contract is the shape the formatter targets: ``user`` and
``model`` turns, each a list of text parts, plus an optional
``system_instruction`` on the model.
"""

from typing import Any

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions

from ..exceptions import UpstreamError
from .base import BaseLLM, GenerationRequest, LLMResponse, TurnRole

logger = structlog.get_logger()

ROLE_MAP = {
    TurnRole.REQUESTER: "user",
    TurnRole.RESPONDER: "model",
}


class GoogleGeminiLLM(BaseLLM):
    """Native Google Gemini LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self._client = None

    def _get_client(self):
        """Lazy-configure the Gemini SDK."""
        if self._client is None:
            genai.configure(api_key=self.api_key)
            self._client = genai
        return self._client

    @property
    def provider_name(self) -> str:
        return "google"

    def _convert_turns(self, request: GenerationRequest) -> list[dict[str, Any]]:
        """Convert turns to Gemini ``contents``."""
        return [
            {"role": ROLE_MAP[turn.role], "parts": [{"text": turn.text}]}
            for turn in request.turns
        ]

    async def generate(self, request: GenerationRequest) -> LLMResponse:
        """Generate a response from Gemini."""
        client = self._get_client()

        generation_config = {
            "max_output_tokens": self._output_tokens(request),
            "temperature": self.temperature,
        }

        model_kwargs: dict[str, Any] = {
            "model_name": self.model,
            "generation_config": generation_config,
        }

        if request.system_instruction:
            model_kwargs["system_instruction"] = request.system_instruction

        model = client.GenerativeModel(**model_kwargs)

        try:
            response = await model.generate_content_async(
                contents=self._convert_turns(request),
            )
        except google_exceptions.GoogleAPIError as e:
            logger.error("Gemini API error", error=str(e))
            raise UpstreamError(self.provider_name, str(e)) from e

        try:
            candidate = response.candidates[0]
            content = "".join(
                part.text for part in candidate.content.parts
                if getattr(part, "text", None)
            )
            stop_reason = candidate.finish_reason.name
        except (AttributeError, IndexError, TypeError) as e:
            logger.error("Malformed Gemini response", error=str(e))
            raise UpstreamError(self.provider_name, f"malformed response: {e}") from e

        if not content.strip():
            raise UpstreamError(self.provider_name, "empty response")

        input_tokens = 0
        output_tokens = 0
        if getattr(response, "usage_metadata", None):
            input_tokens = getattr(response.usage_metadata, "prompt_token_count", 0)
            output_tokens = getattr(response.usage_metadata, "candidates_token_count", 0)

        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=self.model,
            stop_reason=stop_reason,
            raw_response=response,
        )
