"""
LLM module: the external generation capability.

Providers:
- Google Gemini (native SDK, default)
- OpenAI GPT (native SDK)
- Anthropic Claude (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import BaseLLM, GenerationRequest, LLMResponse, Turn, TurnRole
from .anthropic import AnthropicLLM
from .google import GoogleGeminiLLM
from .openai import OpenAILLM, OpenRouterLLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "GenerationRequest",
    "LLMResponse",
    "Turn",
    "TurnRole",
    "AnthropicLLM",
    "GoogleGeminiLLM",
    "OpenAILLM",
    "OpenRouterLLM",
    "create_llm",
]
