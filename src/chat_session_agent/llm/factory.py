"""
LLM factory: turns an LLMConfig into a provider client.
"""

from ..config import LLMConfig, Settings, get_settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .google import GoogleGeminiLLM
from .openai import OpenAILLM, OpenRouterLLM

PROVIDERS: dict[str, type[BaseLLM]] = {
    "google": GoogleGeminiLLM,
    "openai": OpenAILLM,
    "anthropic": AnthropicLLM,
    "openrouter": OpenRouterLLM,
}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create the provider client selected by ``config.provider``.

    Without an explicit config the default provider from settings is used.
    """
    if config is None:
        config = (settings or get_settings()).get_llm_config()

    try:
        llm_class = PROVIDERS[config.provider]
    except KeyError:
        raise ValueError(f"Unknown LLM provider: {config.provider}") from None

    return llm_class(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )
