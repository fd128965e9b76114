"""
Configuration management for chat-session-agent

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_INSTRUCTION = "You are a helpful assistant."
DEFAULT_FALLBACK_MESSAGE = "Sorry, I encountered an error while processing your request."


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Literal["google", "openai", "anthropic", "openrouter"] = "google"
    model: str = "gemini-2.0-flash"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 1000
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Chat-Session-Agent"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 4001

    # LLM Providers (API Keys)
    google_api_key: str = Field(default="", description="Google AI API key for Gemini")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: Literal["google", "openai", "anthropic", "openrouter"] = "google"
    default_model: str = ""
    max_tokens: int = Field(default=1000, description="Maximum output tokens per reply")
    temperature: float = 0.7
    generation_timeout_seconds: float = Field(default=60.0, description="Timeout for one generation call")

    # Sessions
    session_backend: Literal["memory", "database"] = Field(
        default="memory",
        description="Where session history lives: process memory or the database",
    )
    retention_limit: int = Field(default=10, description="Max non-system messages kept per session")
    system_instruction: str = Field(
        default=DEFAULT_SYSTEM_INSTRUCTION,
        description="Instruction/persona anchoring every new session",
    )
    formatting_strategy: Literal["inline", "structured"] = Field(
        default="inline",
        description="How the system instruction reaches the provider",
    )
    lazy_sessions: bool = Field(default=True, description="Create sessions on first message")
    fallback_message: str = Field(
        default=DEFAULT_FALLBACK_MESSAGE,
        description="User-safe reply when generation fails",
    )
    record_transcripts: bool = Field(default=False, description="Store a transcript row per successful turn")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/chat.db",
        description="Database connection URL"
    )

    # LINE Messaging API
    line_channel_access_token: str = Field(default="", description="LINE channel access token")
    line_channel_secret: str = Field(default="", description="LINE channel secret for signature checks")
    line_api_base_url: str = Field(default="https://api.line.me", description="LINE API base URL")

    # Security
    admin_password: str = Field(default="changeme", description="Admin API password")

    @field_validator("retention_limit")
    @classmethod
    def check_retention_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retention_limit must be at least 1")
        return v

    @field_validator("system_instruction", mode="before")
    @classmethod
    def strip_system_instruction(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "google": self.google_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "google": "gemini-2.0-flash",
            "openai": "gpt-4o",
            "anthropic": "claude-sonnet-4-20250514",
            "openrouter": "google/gemini-2.0-flash-001",
        }

        base_url_map = {
            "google": None,
            "openai": None,
            "anthropic": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        model = model_map.get(provider, "")
        if self.default_model and provider == self.default_provider:
            model = self.default_model

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
