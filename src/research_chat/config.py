"""
Configuration management for research-chat

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["ollama", "openai", "openrouter", "anthropic"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "ollama"
    model: str = "qwen3:8b"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
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
    app_name: str = "Research-Chat"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # LLM Providers (API Keys)
    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    ollama_base_url: str = Field(
        default="http://localhost:11434/v1",
        description="OpenAI-compatible endpoint of the local Ollama server",
    )

    # Default model settings
    default_provider: Provider = "ollama"
    default_model: str = "qwen3:8b"
    max_tokens: int = 4096
    temperature: float = 0.7

    # Tools
    search_url: str = Field(
        default="http://localhost:8080/search",
        description="SearXNG-compatible search endpoint",
    )
    search_timeout: float = Field(default=15.0, description="Search request timeout in seconds")
    fetch_timeout: float = Field(default=10.0, description="Page fetch timeout in seconds")
    max_tool_iterations: int = Field(default=10, description="Max model/tool rounds per turn")

    # Context window
    summary_token_threshold: int = Field(
        default=24_000,
        description="Estimated tokens of stored history before older turns are summarized",
    )
    keep_turns: int = Field(default=10, description="Most recent turns always kept verbatim")
    thread_token_trigger: int = Field(
        default=4_000,
        description="Estimated tokens of in-memory agent state before it is compacted",
    )
    thread_keep_messages: int = Field(default=10, description="Agent messages kept on compaction")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/research_chat.db",
        description="Database connection URL",
    )

    @field_validator("search_url", mode="before")
    @classmethod
    def strip_search_url(cls, v: str) -> str:
        return v.strip().rstrip("?") if v else v

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "ollama": "ollama",
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
            "anthropic": self.anthropic_api_key,
        }

        model_map = {
            "ollama": "qwen3:8b",
            "openai": "gpt-4o",
            "openrouter": "qwen/qwen3-8b",
            "anthropic": "claude-sonnet-4-20250514",
        }

        base_url_map = {
            "ollama": self.ollama_base_url,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
            "anthropic": None,
        }

        model = self.default_model if provider == self.default_provider else model_map.get(provider)

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model or self.default_model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
