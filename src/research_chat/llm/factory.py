"""
LLM factory for creating provider instances.

Ollama, OpenAI and OpenRouter all speak the chat-completions API and share
OpenAILLM; only their endpoint and key handling differ. Claude uses its
native SDK.
"""

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

# Endpoint used when the config does not name one
DEFAULT_BASE_URLS: dict[str, str | None] = {
    "ollama": "http://localhost:11434/v1",
    "openai": None,
    "openrouter": "https://openrouter.ai/api/v1",
}

# Ollama ignores the key but the SDK insists on one
PLACEHOLDER_API_KEYS = {"ollama": "ollama"}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration."""
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider

    if provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )

    if provider not in DEFAULT_BASE_URLS:
        raise ValueError(f"Unknown LLM provider: {provider}")

    return OpenAILLM(
        api_key=config.api_key or PLACEHOLDER_API_KEYS.get(provider, ""),
        model=config.model,
        base_url=config.base_url or DEFAULT_BASE_URLS[provider],
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        provider=provider,
    )
