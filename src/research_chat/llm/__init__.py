"""
LLM module for multi-provider model support.

Providers:
- Ollama (local, via OpenAI-compatible endpoint)
- OpenAI GPT (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
- Anthropic Claude (native SDK)
"""

from .base import (
    BaseLLM,
    LLMDelta,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
    drop_unanswered_tool_calls,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "LLMDelta",
    "LLMMessage",
    "LLMResponse",
    "ToolCall",
    "ToolDefinition",
    "drop_unanswered_tool_calls",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
