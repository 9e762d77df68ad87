"""
Base classes for LLM providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    reasoning: str | None = None


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    reasoning: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None
    raw_response: Any = None

    def to_message(self) -> LLMMessage:
        """The assistant message this response adds to a conversation."""
        return LLMMessage(
            role="assistant",
            content=self.content,
            tool_calls=list(self.tool_calls) or None,
            reasoning=self.reasoning or None,
        )


@dataclass
class LLMDelta:
    """One increment of a streamed response.

    Intermediate deltas carry content and/or reasoning text. The last delta of
    a stream carries the assembled `response` (including tool calls).
    """

    content: str = ""
    reasoning: str = ""
    response: LLMResponse | None = None


def drop_unanswered_tool_calls(messages: list[LLMMessage]) -> list[LLMMessage]:
    """Remove tool calls that have no tool result message.

    Provider APIs reject an assistant tool call that is never answered. Such
    calls appear when a run was aborted mid-tool or when a persisted turn holds
    an orphaned call.
    """
    answered = {m.tool_call_id for m in messages if m.role == "tool" and m.tool_call_id}
    cleaned: list[LLMMessage] = []

    for msg in messages:
        if msg.role == "assistant" and msg.tool_calls:
            kept = [tc for tc in msg.tool_calls if tc.id in answered]
            if len(kept) != len(msg.tool_calls):
                if not kept and not msg.content:
                    continue
                msg = LLMMessage(
                    role=msg.role,
                    content=msg.content,
                    tool_calls=kept or None,
                    reasoning=msg.reasoning,
                )
        cleaned.append(msg)

    return cleaned


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        pass

    @abstractmethod
    def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[LLMDelta]:
        """Stream a response from the LLM, ending with a delta that holds the full response."""
        pass

    async def invoke(self, prompt: str, system_prompt: str | None = None) -> str:
        """Single-shot completion of a plain prompt."""
        response = await self.generate(
            messages=[LLMMessage(role="user", content=prompt)],
            system_prompt=system_prompt,
        )
        return response.content.strip()

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
