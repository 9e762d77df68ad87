"""
OpenAI-compatible LLM provider (OpenAI, OpenRouter and local Ollama).
"""

import json
from typing import Any, AsyncIterator

import openai
import structlog

from .base import (
    BaseLLM,
    LLMDelta,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
    drop_unanswered_tool_calls,
)

logger = structlog.get_logger()

# Field names used by OpenAI-compatible servers for chain-of-thought deltas
REASONING_FIELDS = ("reasoning_content", "reasoning")


def _reasoning_of(obj: Any) -> str:
    for attr in REASONING_FIELDS:
        value = getattr(obj, attr, None)
        if isinstance(value, str) and value:
            return value
    return ""


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Unparseable tool call arguments", arguments=raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAILLM(BaseLLM):
    """OpenAI chat-completions provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        provider: str = "openai",
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self._provider = provider
        self.client = openai.AsyncOpenAI(
            api_key=api_key or "not-needed",
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return self._provider

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to OpenAI format."""
        converted = []

        for msg in drop_unanswered_tool_calls(messages):
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": tool_calls,
                })
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _build_kwargs(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        system_prompt: str | None,
    ) -> dict[str, Any]:
        converted_messages = self._convert_messages(messages)

        if system_prompt:
            converted_messages.insert(0, {"role": "system", "content": system_prompt})

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": converted_messages,
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        return kwargs

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Generate a response."""
        kwargs = self._build_kwargs(messages, tools, system_prompt)

        try:
            response = await self.client.chat.completions.create(**kwargs)

            choice = response.choices[0]
            message = choice.message

            tool_calls = [
                ToolCall(
                    id=tc.id or f"call_{index}",
                    name=tc.function.name,
                    arguments=_parse_arguments(tc.function.arguments),
                )
                for index, tc in enumerate(message.tool_calls or [])
            ]

            return LLMResponse(
                content=message.content or "",
                tool_calls=tool_calls,
                reasoning=_reasoning_of(message),
                input_tokens=response.usage.prompt_tokens if response.usage else 0,
                output_tokens=response.usage.completion_tokens if response.usage else 0,
                model=response.model,
                stop_reason=choice.finish_reason,
                raw_response=response,
            )

        except openai.APIError as e:
            logger.error("OpenAI API error", provider=self._provider, error=str(e))
            raise

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[LLMDelta]:
        """Stream a response, assembling tool calls from their fragments."""
        kwargs = self._build_kwargs(messages, tools, system_prompt)
        kwargs["stream"] = True

        content_parts: list[str] = []
        reasoning_parts: list[str] = []
        # index -> {"id", "name", "arguments"}
        partial_calls: dict[int, dict[str, str]] = {}
        stop_reason: str | None = None
        model = self.model

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                model = getattr(chunk, "model", None) or model
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                if choice.finish_reason:
                    stop_reason = choice.finish_reason

                reasoning = _reasoning_of(delta)
                if reasoning:
                    reasoning_parts.append(reasoning)
                if delta.content:
                    content_parts.append(delta.content)
                if reasoning or delta.content:
                    yield LLMDelta(content=delta.content or "", reasoning=reasoning)

                for tc in delta.tool_calls or []:
                    slot = partial_calls.setdefault(
                        tc.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name:
                        slot["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["arguments"] += tc.function.arguments

        except openai.APIError as e:
            logger.error("OpenAI streaming error", provider=self._provider, error=str(e))
            raise

        tool_calls = [
            ToolCall(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )
            for index, slot in sorted(partial_calls.items())
        ]

        yield LLMDelta(response=LLMResponse(
            content="".join(content_parts),
            tool_calls=tool_calls,
            reasoning="".join(reasoning_parts),
            model=model,
            stop_reason=stop_reason,
        ))
