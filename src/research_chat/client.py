"""
HTTP client for the research-chat API.

Consumes the NDJSON event stream incrementally and folds it into the
assistant message a UI would render.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import httpx
import structlog

from .agent.events import (
    NDJSONDecoder,
    ReasoningEvent,
    StreamEvent,
    SummarizedEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from .agent.orchestrator import EMPTY_RESPONSE_MESSAGE, summarized_notice

logger = structlog.get_logger()


@dataclass
class ToolCallView:
    """A tool call as shown to the user."""

    id: str
    name: str
    args: dict[str, Any]
    status: str = "pending"
    result: str | None = None


@dataclass
class AssistantMessage:
    """Assistant output accumulated from stream events."""

    content: str = ""
    reasoning: str = ""
    tool_calls: dict[str, ToolCallView] = field(default_factory=dict)
    notices: list[str] = field(default_factory=list)

    def apply(self, event: StreamEvent) -> None:
        if isinstance(event, TokenEvent):
            self.content += event.content
        elif isinstance(event, ReasoningEvent):
            self.reasoning += event.content
        elif isinstance(event, ToolCallEvent):
            self.tool_calls[event.id] = ToolCallView(id=event.id, name=event.name, args=event.args)
        elif isinstance(event, ToolResultEvent):
            existing = self.tool_calls.get(event.id)
            if existing:
                existing.status = "complete"
                existing.result = event.result
        elif isinstance(event, SummarizedEvent):
            self.notices.append(summarized_notice(event.message_count))

    @property
    def final_content(self) -> str:
        return self.content or EMPTY_RESPONSE_MESSAGE


class StreamClient:
    """Async client for the chat server."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.conversation_id: str | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def stream(
        self,
        user_input: str,
        conversation_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send a message and yield events as they arrive."""
        payload: dict[str, Any] = {"userInput": user_input}
        if conversation_id:
            payload["conversationId"] = conversation_id

        decoder = NDJSONDecoder()
        async with self._client() as client:
            async with client.stream("POST", "/api/stream", json=payload) as response:
                response.raise_for_status()
                self.conversation_id = response.headers.get("x-conversation-id", conversation_id)

                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        yield event

        for event in decoder.finish():
            yield event

        if decoder.skipped:
            logger.debug("Malformed stream lines skipped", count=decoder.skipped)

    async def send(
        self,
        user_input: str,
        conversation_id: str | None = None,
        on_event: Callable[[StreamEvent], None] | None = None,
    ) -> AssistantMessage:
        """Send a message and collect the whole assistant response."""
        message = AssistantMessage()
        async for event in self.stream(user_input, conversation_id):
            message.apply(event)
            if on_event:
                on_event(event)
        return message

    async def list_conversations(self) -> list[dict[str, Any]]:
        async with self._client() as client:
            response = await client.get("/api/conversations")
            response.raise_for_status()
            return response.json()["conversations"]

    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        async with self._client() as client:
            response = await client.get(f"/api/conversations/{conversation_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self._client() as client:
            response = await client.delete(f"/api/conversations/{conversation_id}")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return True
