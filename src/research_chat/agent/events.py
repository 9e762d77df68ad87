"""
Stream events and the translator from agent steps to events.

Events travel to clients as newline-delimited JSON, one object per line,
tagged by `type`.
"""

import codecs
import json
from typing import Annotated, Any, AsyncIterator, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .core import AgentStep, MessageStep, UpdateStep

logger = structlog.get_logger()


class TokenEvent(BaseModel):
    """A fragment of the assistant's answer."""
    type: Literal["token"] = "token"
    content: str


class ReasoningEvent(BaseModel):
    """A fragment of the model's reasoning."""
    type: Literal["reasoning"] = "reasoning"
    content: str


class ToolCallEvent(BaseModel):
    """The model asked for a tool to run."""
    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(BaseModel):
    """A tool finished; `id` matches the earlier tool_call."""
    type: Literal["tool_result"] = "tool_result"
    id: str
    result: str


class SummarizedEvent(BaseModel):
    """Older turns were folded into the conversation summary."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["summarized"] = "summarized"
    message_count: int = Field(alias="messageCount")


StreamEvent = Annotated[
    Union[TokenEvent, ReasoningEvent, ToolCallEvent, ToolResultEvent, SummarizedEvent],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(StreamEvent)


def encode_event(event: BaseModel) -> bytes:
    """Serialize one event as a UTF-8 NDJSON line."""
    return (event.model_dump_json(by_alias=True) + "\n").encode("utf-8")


def decode_event(line: str) -> StreamEvent:
    """Parse one NDJSON line. Raises ValueError on malformed input."""
    try:
        return _event_adapter.validate_json(line)
    except ValidationError as e:
        raise ValueError(str(e)) from e


class NDJSONDecoder:
    """Incremental NDJSON decoder.

    Chunks may split lines (and multi-byte characters) anywhere. Incomplete
    lines are buffered until their newline arrives; blank and malformed lines
    are dropped without interrupting the stream.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Add a chunk; return the events completed by it."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        return [event for event in map(self._parse, lines) if event is not None]

    def finish(self) -> list[StreamEvent]:
        """Flush at end of stream, parsing a final unterminated line if complete."""
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        event = self._parse(line)
        return [event] if event is not None else []

    def _parse(self, line: str) -> StreamEvent | None:
        if not line.strip():
            return None
        try:
            return decode_event(line)
        except ValueError:
            self.skipped += 1
            logger.debug("Skipping malformed stream line", line=line[:200])
            return None


def _as_text(content: Any) -> str:
    return content if isinstance(content, str) else json.dumps(content)


async def translate(steps: AsyncIterator[AgentStep]) -> AsyncIterator[StreamEvent]:
    """Turn one run's agent steps into stream events.

    - token channel deltas pass straight through as token/reasoning events
    - a tool_call is emitted once per correlation id, on first sight, however
      often state updates repeat it
    - every tool result message becomes a tool_result; if its call was never
      announced, the tool_call is emitted first
    - reasoning found on a whole assistant message is only emitted when it was
      not already streamed as deltas
    """
    emitted_tool_call_ids: set[str] = set()
    reasoning_streamed = False

    async for step in steps:
        if isinstance(step, MessageStep):
            if step.content:
                yield TokenEvent(content=step.content)
            if step.reasoning:
                reasoning_streamed = True
                yield ReasoningEvent(content=step.reasoning)
            continue

        if not isinstance(step, UpdateStep):
            continue

        for msg in step.messages:
            if msg.role == "assistant":
                for tc in msg.tool_calls or []:
                    if tc.id and tc.name and tc.id not in emitted_tool_call_ids:
                        emitted_tool_call_ids.add(tc.id)
                        yield ToolCallEvent(id=tc.id, name=tc.name, args=tc.arguments or {})

                if msg.reasoning and not reasoning_streamed:
                    yield ReasoningEvent(content=msg.reasoning)
                reasoning_streamed = False

            elif msg.role == "tool" and msg.tool_call_id:
                if msg.tool_call_id not in emitted_tool_call_ids:
                    emitted_tool_call_ids.add(msg.tool_call_id)
                    yield ToolCallEvent(id=msg.tool_call_id, name=msg.name or "unknown", args={})
                yield ToolResultEvent(id=msg.tool_call_id, result=_as_text(msg.content))
