"""
Core agent runtime.

One long-lived Agent (LLM + tools + system prompt + compaction) serves every
conversation. Each conversation runs in its own thread: an entry in the
agent's thread registry holding the thread's message list and an execution
slot (an asyncio.Lock) that serializes runs on that thread.

A run yields two interleaved kinds of steps:

- MessageStep: token-level content/reasoning deltas as the model streams
- UpdateStep: whole messages added to the thread (assistant messages with
  their tool calls, tool result messages)
"""

import asyncio
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import AsyncIterator, Literal

import structlog

from ..config import Settings, get_settings
from ..llm import BaseLLM, LLMMessage, create_llm
from ..tools import ToolRegistry, get_tool_registry
from .compaction import CompactionConfig, compact_messages

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = """You are a helpful web search assistant. Always respond in English, regardless of the language used in search results or user queries.
You have access to a tool that searches the web, and a tool that fetches the contents of a web page.
Create optimized search queries from the user's input and use them with the search_web tool to get the best results.
Use the fetch_page_contents tool to fetch the contents of a web page from the results of the search_web tool if the user's query is about the content of a web page.
Review the results and provide a concise summary of the information found in English. Include sources and links if available."""

ITERATION_LIMIT_MESSAGE = "I've reached the maximum number of tool iterations. Here's what I have so far."


@dataclass
class MessageStep:
    """Token channel: a streamed fragment of the model's output."""

    node: str
    content: str = ""
    reasoning: str = ""
    mode: Literal["messages"] = "messages"


@dataclass
class UpdateStep:
    """State channel: complete messages a node added to the thread."""

    node: str
    messages: list[LLMMessage] = field(default_factory=list)
    mode: Literal["updates"] = "updates"


AgentStep = MessageStep | UpdateStep


@dataclass
class AgentThread:
    """Per-conversation execution context."""

    thread_id: str
    messages: list[LLMMessage] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    compaction_count: int = 0

    @property
    def message_count(self) -> int:
        return len(self.messages)


class Agent:
    """Agent runtime with a registry of per-conversation threads."""

    def __init__(
        self,
        llm: BaseLLM | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
        system_prompt: str | None = None,
        compaction_config: CompactionConfig | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm or create_llm(settings=self.settings)
        self.tool_registry = tool_registry or get_tool_registry(self.settings)
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.max_tool_iterations = self.settings.max_tool_iterations
        self.compaction_config = compaction_config or CompactionConfig(
            trigger_tokens=self.settings.thread_token_trigger,
            keep_messages=self.settings.thread_keep_messages,
        )
        self._threads: dict[str, AgentThread] = {}

    def _thread(self, thread_id: str) -> AgentThread:
        thread = self._threads.get(thread_id)
        if thread is None:
            thread = AgentThread(thread_id=thread_id)
            self._threads[thread_id] = thread
        return thread

    def get_thread_state(self, thread_id: str) -> list[LLMMessage] | None:
        """Messages held for a thread, or None if the thread has none."""
        thread = self._threads.get(thread_id)
        if thread is None or not thread.messages:
            return None
        return list(thread.messages)

    def replace_thread_state(self, thread_id: str, messages: list[LLMMessage]) -> None:
        """Overwrite a thread's messages. Only used to hydrate an empty thread."""
        self._thread(thread_id).messages = list(messages)

    def thread_lock(self, thread_id: str) -> asyncio.Lock:
        """The execution slot of a thread."""
        return self._thread(thread_id).lock

    def evict_thread(self, thread_id: str) -> None:
        """Forget a thread's state."""
        if thread_id in self._threads:
            del self._threads[thread_id]

    def _hydrate_if_empty(self, thread: AgentThread, history: list[LLMMessage]) -> bool:
        if thread.messages or not history:
            return False
        thread.messages = list(history)
        logger.info(
            "Hydrated thread from history",
            thread_id=thread.thread_id,
            message_count=len(history),
        )
        return True

    async def _maybe_compact(self, thread: AgentThread) -> None:
        """Run compaction if the thread has grown too large."""
        compacted = await compact_messages(self.llm, thread.messages, self.compaction_config)
        if compacted is not None:
            thread.messages = compacted
            thread.compaction_count += 1

    async def run(
        self,
        thread_id: str,
        message: str,
        history: list[LLMMessage] | None = None,
        acquire_lock: bool = True,
    ) -> AsyncIterator[AgentStep]:
        """Run one more turn on a thread, yielding steps as they happen.

        Holds the thread's execution slot for the whole run, unless the caller
        already holds it (`acquire_lock=False`). If the thread is empty and
        `history` is given, the thread is hydrated from it first; otherwise
        existing thread state is trusted.
        """
        thread = self._thread(thread_id)
        slot = thread.lock if acquire_lock else nullcontext()

        async with slot:
            if history is not None:
                self._hydrate_if_empty(thread, history)

            thread.messages.append(LLMMessage(role="user", content=message))
            tools = self.tool_registry.get_definitions()

            for iteration in range(self.max_tool_iterations):
                await self._maybe_compact(thread)

                response = None
                async for delta in self.llm.stream(
                    messages=list(thread.messages),
                    tools=tools or None,
                    system_prompt=self.system_prompt,
                ):
                    if delta.response is not None:
                        response = delta.response
                    elif delta.content or delta.reasoning:
                        yield MessageStep(
                            node="model",
                            content=delta.content,
                            reasoning=delta.reasoning,
                        )

                if response is None:
                    raise RuntimeError("Model stream ended without a final response")

                assistant_message = response.to_message()
                thread.messages.append(assistant_message)
                yield UpdateStep(node="model", messages=[assistant_message])

                if not response.tool_calls:
                    return

                for tool_call in response.tool_calls:
                    logger.info(
                        "Executing tool",
                        thread_id=thread_id,
                        tool=tool_call.name,
                        arguments=tool_call.arguments,
                        iteration=iteration + 1,
                    )
                    result = await self.tool_registry.execute(tool_call.name, tool_call.arguments)
                    tool_message = LLMMessage(
                        role="tool",
                        content=result.to_text(),
                        tool_call_id=tool_call.id,
                        name=tool_call.name,
                    )
                    thread.messages.append(tool_message)
                    yield UpdateStep(node="tools", messages=[tool_message])

            logger.warning(
                "Tool iteration limit reached",
                thread_id=thread_id,
                max_iterations=self.max_tool_iterations,
            )
            limit_message = LLMMessage(role="assistant", content=ITERATION_LIMIT_MESSAGE)
            thread.messages.append(limit_message)
            yield MessageStep(node="model", content=ITERATION_LIMIT_MESSAGE)
            yield UpdateStep(node="model", messages=[limit_message])


_agent: Agent | None = None


def get_agent(settings: Settings | None = None) -> Agent:
    """Get or create the process-wide agent."""
    global _agent

    if _agent is None:
        _agent = Agent(settings=settings)

    return _agent
