"""
Shared fixtures: a scripted LLM, a fake tool and a temporary turn store.
"""

import re
from typing import Any, AsyncIterator

import pytest
import pytest_asyncio

from research_chat.config import Settings
from research_chat.llm.base import BaseLLM, LLMDelta, LLMMessage, LLMResponse, ToolDefinition
from research_chat.models import init_database
from research_chat.store import TurnStore
from research_chat.tools.base import BaseTool, ToolResult
from research_chat.tools.registry import ToolRegistry


class ScriptedLLM(BaseLLM):
    """LLM double that streams pre-scripted responses word by word."""

    def __init__(
        self,
        responses: list[LLMResponse | Exception] | None = None,
        summary: str | Exception = "Summary of earlier conversation.",
    ):
        super().__init__(api_key="", model="scripted-model")
        self.responses = list(responses or [])
        self.summary = summary
        self.calls: list[list[LLMMessage]] = []
        self.prompts: list[str] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        self.prompts.append(messages[-1].content)
        if isinstance(self.summary, Exception):
            raise self.summary
        return LLMResponse(content=self.summary)

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[LLMDelta]:
        self.calls.append(list(messages))
        response = self.responses.pop(0) if self.responses else LLMResponse(content="Done.")
        if isinstance(response, Exception):
            raise response

        if response.reasoning:
            yield LLMDelta(reasoning=response.reasoning)
        for piece in re.findall(r"\S+\s*", response.content):
            yield LLMDelta(content=piece)
        yield LLMDelta(response=response)


class EchoTool(BaseTool):
    """Tool double that echoes its query."""

    def __init__(self, name: str = "search_web", fail: bool = False):
        self._name = name
        self.fail = fail
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "echo the query"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"query": {"type": "string", "description": "query"}},
            "required": ["query"],
        }

    async def execute(self, query: str = "") -> ToolResult:
        self.calls.append({"query": query})
        if self.fail:
            raise RuntimeError("search backend down")
        return ToolResult(success=True, output=f"results for {query}")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
    )


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def tool_registry(echo_tool) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(echo_tool)
    return registry


@pytest_asyncio.fixture
async def store(settings) -> AsyncIterator[TurnStore]:
    session_maker = await init_database(settings.database_url)
    yield TurnStore(session_maker)
    await session_maker.kw["bind"].dispose()
