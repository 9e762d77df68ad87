"""
Tests for the conversation orchestrator.
"""

import asyncio
from contextlib import aclosing

import pytest

from conftest import ScriptedLLM
from research_chat.agent.compaction import CompactionConfig, ContextConfig
from research_chat.agent.core import Agent
from research_chat.agent.events import SummarizedEvent, TokenEvent, ToolCallEvent
from research_chat.agent.history import SUMMARY_PREFIX
from research_chat.agent.orchestrator import (
    EMPTY_RESPONSE_MESSAGE,
    ERROR_MESSAGE,
    AssistantTurnBuilder,
    ConversationOrchestrator,
)
from research_chat.errors import ConversationNotFoundError, PersistenceError
from research_chat.llm.base import LLMResponse, ToolCall
from research_chat.schemas import TurnRecord


def _search(call_id: str, query: str, content: str = "") -> LLMResponse:
    return LLMResponse(
        content=content,
        tool_calls=[ToolCall(id=call_id, name="search_web", arguments={"query": query})],
    )


def _orchestrator(store, llm, tool_registry, settings, **kwargs) -> ConversationOrchestrator:
    agent = Agent(
        llm=llm,
        tool_registry=tool_registry,
        settings=settings,
        compaction_config=CompactionConfig(enabled=False),
    )
    return ConversationOrchestrator(store, agent, **kwargs)


async def _stream(orchestrator, user_input, conversation_id=None) -> list:
    return [event async for event in orchestrator.stream(user_input, conversation_id)]


async def _only_conversation(store):
    conversations = await store.list_conversations()
    assert len(conversations) == 1
    return await store.get_conversation(conversations[0].id)


def test_turn_builder_marks_unfinished_calls_orphaned():
    """Test that calls without a result are stored as orphaned."""
    builder = AssistantTurnBuilder()
    builder.apply(ToolCallEvent(id="c1", name="search_web", args={"query": "x"}))
    builder.apply(TokenEvent(content="partial"))

    turn = builder.build()

    assert turn.content == "partial"
    assert turn.tool_calls[0].status == "orphaned"
    assert turn.tool_calls[0].result is None


@pytest.mark.asyncio
async def test_new_conversation_with_tool_call(store, tool_registry, settings):
    """Test a full run: events streamed, user and assistant turns persisted."""
    llm = ScriptedLLM([
        _search("c1", "capital of France"),
        LLMResponse(content="Paris is the capital of France."),
    ])
    orchestrator = _orchestrator(store, llm, tool_registry, settings)

    events = await _stream(orchestrator, "What is the capital of France?")

    assert [e.type for e in events[:2]] == ["tool_call", "tool_result"]
    assert events[0].args == {"query": "capital of France"}
    assert events[1].id == "c1"
    assert "".join(e.content for e in events if e.type == "token") == "Paris is the capital of France."

    conversation = await _only_conversation(store)
    assert conversation.title == "What is the capital of France?"
    assert [t.role for t in conversation.turns] == ["user", "assistant"]

    assistant = conversation.turns[1]
    assert assistant.content == "Paris is the capital of France."
    assert assistant.tool_calls[0].status == "complete"
    assert assistant.tool_calls[0].result == "results for capital of France"


@pytest.mark.asyncio
async def test_follow_up_reuses_thread(store, tool_registry, settings):
    """Test that a second message continues the same conversation."""
    llm = ScriptedLLM([LLMResponse(content="Paris."), LLMResponse(content="Berlin.")])
    orchestrator = _orchestrator(store, llm, tool_registry, settings)

    await _stream(orchestrator, "Capital of France?")
    conversation = await _only_conversation(store)
    await _stream(orchestrator, "And Germany?", conversation.id)

    assert [m.content for m in llm.calls[1]] == ["Capital of France?", "Paris.", "And Germany?"]
    conversation = await store.get_conversation(conversation.id)
    assert [t.content for t in conversation.turns] == [
        "Capital of France?", "Paris.", "And Germany?", "Berlin.",
    ]


@pytest.mark.asyncio
async def test_restart_hydrates_from_store(store, tool_registry, settings):
    """Test that a fresh agent rebuilds the thread from persisted turns."""
    first = _orchestrator(store, ScriptedLLM([LLMResponse(content="Paris.")]), tool_registry, settings)
    await _stream(first, "Capital of France?")
    conversation = await _only_conversation(store)

    llm = ScriptedLLM([LLMResponse(content="Berlin.")])
    second = _orchestrator(store, llm, tool_registry, settings)
    await _stream(second, "And Germany?", conversation.id)

    assert [m.content for m in llm.calls[0]] == ["Capital of France?", "Paris.", "And Germany?"]


@pytest.mark.asyncio
async def test_unknown_conversation(store, tool_registry, settings):
    """Test that an unknown id fails before anything is streamed."""
    orchestrator = _orchestrator(store, ScriptedLLM(), tool_registry, settings)

    with pytest.raises(ConversationNotFoundError):
        await _stream(orchestrator, "hi", "missing")


@pytest.mark.asyncio
async def test_summarized_event_comes_first(store, tool_registry, settings):
    """Test that summarization is announced before any answer tokens."""
    conversation = await store.create_conversation()
    for i in range(6):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append_turn(conversation.id, TurnRecord(role=role, content=f"{i}" * 100))

    llm = ScriptedLLM([LLMResponse(content="Sure.")], summary="Digits were discussed.")
    orchestrator = _orchestrator(
        store, llm, tool_registry, settings,
        context_config=ContextConfig(summary_token_threshold=100, keep_turns=2),
    )

    events = await _stream(orchestrator, "Continue", conversation.id)

    assert events[0] == SummarizedEvent(message_count=4)
    assert all(e.type == "token" for e in events[1:])

    # Summary pair, two kept turns, the new message
    seen = llm.calls[0]
    assert seen[0].content == f"{SUMMARY_PREFIX}: Digits were discussed."
    assert [m.content for m in seen[2:]] == ["4" * 100, "5" * 100, "Continue"]

    loaded = await store.get_conversation(conversation.id)
    assert [t.role for t in loaded.turns[6:]] == ["system", "user", "assistant"]
    assert "4 messages compressed" in loaded.turns[6].content


@pytest.mark.asyncio
async def test_summarization_failure_falls_back_to_full_history(store, tool_registry, settings):
    """Test that a failed summary still answers, using the unsummarized history."""
    conversation = await store.create_conversation()
    for i in range(6):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append_turn(conversation.id, TurnRecord(role=role, content=f"{i}" * 100))

    llm = ScriptedLLM([LLMResponse(content="Sure.")], summary=RuntimeError("summarizer down"))
    orchestrator = _orchestrator(
        store, llm, tool_registry, settings,
        context_config=ContextConfig(summary_token_threshold=100, keep_turns=2),
    )

    events = await _stream(orchestrator, "Continue", conversation.id)

    assert all(e.type == "token" for e in events)
    assert len(llm.calls[0]) == 7

    loaded = await store.get_conversation(conversation.id)
    assert loaded.summary is None
    assert [t.role for t in loaded.turns[6:]] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_run_failure_persists_error_message(store, tool_registry, settings):
    """Test that a failed run streams and stores the fallback error text."""
    orchestrator = _orchestrator(store, ScriptedLLM([RuntimeError("model down")]), tool_registry, settings)

    events = await _stream(orchestrator, "Hello")

    assert events == [TokenEvent(content=ERROR_MESSAGE)]
    conversation = await _only_conversation(store)
    assert conversation.turns[-1].role == "assistant"
    assert conversation.turns[-1].content == ERROR_MESSAGE


@pytest.mark.asyncio
async def test_run_failure_after_partial_content(store, tool_registry, settings):
    """Test that the error text is appended to what was already streamed."""
    llm = ScriptedLLM([
        _search("c1", "France", content="Let me search."),
        RuntimeError("model down"),
    ])
    orchestrator = _orchestrator(store, llm, tool_registry, settings)

    events = await _stream(orchestrator, "Capital of France?")

    assert events[-1] == TokenEvent(content=f"\n\n{ERROR_MESSAGE}")
    streamed = "".join(e.content for e in events if e.type == "token")

    conversation = await _only_conversation(store)
    assistant = conversation.turns[-1]
    assert assistant.content == streamed == f"Let me search.\n\n{ERROR_MESSAGE}"
    assert assistant.tool_calls[0].status == "complete"


@pytest.mark.asyncio
async def test_empty_response_fallback(store, tool_registry, settings):
    """Test that an empty answer is replaced with the fallback text."""
    orchestrator = _orchestrator(store, ScriptedLLM([LLMResponse(content="")]), tool_registry, settings)

    events = await _stream(orchestrator, "Hello")

    assert events == [TokenEvent(content=EMPTY_RESPONSE_MESSAGE)]
    conversation = await _only_conversation(store)
    assert conversation.turns[-1].content == EMPTY_RESPONSE_MESSAGE


@pytest.mark.asyncio
async def test_disconnect_persists_partial_response(store, tool_registry, settings):
    """Test that closing the stream early still stores what was generated."""
    llm = ScriptedLLM([LLMResponse(content="Paris is the capital of France.")])
    orchestrator = _orchestrator(store, llm, tool_registry, settings)

    received = []
    async with aclosing(orchestrator.stream("Capital of France?")) as events:
        async for event in events:
            received.append(event)
            if len(received) == 2:
                break

    conversation = await _only_conversation(store)
    assert [t.role for t in conversation.turns] == ["user", "assistant"]
    assert conversation.turns[1].content == "Paris is "

    # The thread slot was released
    assert not orchestrator.agent.thread_lock(conversation.id).locked()


@pytest.mark.asyncio
async def test_disconnect_during_tool_call_orphans_it(store, tool_registry, settings):
    """Test that a call cut off before its result is stored as orphaned."""
    llm = ScriptedLLM([_search("c1", "France"), LLMResponse(content="Paris.")])
    orchestrator = _orchestrator(store, llm, tool_registry, settings)

    async with aclosing(orchestrator.stream("Capital of France?")) as events:
        async for event in events:
            assert event.type == "tool_call"
            break

    conversation = await _only_conversation(store)
    call = conversation.turns[-1].tool_calls[0]
    assert call.id == "c1"
    assert call.status == "orphaned"


@pytest.mark.asyncio
async def test_listeners_notified_on_persist(store, tool_registry, settings):
    """Test that update listeners hear about each persisted turn."""
    orchestrator = _orchestrator(store, ScriptedLLM(), tool_registry, settings)
    updates = []

    async def on_update(conversation_id: str) -> None:
        updates.append(conversation_id)

    orchestrator.add_listener(on_update)
    await _stream(orchestrator, "Hello")

    conversation = await _only_conversation(store)
    assert updates == [conversation.id, conversation.id]


@pytest.mark.asyncio
async def test_persistence_failure_does_not_break_stream(store, tool_registry, settings, monkeypatch):
    """Test that a store outage is logged while the answer still streams."""
    orchestrator = _orchestrator(store, ScriptedLLM([LLMResponse(content="Hi.")]), tool_registry, settings)

    async def failing_append(conversation_id, turn):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "append_turn", failing_append)

    events = await _stream(orchestrator, "Hello")

    assert events == [TokenEvent(content="Hi.")]


@pytest.mark.asyncio
async def test_concurrent_messages_do_not_interleave(store, tool_registry, settings):
    """Test that two requests on one conversation are handled one after the other."""
    conversation = await store.create_conversation()
    llm = ScriptedLLM([LLMResponse(content="First answer."), LLMResponse(content="Second answer.")])
    orchestrator = _orchestrator(store, llm, tool_registry, settings)

    await asyncio.gather(
        _stream(orchestrator, "question A", conversation.id),
        _stream(orchestrator, "question B", conversation.id),
    )

    loaded = await store.get_conversation(conversation.id)
    assert [t.role for t in loaded.turns] == ["user", "assistant", "user", "assistant"]
    assert loaded.turns[1].content == "First answer."
    assert loaded.turns[3].content == "Second answer."

    # The second run sees the first exchange complete
    assert [m.role for m in llm.calls[1]] == ["user", "assistant", "user"]


@pytest.mark.asyncio
async def test_concurrent_messages_summarize_once(store, tool_registry, settings):
    """Test that concurrent requests never fold the same turns twice."""
    conversation = await store.create_conversation()
    for i in range(6):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append_turn(conversation.id, TurnRecord(role=role, content=f"{i}" * 100))

    llm = ScriptedLLM([LLMResponse(content="A."), LLMResponse(content="B.")])
    orchestrator = _orchestrator(
        store, llm, tool_registry, settings,
        context_config=ContextConfig(summary_token_threshold=100, keep_turns=2),
    )

    results = await asyncio.gather(
        _stream(orchestrator, "question A", conversation.id),
        _stream(orchestrator, "question B", conversation.id),
    )

    summarized = [e for events in results for e in events if e.type == "summarized"]
    assert summarized == [SummarizedEvent(message_count=4)]
    assert len(llm.prompts) == 1

    loaded = await store.get_conversation(conversation.id)
    assert [t.role for t in loaded.turns[6:]] == ["system", "user", "assistant", "user", "assistant"]
    assert loaded.summarized_count == 4
