"""
Tests for context window management.
"""

import pytest

from conftest import ScriptedLLM
from research_chat.agent.compaction import (
    CompactionConfig,
    ContextConfig,
    ContextWindowManager,
    compact_messages,
    estimate_tokens,
    estimate_turn_tokens,
)
from research_chat.agent.history import SUMMARY_PREFIX, summary_messages
from research_chat.errors import ConversationNotFoundError, SummarizationError
from research_chat.llm.base import LLMMessage, ToolCall
from research_chat.schemas import TurnRecord


async def _conversation_with_turns(store, count: int, size: int = 100) -> str:
    conversation = await store.create_conversation()
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append_turn(conversation.id, TurnRecord(role=role, content=f"{i}" * size))
    return conversation.id


def test_estimate_turn_tokens():
    """Test the characters / 4 estimate."""
    turns = [TurnRecord(role="user", content="a" * 40), TurnRecord(role="assistant", content="b" * 8)]
    assert estimate_turn_tokens(turns) == 12


def test_estimate_tokens_counts_tool_calls():
    """Test that tool call names and arguments add to the estimate."""
    plain = [LLMMessage(role="assistant", content="a" * 40)]
    with_call = [
        LLMMessage(
            role="assistant",
            content="a" * 40,
            tool_calls=[ToolCall(id="1", name="search_web", arguments={"query": "x"})],
        )
    ]
    assert estimate_tokens(plain) == 10
    assert estimate_tokens(with_call) > 10


@pytest.mark.asyncio
async def test_reconcile_under_threshold(store):
    """Test that small histories are returned untouched."""
    conversation_id = await _conversation_with_turns(store, 4, size=10)
    llm = ScriptedLLM()
    manager = ContextWindowManager(store, llm, ContextConfig(summary_token_threshold=1000, keep_turns=2))

    result = await manager.reconcile(conversation_id)

    assert result.summarized_count == 0
    assert result.history.summary is None
    assert len(result.history.turns) == 4
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_reconcile_summarizes_older_turns(store):
    """Test that all but the kept turns are folded into the summary."""
    conversation_id = await _conversation_with_turns(store, 6)
    llm = ScriptedLLM(summary="User and assistant exchanged digits.")
    manager = ContextWindowManager(store, llm, ContextConfig(summary_token_threshold=100, keep_turns=2))

    result = await manager.reconcile(conversation_id)

    assert result.summarized_count == 4
    assert result.history.summary == "User and assistant exchanged digits."
    assert [t.content for t in result.history.turns] == ["4" * 100, "5" * 100]

    conversation = await store.get_conversation(conversation_id)
    assert conversation.summary == "User and assistant exchanged digits."
    assert conversation.summarized_count == 4
    # The log itself is never rewritten
    assert len(conversation.turns) == 6


@pytest.mark.asyncio
async def test_reconcile_default_limits(store):
    """Test that the defaults keep exactly ten turns verbatim."""
    conversation_id = await _conversation_with_turns(store, 14, size=10_000)
    manager = ContextWindowManager(store, ScriptedLLM())

    result = await manager.reconcile(conversation_id)

    assert result.summarized_count == 4
    assert len(result.history.turns) == 10


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(store):
    """Test that a second reconcile without new turns summarizes nothing."""
    conversation_id = await _conversation_with_turns(store, 6)
    llm = ScriptedLLM()
    manager = ContextWindowManager(store, llm, ContextConfig(summary_token_threshold=100, keep_turns=2))

    first = await manager.reconcile(conversation_id)
    second = await manager.reconcile(conversation_id)

    assert first.summarized_count == 4
    assert second.summarized_count == 0
    assert second.history.summary == first.history.summary
    assert [t.content for t in second.history.turns] == [t.content for t in first.history.turns]
    assert len(llm.prompts) == 1


@pytest.mark.asyncio
async def test_reconcile_compounds_summary(store):
    """Test that the previous summary seeds the next one."""
    conversation_id = await _conversation_with_turns(store, 6)
    llm = ScriptedLLM(summary="First summary.")
    manager = ContextWindowManager(store, llm, ContextConfig(summary_token_threshold=100, keep_turns=2))
    await manager.reconcile(conversation_id)

    for i in range(4):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append_turn(conversation_id, TurnRecord(role=role, content="x" * 100))

    llm.summary = "Second summary."
    result = await manager.reconcile(conversation_id)

    assert result.summarized_count == 4
    assert "Previous summary to incorporate:\nFirst summary." in llm.prompts[1]
    conversation = await store.get_conversation(conversation_id)
    assert conversation.summary == "Second summary."
    assert conversation.summarized_count == 8


@pytest.mark.asyncio
async def test_reconcile_ignores_system_notices(store):
    """Test that UI-only notices are neither counted nor summarized."""
    conversation_id = await _conversation_with_turns(store, 6)
    await store.append_turn(conversation_id, TurnRecord(role="system", content="n" * 1000))
    llm = ScriptedLLM()
    manager = ContextWindowManager(store, llm, ContextConfig(summary_token_threshold=100, keep_turns=2))

    result = await manager.reconcile(conversation_id)

    assert result.summarized_count == 4
    assert all(t.role != "system" for t in result.history.turns)
    assert "n" * 50 not in llm.prompts[0]


@pytest.mark.asyncio
async def test_reconcile_failure_persists_nothing(store):
    """Test that a summarizer failure raises and leaves the store untouched."""
    conversation_id = await _conversation_with_turns(store, 6)
    llm = ScriptedLLM(summary=RuntimeError("model offline"))
    manager = ContextWindowManager(store, llm, ContextConfig(summary_token_threshold=100, keep_turns=2))

    with pytest.raises(SummarizationError):
        await manager.reconcile(conversation_id)

    conversation = await store.get_conversation(conversation_id)
    assert conversation.summary is None
    assert conversation.summarized_count == 0


@pytest.mark.asyncio
async def test_reconcile_empty_summary_is_failure(store):
    """Test that a blank summary counts as a failed summarization."""
    conversation_id = await _conversation_with_turns(store, 6)
    manager = ContextWindowManager(
        store, ScriptedLLM(summary="   "), ContextConfig(summary_token_threshold=100, keep_turns=2)
    )

    with pytest.raises(SummarizationError):
        await manager.reconcile(conversation_id)


@pytest.mark.asyncio
async def test_reconcile_unknown_conversation(store):
    """Test reconciling a conversation that does not exist."""
    manager = ContextWindowManager(store, ScriptedLLM())

    with pytest.raises(ConversationNotFoundError):
        await manager.reconcile("missing")


def _thread_messages() -> list[LLMMessage]:
    return [
        LLMMessage(role="user", content="u" * 200),
        LLMMessage(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="a", name="search_web", arguments={"query": "q1"})],
        ),
        LLMMessage(role="tool", content="r" * 200, tool_call_id="a", name="search_web"),
        LLMMessage(role="assistant", content="first answer"),
        LLMMessage(role="user", content="second question"),
        LLMMessage(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="b", name="search_web", arguments={"query": "q2"})],
        ),
        LLMMessage(role="tool", content="r" * 200, tool_call_id="b", name="search_web"),
        LLMMessage(role="assistant", content="second answer"),
    ]


@pytest.mark.asyncio
async def test_compact_messages_under_trigger():
    """Test that small threads are left alone."""
    llm = ScriptedLLM()
    result = await compact_messages(llm, _thread_messages(), CompactionConfig(trigger_tokens=10_000))

    assert result is None
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_compact_messages_disabled():
    """Test that compaction can be switched off."""
    result = await compact_messages(
        ScriptedLLM(), _thread_messages(), CompactionConfig(trigger_tokens=1, enabled=False)
    )
    assert result is None


@pytest.mark.asyncio
async def test_compact_messages_keeps_tool_pairs_together():
    """Test that the cut moves back so no tool result loses its call."""
    llm = ScriptedLLM(summary="Earlier searches.")
    messages = _thread_messages()

    result = await compact_messages(llm, messages, CompactionConfig(trigger_tokens=10, keep_messages=2))

    assert result is not None
    assert result[0].content == f"{SUMMARY_PREFIX}: Earlier searches."
    assert result[1].role == "assistant"
    assert result[2:] == messages[5:]
    assert result[2].tool_calls[0].id == "b"
    assert "search_web" in llm.prompts[0]


@pytest.mark.asyncio
async def test_compact_messages_folds_previous_summary():
    """Test that an earlier summary pair is merged into the new summary."""
    llm = ScriptedLLM(summary="Merged summary.")
    messages = summary_messages("old facts") + _thread_messages()

    result = await compact_messages(llm, messages, CompactionConfig(trigger_tokens=10, keep_messages=2))

    assert result is not None
    assert "Previous summary to incorporate:\nold facts" in llm.prompts[0]
    summaries = [m for m in result if m.content.startswith(SUMMARY_PREFIX)]
    assert len(summaries) == 1


@pytest.mark.asyncio
async def test_compact_messages_failure_keeps_thread():
    """Test that a summarizer failure leaves the thread as it was."""
    llm = ScriptedLLM(summary=RuntimeError("model offline"))

    result = await compact_messages(
        llm, _thread_messages(), CompactionConfig(trigger_tokens=10, keep_messages=2)
    )

    assert result is None
