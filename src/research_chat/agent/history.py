"""
History codec: persisted turns -> agent message sequence.

The output depends only on the input, so re-hydrating a thread from the same
turns always yields the same messages.
"""

from ..llm.base import LLMMessage, ToolCall
from ..schemas import ChatHistory, ChatHistoryTurn

SUMMARY_PREFIX = "[Previous conversation summary]"
SUMMARY_ACK = "I've noted the conversation context. Let me continue helping you with that in mind."


def summary_messages(summary: str) -> list[LLMMessage]:
    """The user/assistant pair that stands in for summarized history."""
    return [
        LLMMessage(role="user", content=f"{SUMMARY_PREFIX}: {summary}"),
        LLMMessage(role="assistant", content=SUMMARY_ACK),
    ]


def to_agent_messages(turns: list[ChatHistoryTurn]) -> list[LLMMessage]:
    """Encode turns as agent messages.

    - user turn -> one user message
    - assistant turn with tool calls -> assistant message carrying the calls,
      one tool message per call that has a result (recorded order), then the
      turn's final text if any
    - assistant turn without tool calls -> one assistant message
    - system notices are UI-only and are skipped

    A call without a result stays listed but unanswered; no result is invented.
    """
    messages: list[LLMMessage] = []

    for turn in turns:
        if turn.role == "user":
            messages.append(LLMMessage(role="user", content=turn.content))

        elif turn.role == "assistant" and turn.tool_calls:
            messages.append(LLMMessage(
                role="assistant",
                content="",
                tool_calls=[
                    ToolCall(id=tc.id, name=tc.name, arguments=dict(tc.args))
                    for tc in turn.tool_calls
                ],
            ))
            for tc in turn.tool_calls:
                if tc.result:
                    messages.append(LLMMessage(
                        role="tool",
                        content=tc.result,
                        tool_call_id=tc.id,
                        name=tc.name,
                    ))
            if turn.content:
                messages.append(LLMMessage(role="assistant", content=turn.content))

        elif turn.role == "assistant":
            messages.append(LLMMessage(role="assistant", content=turn.content))

    return messages


def history_to_messages(history: ChatHistory) -> list[LLMMessage]:
    """Encode a full history: summary pair (if any) followed by the turns."""
    messages: list[LLMMessage] = []
    if history.summary:
        messages.extend(summary_messages(history.summary))
    messages.extend(to_agent_messages(history.turns))
    return messages
