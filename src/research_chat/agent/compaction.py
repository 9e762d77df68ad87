"""
Context window management - summarization of older history.

Two levels of compaction keep a conversation inside the model's context:

- Durable history (ContextWindowManager.reconcile): before a run, the stored
  turns are measured and, when too large, everything but the most recent turns
  is folded into the conversation's persisted summary. The summary compounds:
  each new summary is seeded with the previous one.
- Agent thread state (compact_messages): the in-memory message list of a
  long-lived thread is compacted the same way before each model call.

Sizes are estimated as characters / 4. This is a coarse proxy for real
tokenization (it drifts for code and non-Latin scripts), so thresholds are
settings and summarization timing is approximate.
"""

from dataclasses import dataclass

import structlog

from ..errors import ConversationNotFoundError, SummarizationError
from ..llm.base import BaseLLM, LLMMessage
from ..schemas import ChatHistory, ChatHistoryTurn, TurnRecord
from ..store import TurnStore
from .history import SUMMARY_PREFIX, summary_messages

logger = structlog.get_logger()

# Approximate characters per token
CHARS_PER_TOKEN = 4

DEFAULT_SUMMARY_TOKEN_THRESHOLD = 24_000  # ~75% of a 32k context window
DEFAULT_KEEP_TURNS = 10

DEFAULT_THREAD_TOKEN_TRIGGER = 4_000
DEFAULT_THREAD_KEEP_MESSAGES = 10

SUMMARIZER_SYSTEM_PROMPT = "You are a conversation summarizer. Create concise, fact-preserving summaries."


@dataclass
class ContextConfig:
    """Limits for the stored conversation history."""

    summary_token_threshold: int = DEFAULT_SUMMARY_TOKEN_THRESHOLD
    keep_turns: int = DEFAULT_KEEP_TURNS


@dataclass
class CompactionConfig:
    """Limits for an agent thread's in-memory messages."""

    trigger_tokens: int = DEFAULT_THREAD_TOKEN_TRIGGER
    keep_messages: int = DEFAULT_THREAD_KEEP_MESSAGES
    enabled: bool = True


@dataclass
class ReconcileResult:
    """History to feed into a run, and how many turns were just summarized."""

    history: ChatHistory
    summarized_count: int = 0


def estimate_turn_tokens(turns: list[TurnRecord] | list[ChatHistoryTurn]) -> float:
    """Estimate token count for a list of turns."""
    return sum(len(t.content) / CHARS_PER_TOKEN for t in turns)


def estimate_tokens(messages: list[LLMMessage]) -> float:
    """Estimate token count for a list of messages."""
    total = 0.0
    for m in messages:
        total += len(m.content) / CHARS_PER_TOKEN
        for tc in m.tool_calls or []:
            total += (len(tc.name) + len(str(tc.arguments))) / CHARS_PER_TOKEN
    return total


def build_summary_prompt(existing_summary: str | None, transcript: str) -> str:
    previous = (
        f"\nPrevious summary to incorporate:\n{existing_summary}\n"
        if existing_summary
        else ""
    )
    return f"""Summarize this conversation concisely, preserving key facts, decisions, and context. Focus on information that would be useful for continuing the conversation.
{previous}
Conversation to summarize:
{transcript}

Summary:"""


async def generate_summary(
    llm: BaseLLM,
    existing_summary: str | None,
    turns: list[TurnRecord],
) -> str:
    """Condense turns into a summary that also carries the previous one.

    Raises SummarizationError if the model call fails or returns nothing.
    """
    transcript = "\n".join(f"{t.role}: {t.content}" for t in turns)
    prompt = build_summary_prompt(existing_summary, transcript)

    try:
        summary = await llm.invoke(prompt, system_prompt=SUMMARIZER_SYSTEM_PROMPT)
    except Exception as e:
        raise SummarizationError(f"Summary generation failed: {e}") from e

    if not summary.strip():
        raise SummarizationError("Summary generation returned no text")

    return summary.strip()


class ContextWindowManager:
    """Decides when stored history is summarized and produces the history for a run."""

    def __init__(
        self,
        store: TurnStore,
        llm: BaseLLM,
        config: ContextConfig | None = None,
    ):
        self.store = store
        self.llm = llm
        self.config = config or ContextConfig()

    async def _load(self, conversation_id: str) -> tuple[str | None, int, list[TurnRecord]]:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        conversational = [t for t in conversation.turns if t.role != "system"]
        boundary = min(conversation.summarized_count, len(conversational))
        return conversation.summary, boundary, conversational[boundary:]

    async def load_history(self, conversation_id: str) -> ChatHistory:
        """History without any new summarization: current summary plus active turns."""
        summary, _, active = await self._load(conversation_id)
        return ChatHistory(
            summary=summary,
            turns=[ChatHistoryTurn.from_turn(t) for t in active],
        )

    async def reconcile(self, conversation_id: str) -> ReconcileResult:
        """Summarize older turns if history is too large; return the history to run with.

        Turns already folded into the summary (the persisted boundary) are never
        re-read, so calling this twice without new turns summarizes at most once.
        Raises SummarizationError without persisting anything if the summary
        cannot be produced.
        """
        summary, boundary, active = await self._load(conversation_id)
        keep = self.config.keep_turns

        estimated = estimate_turn_tokens(active)
        if summary:
            estimated += len(summary) / CHARS_PER_TOKEN

        if estimated > self.config.summary_token_threshold and len(active) > keep:
            older = active[:-keep] if keep > 0 else list(active)
            kept = active[-keep:] if keep > 0 else []

            logger.info(
                "Summarizing older turns",
                conversation_id=conversation_id,
                estimated_tokens=int(estimated),
                threshold=self.config.summary_token_threshold,
                summarizing=len(older),
                keeping=len(kept),
            )

            new_summary = await generate_summary(self.llm, summary, older)
            await self.store.update_summary(
                conversation_id,
                new_summary,
                summarized_count=boundary + len(older),
            )

            return ReconcileResult(
                history=ChatHistory(
                    summary=new_summary,
                    turns=[ChatHistoryTurn.from_turn(t) for t in kept],
                ),
                summarized_count=len(older),
            )

        return ReconcileResult(
            history=ChatHistory(
                summary=summary,
                turns=[ChatHistoryTurn.from_turn(t) for t in active],
            ),
            summarized_count=0,
        )


def _split_point(messages: list[LLMMessage], keep: int) -> int:
    """Index where kept messages start, never orphaning a tool result."""
    cut = max(0, len(messages) - keep)
    while 0 < cut < len(messages) and messages[cut].role == "tool":
        cut -= 1
    return cut


def _transcript(messages: list[LLMMessage]) -> str:
    parts = []
    for msg in messages:
        if msg.role == "tool":
            parts.append(f"tool ({msg.name or 'unknown'}): {msg.content[:1000]}")
        elif msg.tool_calls:
            calls = ", ".join(f"{tc.name}({tc.arguments})" for tc in msg.tool_calls)
            text = f"{msg.content}\n" if msg.content else ""
            parts.append(f"assistant: {text}[called {calls}]")
        else:
            parts.append(f"{msg.role}: {msg.content}")
    return "\n".join(parts)


async def compact_messages(
    llm: BaseLLM,
    messages: list[LLMMessage],
    config: CompactionConfig | None = None,
) -> list[LLMMessage] | None:
    """Compact a thread's messages by summarizing all but the most recent ones.

    Returns the new message list, or None when nothing was compacted (under
    the trigger, nothing old enough, or the summarizer failed).
    """
    config = config or CompactionConfig()

    if not config.enabled:
        return None

    current_tokens = estimate_tokens(messages)
    if current_tokens <= config.trigger_tokens or len(messages) <= config.keep_messages:
        return None

    cut = _split_point(messages, config.keep_messages)
    older, recent = messages[:cut], messages[cut:]
    if not older:
        return None

    # An earlier summary pair is folded into the new summary
    existing_summary = None
    if older[0].role == "user" and older[0].content.startswith(f"{SUMMARY_PREFIX}: "):
        existing_summary = older[0].content[len(SUMMARY_PREFIX) + 2:]
        older = older[2:] if len(older) > 1 and older[1].role == "assistant" else older[1:]
        if not older:
            return None

    logger.info(
        "Compacting agent thread",
        message_count=len(messages),
        estimated_tokens=int(current_tokens),
        trigger=config.trigger_tokens,
    )

    prompt = build_summary_prompt(existing_summary, _transcript(older))
    try:
        summary = await llm.invoke(prompt, system_prompt=SUMMARIZER_SYSTEM_PROMPT)
    except Exception as e:
        logger.error("Thread compaction failed, keeping full thread", error=str(e))
        return None

    if not summary.strip():
        return None

    compacted = summary_messages(summary.strip()) + recent

    logger.info(
        "Compaction complete",
        original=len(messages),
        compacted=len(compacted),
    )

    return compacted
