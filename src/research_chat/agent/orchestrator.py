"""
Conversation orchestration: one user message in, a stream of events out.

Per request the orchestrator resolves (or creates) the conversation,
reconciles the context window, runs the agent on the conversation's thread,
streams translated events while accumulating the assistant turn, and persists
the user turn before the run and exactly one assistant turn after it.
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

import structlog

from ..errors import ConversationNotFoundError, PersistenceError, SummarizationError
from ..schemas import ChatHistory, ToolCallRecord, TurnRecord
from ..store import TurnStore
from .compaction import ContextConfig, ContextWindowManager, ReconcileResult
from .core import Agent
from .events import (
    ReasoningEvent,
    StreamEvent,
    SummarizedEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    translate,
)
from .history import history_to_messages

logger = structlog.get_logger()

ERROR_MESSAGE = "Sorry, there was an error processing your request. Please try again."
EMPTY_RESPONSE_MESSAGE = "I apologize, I could not respond."

UpdateListener = Callable[[str], Awaitable[None]]


def summarized_notice(count: int) -> str:
    return f"Older messages have been summarized to maintain context ({count} messages compressed)."


@dataclass
class AssistantTurnBuilder:
    """Accumulates streamed events into the assistant turn to persist."""

    content: str = ""
    reasoning: str = ""
    tool_calls: dict[str, ToolCallRecord] = field(default_factory=dict)

    def apply(self, event: StreamEvent) -> None:
        if isinstance(event, TokenEvent):
            self.content += event.content
        elif isinstance(event, ReasoningEvent):
            self.reasoning += event.content
        elif isinstance(event, ToolCallEvent):
            self.tool_calls[event.id] = ToolCallRecord(
                id=event.id, name=event.name, args=dict(event.args)
            )
        elif isinstance(event, ToolResultEvent):
            record = self.tool_calls.get(event.id)
            if record is not None:
                record.result = event.result
                record.status = "complete"

    def build(self) -> TurnRecord:
        """The final turn; calls still waiting for a result are marked orphaned."""
        records = list(self.tool_calls.values())
        for record in records:
            if record.status == "pending":
                record.status = "orphaned"
        return TurnRecord(
            role="assistant",
            content=self.content,
            reasoning=self.reasoning or None,
            tool_calls=records or None,
        )


class ConversationOrchestrator:
    """Runs user messages against the agent and keeps the turn store in sync."""

    def __init__(
        self,
        store: TurnStore,
        agent: Agent,
        context_config: ContextConfig | None = None,
        context_manager: ContextWindowManager | None = None,
    ):
        self.store = store
        self.agent = agent
        if context_config is None:
            context_config = ContextConfig(
                summary_token_threshold=agent.settings.summary_token_threshold,
                keep_turns=agent.settings.keep_turns,
            )
        self.context_manager = context_manager or ContextWindowManager(
            store, agent.llm, context_config
        )
        self._listeners: list[UpdateListener] = []

    def add_listener(self, listener: UpdateListener) -> None:
        """Register a callback invoked with the conversation id after each persisted change."""
        self._listeners.append(listener)

    async def _notify(self, conversation_id: str) -> None:
        for listener in self._listeners:
            try:
                await listener(conversation_id)
            except Exception as e:
                logger.error("Update listener failed", conversation_id=conversation_id, error=str(e))

    async def resolve_conversation(self, conversation_id: str | None) -> str:
        """Return an existing conversation id or create a new conversation."""
        if conversation_id:
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
            return conversation.id

        conversation = await self.store.create_conversation()
        return conversation.id

    async def _reconcile(self, conversation_id: str) -> ReconcileResult:
        """Reconcile context; fall back to unsummarized or empty history on failure."""
        try:
            return await self.context_manager.reconcile(conversation_id)
        except SummarizationError as e:
            logger.error(
                "Summarization failed, continuing with full history",
                conversation_id=conversation_id,
                error=str(e),
            )
        except (ConversationNotFoundError, PersistenceError) as e:
            logger.error(
                "History unavailable, continuing without history",
                conversation_id=conversation_id,
                error=str(e),
            )
            return ReconcileResult(history=ChatHistory())
        except Exception as e:
            logger.error(
                "History fetch failed, continuing without history",
                conversation_id=conversation_id,
                error=str(e),
            )
            return ReconcileResult(history=ChatHistory())

        try:
            return ReconcileResult(history=await self.context_manager.load_history(conversation_id))
        except Exception as e:
            logger.error(
                "History fetch failed, continuing without history",
                conversation_id=conversation_id,
                error=str(e),
            )
            return ReconcileResult(history=ChatHistory())

    async def _persist(self, conversation_id: str, turn: TurnRecord) -> TurnRecord | None:
        """Append a turn; failures are logged, never raised."""
        try:
            saved = await self.store.append_turn(conversation_id, turn)
        except Exception as e:
            logger.error(
                "Failed to persist turn",
                conversation_id=conversation_id,
                role=turn.role,
                error=str(e),
            )
            return None
        await self._notify(conversation_id)
        return saved

    async def stream(
        self,
        user_input: str,
        conversation_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Handle one user message, yielding events as the agent produces them.

        Raises ConversationNotFoundError before any event if `conversation_id`
        is unknown. Once the run starts, exactly one assistant turn is
        persisted, even when the run fails or the consumer stops early.
        """
        conversation_id = await self.resolve_conversation(conversation_id)
        async with aclosing(self.stream_conversation(conversation_id, user_input)) as events:
            async for event in events:
                yield event

    async def stream_conversation(
        self,
        conversation_id: str,
        user_input: str,
    ) -> AsyncIterator[StreamEvent]:
        """Like `stream`, for an already resolved conversation id.

        The conversation's execution slot is held from reconciliation until the
        assistant turn is saved, so requests on one conversation never
        interleave in the turn log.
        """
        log = logger.bind(conversation_id=conversation_id)

        async with self.agent.thread_lock(conversation_id):
            reconciled = await self._reconcile(conversation_id)
            if reconciled.summarized_count > 0:
                await self._persist(
                    conversation_id,
                    TurnRecord(role="system", content=summarized_notice(reconciled.summarized_count)),
                )
                yield SummarizedEvent(message_count=reconciled.summarized_count)

            await self._persist(conversation_id, TurnRecord(role="user", content=user_input))

            builder = AssistantTurnBuilder()
            failed = False
            try:
                steps = self.agent.run(
                    conversation_id,
                    user_input,
                    history=history_to_messages(reconciled.history),
                    acquire_lock=False,
                )
                async with aclosing(steps):
                    async with aclosing(translate(steps)) as events:
                        async for event in events:
                            builder.apply(event)
                            yield event

            except (GeneratorExit, asyncio.CancelledError):
                log.warning("Stream closed by consumer, saving partial response")
                raise

            except Exception as e:
                failed = True
                log.error("Agent run failed", error=str(e), exc_info=True)

            finally:
                tail = None
                if failed:
                    tail = f"\n\n{ERROR_MESSAGE}" if builder.content else ERROR_MESSAGE
                elif not builder.content:
                    tail = EMPTY_RESPONSE_MESSAGE
                if tail is not None:
                    builder.content += tail

                turn = builder.build()
                await asyncio.shield(self._persist(conversation_id, turn))
                log.info(
                    "Assistant turn saved",
                    content_length=len(turn.content),
                    tool_calls=len(turn.tool_calls or []),
                    failed=failed,
                )

            # Only reached while the consumer is still reading
            if tail is not None:
                yield TokenEvent(content=tail)
