"""
Turn store: durable conversation log backed by the SQLAlchemy models.

Maps database rows to the in-memory records in `schemas`. Every write bumps
the conversation's `updated_at`.
"""

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from .errors import ConversationNotFoundError, PersistenceError
from .models import Conversation, Turn, TurnRole
from .schemas import ConversationRecord, ToolCallRecord, TurnRecord

logger = structlog.get_logger()

TITLE_MAX_LENGTH = 50


def make_title(content: str) -> str:
    """Title a conversation from its first user message."""
    content = content.strip()
    if len(content) > TITLE_MAX_LENGTH:
        return f"{content[:TITLE_MAX_LENGTH - 3]}..."
    return content


def _turn_to_record(turn: Turn) -> TurnRecord:
    tool_calls = None
    if turn.tool_calls:
        tool_calls = [ToolCallRecord.from_dict(tc) for tc in turn.tool_calls]
    return TurnRecord(
        id=turn.id,
        role=turn.role,  # type: ignore
        content=turn.content,
        reasoning=turn.reasoning,
        tool_calls=tool_calls,
        created_at=turn.created_at,
    )


def _conversation_to_record(
    conversation: Conversation, turns: list[Turn] | None = None
) -> ConversationRecord:
    return ConversationRecord(
        id=conversation.id,
        title=conversation.title,
        summary=conversation.summary,
        summarized_count=conversation.summarized_count or 0,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        turns=[_turn_to_record(t) for t in turns or []],
    )


class TurnStore:
    """Async access to conversations and their turns."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def list_conversations(self) -> list[ConversationRecord]:
        """List conversations, most recently updated first."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(Conversation).order_by(Conversation.updated_at.desc())
            )
            return [_conversation_to_record(c) for c in result.scalars().all()]

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        """Get a conversation with its turns in order, or None."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(Conversation)
                .where(Conversation.id == conversation_id)
                .options(selectinload(Conversation.turns))
            )
            conversation = result.scalar_one_or_none()
            if conversation is None:
                return None
            return _conversation_to_record(conversation, conversation.turns)

    async def create_conversation(self) -> ConversationRecord:
        """Create an empty conversation."""
        try:
            async with self.session_maker() as db:
                conversation = Conversation()
                db.add(conversation)
                await db.commit()
                await db.refresh(conversation)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create conversation: {e}") from e

        logger.info("Created conversation", conversation_id=conversation.id)
        return _conversation_to_record(conversation)

    async def append_turn(self, conversation_id: str, turn: TurnRecord) -> TurnRecord:
        """Append a turn to the end of a conversation's log."""
        try:
            async with self.session_maker() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    raise ConversationNotFoundError(conversation_id)

                position = await db.scalar(
                    select(func.count(Turn.id)).where(Turn.conversation_id == conversation_id)
                )

                row = Turn(
                    conversation_id=conversation_id,
                    sequence=position or 0,
                    role=turn.role,
                    content=turn.content,
                    reasoning=turn.reasoning,
                    tool_calls=(
                        [tc.to_dict() for tc in turn.tool_calls] if turn.tool_calls else None
                    ),
                )
                db.add(row)

                if turn.role == TurnRole.USER.value and not conversation.title:
                    conversation.title = make_title(turn.content)
                conversation.updated_at = datetime.now(timezone.utc)

                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append turn: {e}") from e

        return _turn_to_record(row)

    async def update_summary(
        self,
        conversation_id: str,
        summary: str,
        summarized_count: int | None = None,
    ) -> None:
        """Overwrite the conversation summary and, optionally, its turn boundary."""
        try:
            async with self.session_maker() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    raise ConversationNotFoundError(conversation_id)

                conversation.summary = summary
                if summarized_count is not None:
                    conversation.summarized_count = summarized_count
                conversation.updated_at = datetime.now(timezone.utc)
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update summary: {e}") from e

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its turns. Returns False if it did not exist."""
        try:
            async with self.session_maker() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None:
                    return False
                await db.delete(conversation)
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete conversation: {e}") from e

        logger.info("Deleted conversation", conversation_id=conversation_id)
        return True
