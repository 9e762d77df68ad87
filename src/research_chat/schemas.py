"""
In-memory records for conversations, turns and chat history.

These are what the rest of the system works with; the turn store maps its
database rows to them.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

TurnRoleName = Literal["user", "assistant", "system"]
ToolCallStatus = Literal["pending", "complete", "orphaned"]


@dataclass
class ToolCallRecord:
    """A tool invocation recorded on an assistant turn."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = "pending"
    result: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallRecord":
        status = data.get("status")
        result = data.get("result")
        if status not in ("pending", "complete", "orphaned"):
            status = "complete" if result is not None else "pending"
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            args=dict(data.get("args") or {}),
            status=status,
            result=result,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TurnRecord:
    """A persisted turn."""

    role: TurnRoleName
    content: str
    reasoning: str | None = None
    tool_calls: list[ToolCallRecord] | None = None
    id: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "reasoning": self.reasoning,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ConversationRecord:
    """A conversation, optionally loaded with its turns."""

    id: str
    title: str | None = None
    summary: str | None = None
    summarized_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    turns: list[TurnRecord] = field(default_factory=list)

    def to_dict(self, include_turns: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_turns:
            data["turns"] = [t.to_dict() for t in self.turns]
        return data


@dataclass
class ChatHistoryTurn:
    """A turn as fed back to the agent."""

    role: TurnRoleName
    content: str
    tool_calls: list[ToolCallRecord] | None = None

    @classmethod
    def from_turn(cls, turn: TurnRecord) -> "ChatHistoryTurn":
        return cls(role=turn.role, content=turn.content, tool_calls=turn.tool_calls)


@dataclass
class ChatHistory:
    """History handed to the agent: an optional summary plus recent turns."""

    summary: str | None = None
    turns: list[ChatHistoryTurn] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.summary and not self.turns
