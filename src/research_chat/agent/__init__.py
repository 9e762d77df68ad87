"""
Agent module - conversation orchestration and context management.

Includes:
- Agent: Long-lived runtime with per-conversation threads
- ContextWindowManager: Summarization of stored history
- translate: Agent steps -> ordered, deduplicated stream events
- ConversationOrchestrator: One user message in, event stream out
"""

from .core import Agent, AgentStep, AgentThread, MessageStep, UpdateStep, get_agent
from .compaction import (
    CompactionConfig,
    ContextConfig,
    ContextWindowManager,
    ReconcileResult,
    compact_messages,
    estimate_tokens,
    estimate_turn_tokens,
)
from .events import (
    NDJSONDecoder,
    ReasoningEvent,
    StreamEvent,
    SummarizedEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    decode_event,
    encode_event,
    translate,
)
from .history import history_to_messages, to_agent_messages
from .orchestrator import ConversationOrchestrator

__all__ = [
    "Agent",
    "AgentStep",
    "AgentThread",
    "MessageStep",
    "UpdateStep",
    "get_agent",
    "CompactionConfig",
    "ContextConfig",
    "ContextWindowManager",
    "ReconcileResult",
    "compact_messages",
    "estimate_tokens",
    "estimate_turn_tokens",
    "NDJSONDecoder",
    "ReasoningEvent",
    "StreamEvent",
    "SummarizedEvent",
    "TokenEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "decode_event",
    "encode_event",
    "translate",
    "history_to_messages",
    "to_agent_messages",
    "ConversationOrchestrator",
]
