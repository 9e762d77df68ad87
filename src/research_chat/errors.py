"""
Exception types shared across research-chat.
"""


class ResearchChatError(Exception):
    """Base class for research-chat errors."""


class ConversationNotFoundError(ResearchChatError):
    """Raised when a conversation id does not exist in the turn store."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class SummarizationError(ResearchChatError):
    """Raised when the model could not produce a summary of older turns."""


class PersistenceError(ResearchChatError):
    """Raised when a turn store write fails."""
