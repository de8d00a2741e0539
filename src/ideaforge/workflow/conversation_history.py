"""Conversation history for one stage conversation.

Stores chat messages in order, remembers which message owns each feature
suggestion, and formats messages for provider calls and transcripts.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..llm_client import LLMMessage
from ..models import (
    ChatMessage,
    FeatureSuggestion,
    MessageMetadata,
    MessageRole,
    SuggestionStatus,
)


class ConversationHistory:
    """Append-only list of ``ChatMessage`` objects.

    Provides methods for:
    - Adding user and assistant messages
    - Looking up messages and the suggestions they carry
    - Resolving a suggestion's status through its owning message
    - Formatting messages for LLM calls and transcripts

    Example:
        history = ConversationHistory()
        history.add_user_message("I want to open a bakery")
        transcript = history.transcript(recent_count=4)
    """

    def __init__(self, max_history: int = 200):
        """Initialize conversation history.

        Args:
            max_history: Maximum messages to retain (oldest are dropped)
        """
        self._messages: List[ChatMessage] = []
        self._max_history = max_history
        self._total_added = 0
        # suggestion id -> owning message id
        self._suggestion_owner: Dict[str, str] = {}

    def add(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        self._total_added += 1
        for suggestion in message.suggestions:
            self._suggestion_owner[suggestion.id] = message.id

        if len(self._messages) > self._max_history:
            dropped = self._messages[: -self._max_history]
            self._messages = self._messages[-self._max_history:]
            for old in dropped:
                for suggestion in old.suggestions:
                    self._suggestion_owner.pop(suggestion.id, None)

        return message

    def add_user_message(self, content: str) -> ChatMessage:
        return self.add(ChatMessage(role=MessageRole.USER, content=content))

    def add_assistant_message(self, content: str, metadata: Optional[MessageMetadata] = None) -> ChatMessage:
        return self.add(ChatMessage(role=MessageRole.ASSISTANT, content=content, metadata=metadata))

    def get_all(self) -> List[ChatMessage]:
        return list(self._messages)

    def get_recent(self, count: int = 10) -> List[ChatMessage]:
        return self._messages[-count:] if count < len(self._messages) else list(self._messages)

    def get(self, message_id: str) -> ChatMessage:
        for message in self._messages:
            if message.id == message_id:
                return message
        raise KeyError(f"Unknown message: {message_id}")

    def owner_of(self, suggestion_id: str) -> str:
        """Id of the message that first proposed ``suggestion_id``."""
        try:
            return self._suggestion_owner[suggestion_id]
        except KeyError:
            raise KeyError(f"Unknown suggestion: {suggestion_id}") from None

    def find_suggestion(self, message_id: str, suggestion_id: str) -> FeatureSuggestion:
        message = self.get(message_id)
        for suggestion in message.suggestions:
            if suggestion.id == suggestion_id:
                return suggestion
        raise KeyError(f"Suggestion {suggestion_id} is not part of message {message_id}")

    def update_suggestion_status(self, message_id: str, suggestion_id: str, status: SuggestionStatus) -> bool:
        """Resolve a suggestion in place on its owning message.

        Returns:
            True if the status changed, False if it was already terminal
        """
        return self.find_suggestion(message_id, suggestion_id).resolve(status)

    def to_llm_format(self, recent_count: Optional[int] = None) -> List[LLMMessage]:
        messages = self._messages
        if recent_count and recent_count < len(messages):
            messages = messages[-recent_count:]
        return [LLMMessage(m.role.value, m.content) for m in messages]

    def transcript(self, recent_count: Optional[int] = None) -> str:
        """Render messages as ``role: content`` lines."""
        return "\n".join(f"{m.role}: {m.content}" for m in self.to_llm_format(recent_count))

    @property
    def total_added(self) -> int:
        """Messages ever added, including ones trimmed by ``max_history``."""
        return self._total_added

    def restore(self, messages: Iterable[ChatMessage]) -> None:
        """Replace the history with saved messages and rebuild the owner index."""
        self._messages = []
        self._suggestion_owner = {}
        self._total_added = 0
        for message in messages:
            self.add(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __bool__(self) -> bool:
        return len(self._messages) > 0
