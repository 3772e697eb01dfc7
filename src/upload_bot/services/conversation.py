"""Conversation state tracking per Telegram user."""

from dataclasses import dataclass, field
from typing import Protocol

from upload_bot.domain.conversation import (
    AwaitingBatchDescription,
    BatchCollecting,
    ConversationState,
    Idle,
    InSession,
    SessionBound,
)


class ConversationStore(Protocol):
    """Interface for per-user conversation state."""

    def get(self, user_id: int) -> ConversationState:
        """Return the current state for a user."""

    def set(self, user_id: int, state: ConversationState) -> None:
        """Replace the state for a user."""

    def clear(self, user_id: int) -> None:
        """Reset a user to idle."""


@dataclass
class InMemoryConversationStore(ConversationStore):
    """Process-local conversation store."""

    _states: dict[int, ConversationState] = field(default_factory=dict)

    def get(self, user_id: int) -> ConversationState:
        """Return the stored state, defaulting to idle."""
        return self._states.get(user_id, Idle())

    def set(self, user_id: int, state: ConversationState) -> None:
        """Store a state; idle states are dropped."""
        if isinstance(state, Idle):
            self._states.pop(user_id, None)
            return
        self._states[user_id] = state

    def clear(self, user_id: int) -> None:
        """Forget the user's state."""
        self._states.pop(user_id, None)


def active_session(state: ConversationState) -> SessionBound | None:
    """Return the state when it is bound to a session."""
    if isinstance(state, InSession | BatchCollecting | AwaitingBatchDescription):
        return state
    return None
