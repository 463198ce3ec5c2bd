"""Conversation models."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from .base import Metadata, utc_now


class ConversationState(str, Enum):
    """Lifecycle states of a conversation."""

    CREATED = "created"
    ACTIVE = "active"
    ARCHIVED = "archived"


# Allowed lifecycle moves; archived is terminal
CONVERSATION_TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    ConversationState.CREATED: frozenset({ConversationState.ACTIVE, ConversationState.ARCHIVED}),
    ConversationState.ACTIVE: frozenset({ConversationState.ARCHIVED}),
    ConversationState.ARCHIVED: frozenset(),
}


class Conversation(BaseModel):
    """A session that scopes memories.

    Conversations are never deleted; archiving makes them read-only.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = None
    state: ConversationState = ConversationState.CREATED
    memory_count: int = Field(default=0, ge=0)
    metadata: Metadata = Field(default_factory=dict)

    @property
    def active(self) -> bool:
        return self.state != ConversationState.ARCHIVED

    @property
    def accepts_writes(self) -> bool:
        return self.state != ConversationState.ARCHIVED

    def can_transition_to(self, target: ConversationState) -> bool:
        return target in CONVERSATION_TRANSITIONS[self.state]
