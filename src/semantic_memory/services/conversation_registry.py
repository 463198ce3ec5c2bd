"""Conversation lifecycle and memory counts."""

from typing import Any

from semantic_memory.core.base import ErrorCode, ResourceErrorDetails, ValidationErrorDetails
from semantic_memory.core.errors import ConflictError, ValidationError
from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger
from semantic_memory.domain.models import Conversation, ConversationState, utc_now, validate_metadata
from semantic_memory.infrastructure.repositories.vector_store import VectorStore

logger = get_logger(__name__)


class ConversationRegistry:
    """Maps conversation ids to their lifecycle state.

    ``created -> active -> archived``. The first successful write activates
    a conversation; archiving is terminal. Archived conversations reject
    writes with ``ConflictError`` but stay readable and searchable.
    ``memory_count`` is adjusted on each insert and only recounted by
    ``reconcile``.
    """

    def __init__(self, store: VectorStore, events: EventRecorder | None = None) -> None:
        self.store = store
        self.events = events or EventRecorder()

    async def create(
        self,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        """Register a conversation.

        Raises:
            ConflictError: If ``conversation_id`` is already registered
        """
        values: dict[str, Any] = {"name": name, "metadata": validate_metadata(metadata)}
        if conversation_id is not None:
            if not conversation_id.strip():
                raise ValidationError(
                    message="Conversation id must not be blank",
                    details=ValidationErrorDetails(
                        source="conversation_registry",
                        operation="create",
                        field="conversation_id",
                    ),
                )
            if await self.store.get_conversation(conversation_id) is not None:
                raise ConflictError(
                    message=f"Conversation {conversation_id} already exists",
                    details=self._details(conversation_id, "create"),
                )
            values["id"] = conversation_id

        conversation = Conversation(**values)
        await self.store.save_conversation(conversation)
        self.events.emit(EventKind.CONVERSATION_CREATED, conversation_id=conversation.id, name=name)
        logger.info("Conversation created", conversation_id=conversation.id)
        return conversation

    async def get(self, conversation_id: str) -> Conversation | None:
        return await self.store.get_conversation(conversation_id)

    async def list(self) -> list[Conversation]:
        return await self.store.list_conversations()

    async def require(self, conversation_id: str) -> Conversation:
        """Return the conversation or raise ValidationError if it is unknown."""
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ValidationError(
                message=f"Unknown conversation: {conversation_id}",
                details=ValidationErrorDetails(
                    source="conversation_registry",
                    operation="require",
                    field="conversation_id",
                    actual_value=conversation_id,
                ),
                code=ErrorCode.NOT_FOUND,
            )
        return conversation

    async def require_writable(self, conversation_id: str) -> Conversation:
        """Return a conversation that accepts memory writes.

        Raises:
            ValidationError: If the conversation is unknown
            ConflictError: If the conversation is archived
        """
        conversation = await self.require(conversation_id)
        if not conversation.accepts_writes:
            raise ConflictError(
                message=f"Conversation {conversation_id} is archived and read-only",
                details=self._details(conversation_id, "write"),
            )
        return conversation

    async def record_insert(self, conversation: Conversation) -> Conversation:
        """Account for a new memory: bump the count and activate on first write."""
        count = await self.store.increment_memory_count(conversation.id, 1)
        conversation.memory_count = count if count is not None else conversation.memory_count + 1
        if conversation.state == ConversationState.CREATED:
            await self._activate(conversation)
        return conversation

    async def record_merge(self, conversation: Conversation) -> Conversation:
        """A write merged into an existing memory still counts as activity."""
        if conversation.state == ConversationState.CREATED:
            await self._activate(conversation)
        return conversation

    async def _activate(self, conversation: Conversation) -> None:
        # Re-read so the persisted count is not overwritten by a stale copy
        current = await self.store.get_conversation(conversation.id) or conversation
        if not current.can_transition_to(ConversationState.ACTIVE):
            conversation.state = current.state
            return
        current.state = ConversationState.ACTIVE
        current.updated_at = utc_now()
        await self.store.save_conversation(current)
        conversation.state = current.state
        conversation.updated_at = current.updated_at

    async def archive(self, conversation_id: str) -> Conversation:
        """Make a conversation read-only. Archiving twice is a no-op."""
        conversation = await self.require(conversation_id)
        if not conversation.can_transition_to(ConversationState.ARCHIVED):
            return conversation
        conversation.state = ConversationState.ARCHIVED
        conversation.updated_at = utc_now()
        await self.store.save_conversation(conversation)
        self.events.emit(EventKind.CONVERSATION_ARCHIVED, conversation_id=conversation_id)
        return conversation

    async def reconcile(self, conversation_id: str) -> Conversation:
        """Recount memories by full scan and repair ``memory_count`` if it drifted."""
        conversation = await self.require(conversation_id)
        actual = await self.store.count_memories(conversation_id)
        if actual != conversation.memory_count:
            await self.store.set_memory_count(conversation_id, actual)
            self.events.emit(
                EventKind.COUNT_RECONCILED,
                conversation_id=conversation_id,
                recorded=conversation.memory_count,
                actual=actual,
            )
            conversation.memory_count = actual
        return conversation

    @staticmethod
    def _details(conversation_id: str, action: str) -> ResourceErrorDetails:
        return ResourceErrorDetails(
            source="conversation_registry",
            operation=action,
            resource_id=conversation_id,
            resource_type="conversation",
            action=action,
        )
