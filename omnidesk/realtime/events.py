from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from omnidesk.schemas.base import CamelModel
from omnidesk.schemas.enums import ConversationStatus, MessageDirection, SenderType


class EventType(StrEnum):
    """Broadcast event names on the organization and user channels."""

    NEW_MESSAGE = "new_message"
    MESSAGE_STATUS = "message_status"
    CONVERSATION_UPDATE = "conversation_update"
    NEW_CONVERSATION = "new_conversation"
    AI_PROCESSING = "ai_processing"
    AI_REPLY = "ai_reply"
    AI_ERROR = "ai_error"
    AI_SUGGESTION = "ai_suggestion"
    TYPING = "typing"
    UNREAD_UPDATE = "unread_update"
    NOTIFICATION = "notification"
    CHANNEL_SYNC = "channel_sync"


class RealtimeEvent(BaseModel):
    """Envelope published on a realtime channel."""

    event: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    channel: str | None = None
    timestamp: datetime | None = None

    def model_post_init(self, __context: Any) -> None:
        if self.timestamp is None:
            object.__setattr__(self, "timestamp", datetime.now(UTC))


def organization_scope(organization_id: str) -> str:
    return f"org:{organization_id}"


def user_scope(user_id: str) -> str:
    return f"user:{user_id}"


# Payload shapes. Every field is optional on the wire; handlers drop events
# missing what they need.


class MessageRef(CamelModel):
    id: str
    conversation_id: str | None = None
    content: str | None = None
    sender: SenderType | None = None
    direction: MessageDirection | None = None
    is_ai_generated: bool = False


class ConversationRef(CamelModel):
    id: str
    unread_count: int | None = None


class NewMessagePayload(CamelModel):
    message: MessageRef | None = None
    conversation: ConversationRef | None = None

    @property
    def conversation_id(self) -> str | None:
        if self.conversation is not None:
            return self.conversation.id
        return self.message.conversation_id if self.message else None

    @property
    def is_inbound(self) -> bool:
        if self.message is None:
            return False
        return self.message.sender == SenderType.contact or self.message.direction == MessageDirection.inbound

    @property
    def is_ai(self) -> bool:
        if self.message is None:
            return False
        return self.message.sender == SenderType.ai or self.message.is_ai_generated


class MessageStatusPayload(CamelModel):
    message_id: str | None = None
    status: str | None = None


class ConversationUpdates(CamelModel):
    unread_count: int | None = None
    status: ConversationStatus | None = None


class ConversationUpdatePayload(CamelModel):
    conversation_id: str | None = None
    updates: ConversationUpdates | None = None


class ConversationEventPayload(CamelModel):
    conversation_id: str | None = None
    message: str | None = None


class AiSuggestionPayload(CamelModel):
    conversation_id: str | None = None
    suggestion: str | None = None


class TypingPayload(CamelModel):
    conversation_id: str | None = None
    user_id: str | None = None
    typing: bool = True


class UnreadUpdatePayload(CamelModel):
    conversation_id: str | None = None
    count: int | None = None


class NotificationBody(CamelModel):
    id: str
    title: str
    body: str
    is_read: bool = False
    created_at: datetime | None = None


class NotificationPayload(CamelModel):
    notification: NotificationBody | None = None
