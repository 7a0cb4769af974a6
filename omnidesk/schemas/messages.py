from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import ConfigDict

from omnidesk.schemas.base import CamelModel
from omnidesk.schemas.enums import ContentType, MessageDirection, MessageStatus, SenderType


class Message(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    external_id: str | None = None
    conversation_id: str
    content: str = ""
    direction: MessageDirection
    content_type: ContentType = ContentType.text
    media_url: str | None = None
    media_mime_type: str | None = None
    sender: SenderType
    status: MessageStatus = MessageStatus.sent
    is_ai_generated: bool = False
    ai_confidence: float | None = None
    metadata: dict[str, Any] | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    failed_reason: str | None = None
    created_at: datetime | None = None


class PageMeta(CamelModel):
    limit: int
    has_more: bool
    next_cursor: str | None = None


class MessagePage(CamelModel):
    data: list[Message]
    meta: PageMeta


class SendMessageRequest(CamelModel):
    content: str
    content_type: ContentType = ContentType.text
    media_url: str | None = None
    media_mime_type: str | None = None
    metadata: dict[str, Any] | None = None
