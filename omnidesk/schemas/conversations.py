from __future__ import annotations

from datetime import datetime
from typing import Any

from omnidesk.schemas.base import CamelModel
from omnidesk.schemas.enums import ChannelType, ConversationStatus, Priority


class ConversationChannel(CamelModel):
    id: str
    type: ChannelType
    name: str = ""


class ConversationContact(CamelModel):
    id: str
    display_name: str = ""
    stage: str | None = None
    email: str | None = None
    phone: str | None = None
    avatar: str | None = None


class ConversationAssignee(CamelModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    avatar: str | None = None


class Conversation(CamelModel):
    id: str
    external_id: str | None = None
    status: ConversationStatus = ConversationStatus.open
    priority: Priority = Priority.medium
    subject: str | None = None
    last_message_preview: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = 0
    ai_enabled: bool = False
    is_ai_handling: bool = False
    metadata: dict[str, Any] | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    channel: ConversationChannel | None = None
    contact: ConversationContact | None = None
    assigned_to: ConversationAssignee | None = None


class ConversationFilters(CamelModel):
    status: ConversationStatus | None = None
    channel: ChannelType | None = None
    search: str | None = None
    assigned_to: str | None = None
    page: int | None = None
    limit: int | None = None
    sort: str | None = None


class ConversationUpdate(CamelModel):
    status: ConversationStatus | None = None
    priority: Priority | None = None
    subject: str | None = None
    assigned_to_id: str | None = None
    ai_enabled: bool | None = None
    metadata: dict[str, Any] | None = None


class ListMeta(CamelModel):
    total: int = 0
    page: int = 1
    limit: int = 0
    total_pages: int = 0
