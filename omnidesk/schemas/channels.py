from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from omnidesk.schemas.base import CamelModel
from omnidesk.schemas.enums import ChannelType


class Channel(CamelModel):
    id: str
    type: ChannelType
    name: str
    is_active: bool = True
    external_id: str | None = None
    webhook_secret: str | None = None
    metadata: dict[str, Any] | None = None
    last_sync_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    has_credentials: bool = False


class ChannelDetail(Channel):
    credentials_preview: dict[str, Any] | None = None


class ChannelCreate(CamelModel):
    type: ChannelType
    name: str = Field(min_length=2, max_length=120)
    external_id: str | None = None
    webhook_secret: str | None = None
    metadata: dict[str, Any] | None = None
    credentials: dict[str, Any]
    is_active: bool | None = None


class ChannelUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    external_id: str | None = None
    webhook_secret: str | None = None
    metadata: dict[str, Any] | None = None
    credentials: dict[str, Any] | None = None
    is_active: bool | None = None
    last_sync_at: datetime | None = None


class ChannelTestResult(CamelModel):
    success: bool
    message: str
    details: dict[str, Any] | None = None


class ConnectUrlResult(CamelModel):
    type: ChannelType
    auth_url: str
    state: str


class CompleteConnectRequest(CamelModel):
    code: str
    redirect_uri: str
    state: str | None = None
    channel_name: str | None = None
    external_id: str | None = None


class CompleteConnectResult(CamelModel):
    channel: Channel
    is_new: bool


class WhatsAppConnectInput(CamelModel):
    name: str = Field(min_length=2)
    phone_number_id: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    webhook_secret: str | None = None
