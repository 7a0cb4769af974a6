"""Channel registry view for one organization.

Reads are served from the query cache; every successful mutation drops the
organization's channel list and channel details so the next read refetches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from omnidesk.config import settings
from omnidesk.schemas.channels import (
    Channel,
    ChannelCreate,
    ChannelDetail,
    ChannelTestResult,
    ChannelUpdate,
    CompleteConnectRequest,
    CompleteConnectResult,
    ConnectUrlResult,
    WhatsAppConnectInput,
)
from omnidesk.schemas.enums import OAUTH_CHANNEL_TYPES, ChannelType
from omnidesk.services.api_client import ApiClient, unwrap_data
from omnidesk.services.query_cache import QueryCache, channel_key, channels_key, invalidate_channels

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WhatsAppConnectResult:
    channel: Channel
    created: bool
    message: str


def _require_oauth_type(channel_type: ChannelType) -> None:
    if channel_type not in OAUTH_CHANNEL_TYPES:
        raise ValueError(f"{channel_type.value} does not use the OAuth connect flow")


class ChannelRegistry:
    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        organization_id: str,
        *,
        stale_seconds: float = settings.channels_stale_seconds,
    ) -> None:
        if not organization_id:
            raise ValueError("organization_id is required")
        self.api = api
        self.cache = cache
        self.organization_id = organization_id
        self.stale_seconds = stale_seconds

    @property
    def _base_path(self) -> str:
        return f"/orgs/{self.organization_id}/channels"

    def invalidate(self) -> None:
        invalidate_channels(self.cache, self.organization_id)

    async def _load_channels(self) -> list[Channel]:
        data = await self.api.get_data(self._base_path)
        return [Channel.model_validate(item) for item in data or []]

    async def list_channels(self, channel_type: ChannelType | None = None) -> list[Channel]:
        channels = await self.cache.fetch(channels_key(self.organization_id), self._load_channels, self.stale_seconds)
        if channel_type is None:
            return list(channels)
        return [channel for channel in channels if channel.type == channel_type]

    async def get_channel(self, channel_id: str) -> ChannelDetail:
        async def load() -> ChannelDetail:
            return ChannelDetail.model_validate(await self.api.get_data(f"{self._base_path}/{channel_id}"))

        return await self.cache.fetch(channel_key(self.organization_id, channel_id), load, self.stale_seconds)

    async def create_channel(self, payload: ChannelCreate) -> Channel:
        data = unwrap_data(await self.api.post(self._base_path, payload.to_payload()))
        self.invalidate()
        channel = Channel.model_validate(data)
        logger.info("channel_created org_id=%s channel_id=%s type=%s", self.organization_id, channel.id, channel.type.value)
        return channel

    async def update_channel(self, channel_id: str, payload: ChannelUpdate) -> Channel:
        data = unwrap_data(await self.api.patch(f"{self._base_path}/{channel_id}", payload.to_payload()))
        self.invalidate()
        return Channel.model_validate(data)

    async def set_active(self, channel_id: str, is_active: bool) -> Channel:
        return await self.update_channel(channel_id, ChannelUpdate(is_active=is_active))

    async def delete_channel(self, channel_id: str) -> None:
        """Hard delete. The caller is responsible for confirming with the user first."""
        await self.api.delete(f"{self._base_path}/{channel_id}")
        self.invalidate()
        logger.info("channel_deleted org_id=%s channel_id=%s", self.organization_id, channel_id)

    async def test_connection(self, channel_id: str) -> ChannelTestResult:
        data = unwrap_data(await self.api.post(f"{self._base_path}/{channel_id}/test"))
        return ChannelTestResult.model_validate(data)

    async def connect_whatsapp(self, payload: WhatsAppConnectInput) -> WhatsAppConnectResult:
        """Create a WhatsApp channel, or rotate credentials on the one sharing the phone number id."""
        phone_number_id = payload.phone_number_id.strip()
        credentials = {"accessToken": payload.access_token.strip(), "phoneNumberId": phone_number_id}
        webhook_secret = (payload.webhook_secret or "").strip() or None

        existing = next(
            (
                channel
                for channel in await self.list_channels(ChannelType.whatsapp)
                if channel.external_id == phone_number_id
            ),
            None,
        )
        if existing is not None:
            channel = await self.update_channel(
                existing.id,
                ChannelUpdate(
                    name=payload.name.strip(),
                    external_id=phone_number_id,
                    webhook_secret=webhook_secret,
                    credentials=credentials,
                    is_active=True,
                ),
            )
            return WhatsAppConnectResult(channel, created=False, message="Updated existing WhatsApp channel credentials.")

        channel = await self.create_channel(
            ChannelCreate(
                type=ChannelType.whatsapp,
                name=payload.name.strip(),
                external_id=phone_number_id,
                webhook_secret=webhook_secret,
                credentials=credentials,
                metadata={"setup": "manual"},
            )
        )
        return WhatsAppConnectResult(channel, created=True, message="WhatsApp channel connected.")

    async def request_connect_url(self, channel_type: ChannelType, redirect_uri: str, state: str) -> ConnectUrlResult:
        _require_oauth_type(channel_type)
        data = await self.api.get_data(
            f"{self._base_path}/connect/{channel_type.value}/url",
            params={"redirectUri": redirect_uri, "state": state},
        )
        return ConnectUrlResult.model_validate(data)

    async def complete_connect(
        self, channel_type: ChannelType, payload: CompleteConnectRequest
    ) -> CompleteConnectResult:
        _require_oauth_type(channel_type)
        data = unwrap_data(
            await self.api.post(f"{self._base_path}/connect/{channel_type.value}/callback", payload.to_payload())
        )
        self.invalidate()
        return CompleteConnectResult.model_validate(data)
