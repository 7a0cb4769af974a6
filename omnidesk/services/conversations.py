from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from omnidesk.config import settings
from omnidesk.schemas.conversations import Conversation, ConversationFilters, ConversationUpdate, ListMeta
from omnidesk.services.api_client import ApiClient, unwrap_data
from omnidesk.services.inbox_store import InboxStore
from omnidesk.services.query_cache import (
    QueryCache,
    conversation_key,
    conversations_key,
    invalidate_conversation_collections,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationList:
    data: list[Conversation]
    meta: ListMeta


class ConversationService:
    """Conversation reads and mutations for one organization.

    Every full list fetch is pushed into the inbox store as the authoritative
    unread snapshot. Every successful mutation drops the conversation list,
    this conversation's detail and its message pages.
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        inbox: InboxStore,
        organization_id: str,
        *,
        stale_seconds: float = settings.conversations_stale_seconds,
    ) -> None:
        if not organization_id:
            raise ValueError("organization_id is required")
        self.api = api
        self.cache = cache
        self.inbox = inbox
        self.organization_id = organization_id
        self.stale_seconds = stale_seconds

    @property
    def _base_path(self) -> str:
        return f"/orgs/{self.organization_id}/conversations"

    def _invalidate(self, conversation_id: str) -> None:
        invalidate_conversation_collections(self.cache, self.organization_id, conversation_id)

    async def list_conversations(self, filters: ConversationFilters | None = None) -> ConversationList:
        params = filters.to_payload() if filters else {}
        key = (*conversations_key(self.organization_id), json.dumps(params, sort_keys=True, default=str))

        async def load() -> ConversationList:
            data, meta = await self.api.get_list(self._base_path, params=params)
            result = ConversationList(
                data=[Conversation.model_validate(item) for item in data],
                meta=ListMeta.model_validate(meta),
            )
            self.inbox.sync_unread_from_conversations(result.data)
            if self.inbox.state.selected_conversation_id is None and result.data:
                self.inbox.set_selected_conversation(result.data[0].id)
            return result

        return await self.cache.fetch(key, load, self.stale_seconds)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async def load() -> Conversation:
            return Conversation.model_validate(await self.api.get_data(f"{self._base_path}/{conversation_id}"))

        return await self.cache.fetch(
            conversation_key(self.organization_id, conversation_id), load, self.stale_seconds
        )

    def open_conversation(self, conversation_id: str) -> None:
        """Select a conversation and optimistically zero its unread count."""
        self.inbox.set_selected_conversation(conversation_id)
        self.inbox.mark_conversation_read(conversation_id)

    async def _mutate(self, method: str, conversation_id: str, suffix: str = "", payload: dict | None = None) -> Conversation:
        path = f"{self._base_path}/{conversation_id}{suffix}"
        body = await self.api.request(method, path, json=payload)
        self._invalidate(conversation_id)
        return Conversation.model_validate(unwrap_data(body))

    async def update_conversation(self, conversation_id: str, payload: ConversationUpdate) -> Conversation:
        return await self._mutate("PATCH", conversation_id, payload=payload.to_payload())

    async def close_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._mutate("POST", conversation_id, "/close")
        self.inbox.clear_typing_conversation(conversation_id)
        return conversation

    async def reopen_conversation(self, conversation_id: str) -> Conversation:
        return await self._mutate("POST", conversation_id, "/reopen")

    async def assign_conversation(self, conversation_id: str, assigned_to_id: str | None) -> Conversation:
        return await self._mutate("POST", conversation_id, "/assign", {"assignedToId": assigned_to_id})

    async def toggle_ai(self, conversation_id: str, ai_enabled: bool) -> Conversation:
        return await self._mutate("PATCH", conversation_id, "/ai", {"aiEnabled": ai_enabled})
