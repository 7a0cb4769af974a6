"""Cursor-paginated message history and message sending.

History is fetched backward from the most recent message. Pages are kept in
fetch order and flattened as-is: the server's ordering is trusted and nothing
is re-sorted on the client. Sending never inserts speculatively; the
conversation's caches are invalidated and the history refetches.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from omnidesk.config import settings
from omnidesk.schemas.enums import ContentType
from omnidesk.schemas.messages import Message, MessagePage, SendMessageRequest
from omnidesk.services.api_client import ApiClient, unwrap_data
from omnidesk.services.query_cache import CacheKey, QueryCache, invalidate_conversation_collections, messages_key

logger = logging.getLogger(__name__)


def flatten_message_pages(pages: Iterable[MessagePage] | None) -> list[Message]:
    if not pages:
        return []
    return [message for page in pages for message in page.data]


def _messages_path(organization_id: str, conversation_id: str) -> str:
    return f"/orgs/{organization_id}/conversations/{conversation_id}/messages"


class MessageHistory:
    """Backward-infinite message list for one conversation.

    The loaded pages are registered in the query cache; once that entry is
    invalidated (or goes stale) the history reports ``is_stale`` and the next
    read refetches from the newest page.
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        organization_id: str,
        conversation_id: str,
        *,
        limit: int = settings.messages_page_limit,
        stale_seconds: float = settings.messages_stale_seconds,
    ) -> None:
        self.api = api
        self.cache = cache
        self.organization_id = organization_id
        self.conversation_id = conversation_id
        self.limit = limit
        self.stale_seconds = stale_seconds
        self._pages: list[MessagePage] = []
        self._generation = 0
        self._load_lock = asyncio.Lock()
        self._next_page_task: asyncio.Future[MessagePage | None] | None = None
        self._unsubscribe = cache.on_invalidate(self._on_invalidate)

    @property
    def key(self) -> CacheKey:
        return (*messages_key(self.organization_id, self.conversation_id), self.limit)

    def _on_invalidate(self, prefix: CacheKey) -> None:
        if self.key[: len(prefix)] == prefix:
            self._generation += 1

    def close(self) -> None:
        self._unsubscribe()

    @property
    def pages(self) -> tuple[MessagePage, ...]:
        return tuple(self._pages)

    @property
    def messages(self) -> list[Message]:
        return flatten_message_pages(self._pages)

    @property
    def is_stale(self) -> bool:
        return not self.cache.contains(self.key)

    @property
    def has_next_page(self) -> bool:
        if not self._pages:
            return True
        last = self._pages[-1].meta
        return last.has_more and bool(last.next_cursor)

    async def _load_page(self, cursor: str | None) -> MessagePage:
        params: dict[str, Any] = {"limit": self.limit}
        if cursor:
            params["cursor"] = cursor
        payload = await self.api.get(_messages_path(self.organization_id, self.conversation_id), params=params)
        return MessagePage.model_validate(payload)

    def _store(self, pages: list[MessagePage], generation: int) -> None:
        self._pages = pages
        # an invalidation that landed mid-fetch keeps the history stale
        if generation == self._generation:
            self.cache.set(self.key, tuple(pages), self.stale_seconds)

    async def fetch_next_page(self) -> MessagePage | None:
        """Load the next older page; overlapping callers share one load."""
        if self._next_page_task is None:
            self._next_page_task = asyncio.ensure_future(self._fetch_next_page())
        return await asyncio.shield(self._next_page_task)

    async def _fetch_next_page(self) -> MessagePage | None:
        try:
            async with self._load_lock:
                if self._pages and self.is_stale:
                    await self._refetch()
                if not self.has_next_page:
                    return None
                generation = self._generation
                cursor = self._pages[-1].meta.next_cursor if self._pages else None
                page = await self._load_page(cursor)
                self._store([*self._pages, page], generation)
                return page
        finally:
            self._next_page_task = None

    async def refetch(self) -> list[Message]:
        """Reload from the newest page, keeping as many pages as were loaded."""
        async with self._load_lock:
            return await self._refetch()

    async def _refetch(self) -> list[Message]:
        generation = self._generation
        wanted = max(1, len(self._pages))
        pages: list[MessagePage] = []
        cursor: str | None = None
        for _ in range(wanted):
            page = await self._load_page(cursor)
            pages.append(page)
            if not (page.meta.has_more and page.meta.next_cursor):
                break
            cursor = page.meta.next_cursor
        self._store(pages, generation)
        logger.debug(
            "message_history_refetched conversation_id=%s pages=%s",
            self.conversation_id,
            len(pages),
        )
        return self.messages

    async def ensure_fresh(self) -> list[Message]:
        if not self._pages:
            await self.fetch_next_page()
        elif self.is_stale:
            await self.refetch()
        return self.messages

    def invalidate(self) -> None:
        self.cache.invalidate(self.key)


class MessageService:
    def __init__(self, api: ApiClient, cache: QueryCache, organization_id: str) -> None:
        if not organization_id:
            raise ValueError("organization_id is required")
        self.api = api
        self.cache = cache
        self.organization_id = organization_id

    def history(self, conversation_id: str, *, limit: int = settings.messages_page_limit) -> MessageHistory:
        return MessageHistory(self.api, self.cache, self.organization_id, conversation_id, limit=limit)

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        *,
        content_type: ContentType = ContentType.text,
        media_url: str | None = None,
        media_mime_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        payload = SendMessageRequest(
            content=content,
            content_type=content_type,
            media_url=media_url,
            media_mime_type=media_mime_type,
            metadata=metadata,
        )
        body = await self.api.post(
            _messages_path(self.organization_id, conversation_id),
            payload.model_dump(mode="json", by_alias=True),
        )
        invalidate_conversation_collections(self.cache, self.organization_id, conversation_id)
        message = Message.model_validate(unwrap_data(body))
        logger.info("message_sent conversation_id=%s message_id=%s", conversation_id, message.id)
        return message
