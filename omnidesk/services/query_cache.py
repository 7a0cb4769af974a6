"""In-memory query cache for API reads.

Keys are tuples such as ``("messages", org_id, conversation_id, limit)``.
Invalidating a prefix tuple drops every key that starts with it, so
``invalidate(("conversations", org_id))`` clears all filtered list variants
for that organization.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


logger = logging.getLogger(__name__)

CacheKey = tuple[Any, ...]
InvalidationListener = Callable[[CacheKey], None]


@dataclass
class _CacheEntry:
    value: Any
    expires_at: datetime


def _now() -> datetime:
    return datetime.now(UTC)


def _matches(key: CacheKey, prefix: CacheKey) -> bool:
    return key[: len(prefix)] == prefix


class QueryCache:
    def __init__(self) -> None:
        self._entries: dict[CacheKey, _CacheEntry] = {}
        self._listeners: list[InvalidationListener] = []

    def _expired(self, entry: _CacheEntry) -> bool:
        return entry.expires_at <= _now()

    def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        if not entry:
            return None
        if self._expired(entry):
            self._entries.pop(key, None)
            return None
        return entry.value

    def contains(self, key: CacheKey) -> bool:
        return self.get(key) is not None

    def set(self, key: CacheKey, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = _CacheEntry(value=value, expires_at=_now() + timedelta(seconds=ttl_seconds))

    async def fetch(self, key: CacheKey, loader: Callable[[], Awaitable[Any]], ttl_seconds: float) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        self.set(key, value, ttl_seconds)
        return value

    def invalidate(self, prefix: CacheKey) -> None:
        keys = [key for key in self._entries if _matches(key, prefix)]
        for key in keys:
            self._entries.pop(key, None)
        logger.debug("query_cache_invalidated prefix=%s dropped=%s", prefix, len(keys))
        for listener in list(self._listeners):
            listener(prefix)

    def clear(self) -> None:
        self._entries.clear()

    def on_invalidate(self, listener: InvalidationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


def channels_key(organization_id: str) -> CacheKey:
    return ("channels", organization_id)


def channel_key(organization_id: str, channel_id: str | None = None) -> CacheKey:
    return ("channel", organization_id) if channel_id is None else ("channel", organization_id, channel_id)


def conversations_key(organization_id: str) -> CacheKey:
    return ("conversations", organization_id)


def conversation_key(organization_id: str, conversation_id: str | None = None) -> CacheKey:
    if conversation_id is None:
        return ("conversation", organization_id)
    return ("conversation", organization_id, conversation_id)


def messages_key(organization_id: str, conversation_id: str | None = None) -> CacheKey:
    return ("messages", organization_id) if conversation_id is None else ("messages", organization_id, conversation_id)


def invalidate_conversation_collections(
    cache: QueryCache, organization_id: str, conversation_id: str | None = None
) -> None:
    """Drop the conversation list, and for a known conversation its detail and message pages."""
    cache.invalidate(conversations_key(organization_id))
    if conversation_id:
        cache.invalidate(conversation_key(organization_id, conversation_id))
        cache.invalidate(messages_key(organization_id, conversation_id))


def invalidate_channels(cache: QueryCache, organization_id: str) -> None:
    cache.invalidate(channels_key(organization_id))
    cache.invalidate(channel_key(organization_id))
