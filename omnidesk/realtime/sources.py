"""Realtime event sources.

A source turns a set of scopes (``org:<id>``, ``user:<id>``) into an async
stream of ``RealtimeEvent``. Sources report connectivity through the
``on_status`` callback and never surface transport errors to the consumer.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any, Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from omnidesk.config import settings
from omnidesk.realtime.events import RealtimeEvent

logger = logging.getLogger(__name__)

StatusCallback = Callable[[bool], None]


def decode_event(channel: str, data: Any) -> RealtimeEvent | None:
    """Parse one published message; malformed data is logged and dropped."""
    try:
        raw = json.loads(data) if isinstance(data, (str, bytes)) else data
        event = RealtimeEvent.model_validate(raw)
    except (ValueError, TypeError, ValidationError) as exc:
        logger.warning("realtime_event_malformed channel=%s error=%s", channel, exc)
        return None
    return event.model_copy(update={"channel": channel})


def _notify(on_status: StatusCallback | None, connected: bool) -> None:
    if on_status is not None:
        on_status(connected)


class EventSource(Protocol):
    def stream(
        self, scopes: Sequence[str], on_status: StatusCallback | None = None
    ) -> AsyncIterator[RealtimeEvent]: ...

    async def close(self) -> None: ...


class InMemoryEventSource:
    """Process-local source with a publish API, for embedding and tests."""

    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue]] = {}
        self._closed = False

    def subscriber_count(self, scope: str) -> int:
        return len(self._queues.get(scope, []))

    def publish(self, scope: str, event: RealtimeEvent | dict[str, Any]) -> int:
        """Deliver to every live stream subscribed to ``scope``; returns the receiver count."""
        data = event.model_dump(mode="json") if isinstance(event, RealtimeEvent) else event
        queues = list(self._queues.get(scope, []))
        for queue in queues:
            queue.put_nowait((scope, data))
        return len(queues)

    async def stream(
        self, scopes: Sequence[str], on_status: StatusCallback | None = None
    ) -> AsyncIterator[RealtimeEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        for scope in scopes:
            self._queues.setdefault(scope, []).append(queue)
        _notify(on_status, True)
        try:
            while not self._closed:
                item = await queue.get()
                if item is None:
                    break
                scope, data = item
                event = decode_event(scope, data)
                if event is not None:
                    yield event
        finally:
            for scope in scopes:
                queues = self._queues.get(scope, [])
                if queue in queues:
                    queues.remove(queue)
                if not queues:
                    self._queues.pop(scope, None)
            _notify(on_status, False)

    async def close(self) -> None:
        self._closed = True
        for queues in self._queues.values():
            for queue in queues:
                queue.put_nowait(None)


def _default_redis_client(url: str) -> Any:
    return aioredis.from_url(url, decode_responses=True)


class RedisEventSource:
    """Redis pub/sub source.

    Each scope maps to the channel ``{prefix}{scope}``. A dropped connection
    is retried with exponential backoff starting at ``retry_initial_seconds``
    and capped at ``retry_max_seconds``; the consumer only sees status flips.
    """

    def __init__(
        self,
        url: str = settings.redis_url,
        *,
        prefix: str = settings.realtime_channel_prefix,
        retry_initial_seconds: float = settings.realtime_retry_initial_seconds,
        retry_max_seconds: float = settings.realtime_retry_max_seconds,
        client_factory: Callable[[str], Any] = _default_redis_client,
        poll_timeout_seconds: float = 1.0,
    ) -> None:
        self.url = url
        self.prefix = prefix
        self.retry_initial_seconds = retry_initial_seconds
        self.retry_max_seconds = retry_max_seconds
        self.client_factory = client_factory
        self.poll_timeout_seconds = poll_timeout_seconds
        self._running = True

    def channel_name(self, scope: str) -> str:
        return f"{self.prefix}{scope}"

    def _scope_of(self, channel: str) -> str:
        return channel[len(self.prefix) :] if channel.startswith(self.prefix) else channel

    async def stream(
        self, scopes: Sequence[str], on_status: StatusCallback | None = None
    ) -> AsyncIterator[RealtimeEvent]:
        channels = [self.channel_name(scope) for scope in scopes]
        delay = self.retry_initial_seconds
        while self._running:
            client = None
            pubsub = None
            try:
                client = self.client_factory(self.url)
                pubsub = client.pubsub()
                await pubsub.subscribe(*channels)
                logger.info("realtime_redis_subscribed channels=%s", ",".join(channels))
                _notify(on_status, True)
                delay = self.retry_initial_seconds
                while self._running:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=self.poll_timeout_seconds
                    )
                    if not message or message.get("type") != "message":
                        continue
                    event = decode_event(self._scope_of(str(message["channel"])), message["data"])
                    if event is not None:
                        yield event
            except (RedisError, OSError) as exc:
                logger.warning("realtime_redis_error retry_in=%s error=%s", delay, exc)
                _notify(on_status, False)
            finally:
                with contextlib.suppress(RedisError, OSError):
                    if pubsub is not None:
                        await pubsub.aclose()
                    if client is not None:
                        await client.aclose()
            if not self._running:
                break
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.retry_max_seconds)
        _notify(on_status, False)

    async def close(self) -> None:
        self._running = False


class RedisEventPublisher:
    """Publishes events to the channels a ``RedisEventSource`` listens on."""

    def __init__(
        self,
        url: str = settings.redis_url,
        *,
        prefix: str = settings.realtime_channel_prefix,
        client_factory: Callable[[str], Any] = _default_redis_client,
    ) -> None:
        self.prefix = prefix
        self._client = client_factory(url)

    async def publish(self, scope: str, event: RealtimeEvent) -> int:
        channel = f"{self.prefix}{scope}"
        receivers = await self._client.publish(channel, event.model_dump_json(exclude={"channel"}))
        logger.debug("realtime_published channel=%s event=%s receivers=%s", channel, event.event, receivers)
        return receivers

    async def close(self) -> None:
        await self._client.aclose()
