"""Realtime event bridge.

Subscribes to the organization (and optionally user) scope of an event
source and folds every event into the inbox store, the notification store
and the query cache. Events may arrive duplicated or out of order; the
bridge does no buffering and relies on the inbox store's idempotent merges.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from omnidesk.config import settings
from omnidesk.realtime.events import (
    AiSuggestionPayload,
    ConversationEventPayload,
    ConversationUpdatePayload,
    EventType,
    MessageStatusPayload,
    NewMessagePayload,
    NotificationPayload,
    RealtimeEvent,
    TypingPayload,
    UnreadUpdatePayload,
    organization_scope,
    user_scope,
)
from omnidesk.realtime.sources import EventSource
from omnidesk.schemas.enums import ConversationStatus
from omnidesk.services.ai_reply import AiReplyOrchestrator
from omnidesk.services.inbox_store import InboxStore
from omnidesk.services.notifications import ClientNotification, NotificationStore
from omnidesk.services.query_cache import (
    QueryCache,
    conversations_key,
    invalidate_channels,
    invalidate_conversation_collections,
    messages_key,
)

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = frozenset({ConversationStatus.closed, ConversationStatus.resolved})


class ConnectionStatus(enum.Enum):
    connected = "connected"
    disconnected = "disconnected"


StatusListener = Callable[[ConnectionStatus], None]
InboundMessageHook = Callable[[NewMessagePayload], None]


def _handle_task_exception(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("realtime_bridge_task_error error=%s", exc, exc_info=exc)


class RealtimeBridge:
    def __init__(
        self,
        source: EventSource,
        inbox: InboxStore,
        notifications: NotificationStore,
        cache: QueryCache,
        *,
        typing_expiry_seconds: float = settings.typing_expiry_seconds,
        on_inbound_message: InboundMessageHook | None = None,
    ) -> None:
        self.source = source
        self.inbox = inbox
        self.notifications = notifications
        self.cache = cache
        self.typing_expiry_seconds = typing_expiry_seconds
        self.on_inbound_message = on_inbound_message
        self.ai_replies: AiReplyOrchestrator | None = None
        self.status = ConnectionStatus.disconnected
        self._scope: tuple[str, str | None] | None = None
        self._task: asyncio.Task | None = None
        self._typing_timers: dict[tuple[str, str], asyncio.TimerHandle] = {}
        self._status_listeners: list[StatusListener] = []

    @property
    def organization_id(self) -> str | None:
        return self._scope[0] if self._scope else None

    @property
    def user_id(self) -> str | None:
        return self._scope[1] if self._scope else None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info("realtime_bridge_status status=%s org_id=%s", status.value, self.organization_id)
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as exc:
                logger.warning("realtime_status_listener_error error=%s", exc)

    # Lifecycle

    def start(self, organization_id: str | None, user_id: str | None = None) -> None:
        """Subscribe to the given scope. Must be called with a running event loop.

        Re-calling with the same scope is a no-op; a different organization or
        user tears the current subscription down first. Subscribing happens in
        the background; watch ``status`` for the outcome.
        """
        if not organization_id:
            self._teardown()
            return
        scope = (organization_id, user_id or None)
        if scope == self._scope and self.is_running:
            return
        self._teardown()
        self._scope = scope
        task = asyncio.get_running_loop().create_task(self._run(organization_id, user_id or None))
        task.add_done_callback(_handle_task_exception)
        self._task = task
        logger.info("realtime_bridge_started org_id=%s user_id=%s", organization_id, user_id)

    async def stop(self) -> None:
        task = self._task
        self._teardown()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _teardown(self) -> None:
        for timer in self._typing_timers.values():
            timer.cancel()
        self._typing_timers.clear()
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._scope is not None:
            logger.info("realtime_bridge_stopped org_id=%s", self._scope[0])
        self._scope = None
        self._set_status(ConnectionStatus.disconnected)

    async def _run(self, organization_id: str, user_id: str | None) -> None:
        scopes = [organization_scope(organization_id)]
        if user_id:
            scopes.append(user_scope(user_id))
        current = asyncio.current_task()

        def on_status(connected: bool) -> None:
            # a cancelled subscription must not overwrite its replacement's status
            if self._task is current:
                self._set_status(ConnectionStatus.connected if connected else ConnectionStatus.disconnected)

        async for event in self.source.stream(scopes, on_status=on_status):
            self.handle_event(organization_id, event)

    # Event handling

    def handle_event(self, organization_id: str, event: RealtimeEvent) -> None:
        """Apply one event. Malformed payloads and handler errors are logged, never raised."""
        if event.channel and event.channel.startswith("user:") and event.event != EventType.NOTIFICATION:
            return
        handler = self._handlers.get(event.event)
        if handler is None:
            return
        try:
            handler(self, organization_id, event.payload)
        except ValidationError as exc:
            logger.warning("realtime_event_malformed event=%s error=%s", event.event, exc)
        except Exception as exc:
            logger.error("realtime_event_handler_error event=%s error=%s", event.event, exc, exc_info=exc)

    def _on_new_message(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = NewMessagePayload.model_validate(payload)
        conversation_id = data.conversation_id
        if conversation_id and data.conversation is not None and data.conversation.unread_count is not None:
            self.inbox.apply_unread_update(conversation_id, data.conversation.unread_count)

        if data.is_inbound:
            if self.on_inbound_message is not None:
                self.on_inbound_message(data)
        elif conversation_id:
            self.inbox.clear_ai_suggestion(conversation_id)
            if data.is_ai and self.ai_replies is not None:
                self.ai_replies.mark_delivered(conversation_id)

        invalidate_conversation_collections(self.cache, organization_id, conversation_id)

    def _on_message_status(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = MessageStatusPayload.model_validate(payload)
        self.cache.invalidate(messages_key(organization_id))
        if data.message_id:
            self.cache.invalidate(conversations_key(organization_id))

    def _on_conversation_update(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = ConversationUpdatePayload.model_validate(payload)
        conversation_id = data.conversation_id
        if conversation_id and data.updates is not None:
            if data.updates.unread_count is not None:
                self.inbox.apply_unread_update(conversation_id, data.updates.unread_count)
            if data.updates.status in _CLOSED_STATUSES:
                self._clear_typing(conversation_id)
        invalidate_conversation_collections(self.cache, organization_id, conversation_id)

    def _on_new_conversation(self, organization_id: str, payload: dict[str, Any]) -> None:
        self.cache.invalidate(conversations_key(organization_id))

    def _on_ai_processing(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = ConversationEventPayload.model_validate(payload)
        if data.conversation_id:
            invalidate_conversation_collections(self.cache, organization_id, data.conversation_id)

    def _on_ai_result(self, organization_id: str, payload: dict[str, Any], *, failed: bool) -> None:
        data = ConversationEventPayload.model_validate(payload)
        if not data.conversation_id:
            return
        self.inbox.clear_ai_suggestion(data.conversation_id)
        invalidate_conversation_collections(self.cache, organization_id, data.conversation_id)
        if self.ai_replies is not None:
            if failed:
                self.ai_replies.mark_failed(data.conversation_id, data.message or "")
            else:
                self.ai_replies.mark_delivered(data.conversation_id)

    def _on_ai_reply(self, organization_id: str, payload: dict[str, Any]) -> None:
        self._on_ai_result(organization_id, payload, failed=False)

    def _on_ai_error(self, organization_id: str, payload: dict[str, Any]) -> None:
        self._on_ai_result(organization_id, payload, failed=True)

    def _on_ai_suggestion(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = AiSuggestionPayload.model_validate(payload)
        if data.conversation_id and data.suggestion:
            self.inbox.set_ai_suggestion(data.conversation_id, data.suggestion)

    def _on_typing(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = TypingPayload.model_validate(payload)
        if not data.conversation_id or not data.user_id:
            return
        key = (data.conversation_id, data.user_id)
        timer = self._typing_timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self.inbox.set_typing(data.conversation_id, data.user_id, data.typing)
        if data.typing:
            loop = asyncio.get_running_loop()
            self._typing_timers[key] = loop.call_later(self.typing_expiry_seconds, self._expire_typing, key)

    def _expire_typing(self, key: tuple[str, str]) -> None:
        self._typing_timers.pop(key, None)
        self.inbox.set_typing(key[0], key[1], False)

    def _clear_typing(self, conversation_id: str) -> None:
        for key in [key for key in self._typing_timers if key[0] == conversation_id]:
            self._typing_timers.pop(key).cancel()
        self.inbox.clear_typing_conversation(conversation_id)

    def _on_unread_update(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = UnreadUpdatePayload.model_validate(payload)
        if data.conversation_id and data.count is not None:
            self.inbox.apply_unread_update(data.conversation_id, data.count)
            self.cache.invalidate(conversations_key(organization_id))

    def _on_notification(self, organization_id: str, payload: dict[str, Any]) -> None:
        data = NotificationPayload.model_validate(payload)
        notification = data.notification
        if notification is None:
            return
        self.notifications.add(
            ClientNotification(
                id=notification.id,
                title=notification.title,
                body=notification.body,
                is_read=notification.is_read,
                created_at=notification.created_at,
            )
        )

    def _on_channel_sync(self, organization_id: str, payload: dict[str, Any]) -> None:
        invalidate_channels(self.cache, organization_id)

    _handlers: dict[EventType, Callable[[RealtimeBridge, str, dict[str, Any]], None]] = {
        EventType.NEW_MESSAGE: _on_new_message,
        EventType.MESSAGE_STATUS: _on_message_status,
        EventType.CONVERSATION_UPDATE: _on_conversation_update,
        EventType.NEW_CONVERSATION: _on_new_conversation,
        EventType.AI_PROCESSING: _on_ai_processing,
        EventType.AI_REPLY: _on_ai_reply,
        EventType.AI_ERROR: _on_ai_error,
        EventType.AI_SUGGESTION: _on_ai_suggestion,
        EventType.TYPING: _on_typing,
        EventType.UNREAD_UPDATE: _on_unread_update,
        EventType.NOTIFICATION: _on_notification,
        EventType.CHANNEL_SYNC: _on_channel_sync,
    }
