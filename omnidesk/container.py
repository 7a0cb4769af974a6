"""Dependency injection container for one signed-in inbox session.

Usage:
    from omnidesk.container import InboxSession, SessionContainer

    container = SessionContainer()
    session = InboxSession(container)
    await session.login("agent@example.com", "secret")
    page = await session.conversations.list_conversations()
    await session.logout()

    # In tests
    container = SessionContainer()
    container.api_transport.override(httpx.MockTransport(handler))
    container.event_source.override(InMemoryEventSource())

Process-wide state (token store, API client, caches, stores, realtime
bridge) is provided as Singletons scoped to the container; organization
scoped services are Factories that take ``organization_id`` at call time.
"""

from __future__ import annotations

import logging

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from omnidesk.config import settings
from omnidesk.realtime.bridge import RealtimeBridge
from omnidesk.realtime.sources import RedisEventSource
from omnidesk.schemas.auth import AuthPayload
from omnidesk.schemas.enums import ChannelType
from omnidesk.services.ai_reply import AiReplyOrchestrator
from omnidesk.services.api_client import ApiClient
from omnidesk.services.auth import AuthService
from omnidesk.services.channels import ChannelRegistry
from omnidesk.services.conversations import ConversationService
from omnidesk.services.errors import ApiError
from omnidesk.services.inbox_store import InboxStore
from omnidesk.services.messages import MessageService
from omnidesk.services.notifications import NotificationStore
from omnidesk.services.oauth_connect import FileHandshakeStateStore, OAuthConnectController
from omnidesk.services.query_cache import QueryCache
from omnidesk.services.token_store import CookieMirror, FileTokenStorage, TokenStore

logger = logging.getLogger(__name__)


class SessionContainer(containers.DeclarativeContainer):
    """Object graph for one client session.

    Override ``token_storage``, ``api_transport``, ``event_source`` or
    ``oauth_state_store`` to swap durable storage, HTTP and realtime
    transports.
    """

    # -------------------------------------------------------------------------
    # Credential
    # -------------------------------------------------------------------------

    token_storage = providers.Singleton(FileTokenStorage, settings.token_storage_path)
    cookie = providers.Singleton(CookieMirror)
    token_store = providers.Singleton(TokenStore, storage=token_storage, cookie=cookie)

    # -------------------------------------------------------------------------
    # Transports
    # -------------------------------------------------------------------------

    api_transport = providers.Object(None)
    error_reporter = providers.Object(None)
    api_client = providers.Singleton(
        ApiClient,
        token_store,
        transport=api_transport,
        on_error=error_reporter,
    )
    event_source = providers.Singleton(RedisEventSource)

    # -------------------------------------------------------------------------
    # Client state
    # -------------------------------------------------------------------------

    query_cache = providers.Singleton(QueryCache)
    inbox_store = providers.Singleton(InboxStore)
    notification_store = providers.Singleton(NotificationStore)
    realtime_bridge = providers.Singleton(
        RealtimeBridge,
        source=event_source,
        inbox=inbox_store,
        notifications=notification_store,
        cache=query_cache,
    )
    oauth_state_store = providers.Singleton(FileHandshakeStateStore, settings.oauth_state_storage_path)

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    auth_service = providers.Singleton(AuthService, api=api_client, tokens=token_store)
    channel_registry = providers.Factory(ChannelRegistry, api=api_client, cache=query_cache)
    conversation_service = providers.Factory(
        ConversationService, api=api_client, cache=query_cache, inbox=inbox_store
    )
    message_service = providers.Factory(MessageService, api=api_client, cache=query_cache)
    ai_reply_orchestrator = providers.Factory(AiReplyOrchestrator, api=api_client, cache=query_cache)


class InboxSession:
    """Lifecycle facade over a ``SessionContainer``.

    ``start`` scopes the organization services and the realtime bridge.
    ``logout`` ends the signed-in session and keeps the transports open for
    the next login; ``close`` also disposes of them. Clearing the token
    (logout, or a failed refresh) tears the realtime side down immediately.
    """

    def __init__(self, container: SessionContainer | None = None) -> None:
        self.container = container or SessionContainer()
        self.tokens: TokenStore = self.container.token_store()
        self.api: ApiClient = self.container.api_client()
        self.auth: AuthService = self.container.auth_service()
        self.cache: QueryCache = self.container.query_cache()
        self.inbox: InboxStore = self.container.inbox_store()
        self.notifications: NotificationStore = self.container.notification_store()
        self.bridge: RealtimeBridge = self.container.realtime_bridge()
        self.organization_id: str | None = None
        self.user_id: str | None = None
        self.channels: ChannelRegistry | None = None
        self.conversations: ConversationService | None = None
        self.messages: MessageService | None = None
        self.ai_replies: AiReplyOrchestrator | None = None
        self._closed = False
        self.api.on_session_expired = self._on_session_expired
        self._unsubscribe_tokens = self.tokens.subscribe(self._on_token_change)

    @property
    def is_active(self) -> bool:
        return self.organization_id is not None

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Session is closed")

    def start(self, organization_id: str, user_id: str | None = None) -> None:
        """Scope the session to an organization and subscribe to its events."""
        self._ensure_open()
        if not organization_id:
            raise ValueError("organization_id is required")
        if organization_id != self.organization_id:
            self._reset_local_state()
            self.organization_id = organization_id
            self.channels = self.container.channel_registry(organization_id=organization_id)
            self.conversations = self.container.conversation_service(organization_id=organization_id)
            self.messages = self.container.message_service(organization_id=organization_id)
            self.ai_replies = self.container.ai_reply_orchestrator(organization_id=organization_id)
            logger.info("inbox_session_scoped org_id=%s", organization_id)
        self.bridge.ai_replies = self.ai_replies
        self.user_id = user_id
        self.bridge.start(organization_id, user_id)

    def switch_organization(self, organization_id: str) -> None:
        self.start(organization_id, self.user_id)

    def oauth_controller(self, channel_type: ChannelType) -> OAuthConnectController:
        if self.channels is None:
            raise RuntimeError("Session is not started")
        return OAuthConnectController(self.channels, channel_type, self.container.oauth_state_store())

    async def login(self, email: str, password: str) -> AuthPayload:
        self._ensure_open()
        payload = await self.auth.login(email, password)
        self.start(payload.org.id, payload.user.id)
        return payload

    async def resume(self) -> AuthPayload | None:
        """Restore a session from the refresh cookie; returns None when signed out."""
        self._ensure_open()
        payload = await self.auth.refresh_session()
        if payload is not None:
            self.start(payload.org.id, payload.user.id)
        return payload

    async def logout(self) -> None:
        """End the signed-in session. Transports stay open so ``login`` can run again."""
        try:
            await self.auth.logout()
        except ApiError as exc:
            logger.info("inbox_session_logout_server_error status=%s", exc.status_code)
        await self._end_session()

    async def close(self) -> None:
        """End the session and dispose of the transports; the session cannot be reused."""
        if self._closed:
            return
        await self._end_session()
        self._closed = True
        self._unsubscribe_tokens()
        await self.api.aclose()
        await self.bridge.source.close()
        logger.info("inbox_session_closed")

    async def _end_session(self) -> None:
        await self.bridge.stop()
        self._reset_local_state()
        self.organization_id = None
        self.user_id = None
        self.channels = None
        self.conversations = None
        self.messages = None
        self.ai_replies = None
        self.tokens.clear()
        logger.info("inbox_session_ended")

    def _reset_local_state(self) -> None:
        if self.ai_replies is not None:
            self.ai_replies.reset()
        self.bridge.ai_replies = None
        self.inbox.reset()
        self.notifications.clear()
        self.cache.clear()

    def _on_token_change(self, token: str | None) -> None:
        if token is None and self.bridge.is_running:
            logger.info("inbox_session_token_cleared org_id=%s", self.organization_id)
            self.bridge.start(None)
            self._reset_local_state()

    def _on_session_expired(self, error: ApiError) -> None:
        self.auth.clear_session()
