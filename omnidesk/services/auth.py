from __future__ import annotations

import logging
from collections.abc import Callable

from omnidesk.schemas.auth import AuthPayload, AuthUser, LoginRequest, RegisterRequest
from omnidesk.services.api_client import ApiClient, unwrap_data
from omnidesk.services.errors import ApiError
from omnidesk.services.token_store import TokenStore

logger = logging.getLogger(__name__)

SessionListener = Callable[[AuthPayload | None], None]


class AuthService:
    """Login, refresh and logout against the external session service.

    Keeps the current ``AuthPayload`` (user, organization, role) next to the
    token so the session can scope realtime subscriptions.
    """

    def __init__(self, api: ApiClient, tokens: TokenStore) -> None:
        self.api = api
        self.tokens = tokens
        self.payload: AuthPayload | None = None
        self._listeners: list[SessionListener] = []

    @property
    def is_authenticated(self) -> bool:
        return bool(self.tokens.get_token()) and self.payload is not None

    @property
    def organization_id(self) -> str | None:
        return self.payload.org.id if self.payload else None

    @property
    def user_id(self) -> str | None:
        return self.payload.user.id if self.payload else None

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_payload(self, payload: AuthPayload | None) -> None:
        self.payload = payload
        self.tokens.set_token(payload.access_token if payload else None)
        for listener in list(self._listeners):
            listener(payload)

    async def login(self, email: str, password: str) -> AuthPayload:
        body = await self.api.post("/auth/login", LoginRequest(email=email, password=password).to_payload())
        payload = AuthPayload.model_validate(unwrap_data(body))
        self._set_payload(payload)
        logger.info("auth_login user_id=%s org_id=%s", payload.user.id, payload.org.id)
        return payload

    async def register(self, request: RegisterRequest) -> AuthPayload:
        body = await self.api.post("/auth/register", request.to_payload())
        payload = AuthPayload.model_validate(unwrap_data(body))
        self._set_payload(payload)
        return payload

    async def refresh_session(self) -> AuthPayload | None:
        try:
            body = await self.api.post("/auth/refresh", {}, suppress_error_report=True)
        except ApiError as exc:
            logger.info("auth_refresh_failed status=%s", exc.status_code)
            self.clear_session()
            return None
        payload = AuthPayload.model_validate(unwrap_data(body))
        self._set_payload(payload)
        return payload

    async def logout(self) -> None:
        try:
            await self.api.post("/auth/logout", {}, suppress_error_report=True)
        finally:
            self.clear_session()
            logger.info("auth_logout")

    async def fetch_me(self) -> AuthUser:
        user = AuthUser.model_validate(await self.api.get_data("/users/me"))
        if self.payload is not None:
            self.payload = self.payload.model_copy(update={"user": user})
        return user

    def clear_session(self) -> None:
        if self.payload is None and self.tokens.get_token() is None:
            return
        self._set_payload(None)
