"""OAuth connect handshake for redirect-based channels (Facebook, Instagram).

Flow per channel type::

    IDLE -> AWAITING_REDIRECT -> (provider redirect) -> CALLBACK_RECEIVED
         -> VALIDATING_STATE -> COMPLETE | REJECTED | FAILED

A nonce is minted before the redirect and sent as the OAuth ``state``. On
the callback, a non-empty ``state`` that differs from the stored nonce rejects
the handshake without any network call. When no nonce is stored (storage was
cleared between redirect and callback) the check is skipped and the exchange
proceeds; the provider code is still bound to the original redirect URI.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import secrets
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from omnidesk.schemas.channels import CompleteConnectRequest, CompleteConnectResult
from omnidesk.schemas.enums import ChannelType
from omnidesk.services.channels import ChannelRegistry
from omnidesk.services.errors import ApiError, OAuthHandshakeError, OAuthStateMismatchError

logger = logging.getLogger(__name__)


class HandshakeState(enum.Enum):
    idle = "idle"
    awaiting_redirect = "awaiting_redirect"
    callback_received = "callback_received"
    validating_state = "validating_state"
    complete = "complete"
    rejected = "rejected"
    failed = "failed"


@dataclass(frozen=True)
class OAuthHandshakeState:
    nonce: str
    redirect_uri: str
    channel_type: ChannelType


@dataclass(frozen=True)
class CallbackOutcome:
    state: HandshakeState
    message: str
    result: CompleteConnectResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.state == HandshakeState.complete


def storage_key(channel_type: ChannelType) -> str:
    return f"omnidesk:channels:{channel_type.value.lower()}:oauth-state"


class HandshakeStateStore(Protocol):
    def load(self, channel_type: ChannelType) -> OAuthHandshakeState | None: ...

    def save(self, state: OAuthHandshakeState) -> None: ...

    def discard(self, channel_type: ChannelType) -> None: ...


class MemoryHandshakeStateStore:
    def __init__(self) -> None:
        self._states: dict[str, OAuthHandshakeState] = {}

    def load(self, channel_type: ChannelType) -> OAuthHandshakeState | None:
        return self._states.get(storage_key(channel_type))

    def save(self, state: OAuthHandshakeState) -> None:
        self._states[storage_key(state.channel_type)] = state

    def discard(self, channel_type: ChannelType) -> None:
        self._states.pop(storage_key(channel_type), None)


class FileHandshakeStateStore:
    """Keeps pending handshakes in a JSON file so a callback handled by a new process still validates."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def _read(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("oauth_state_read_failed path=%s error=%s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def load(self, channel_type: ChannelType) -> OAuthHandshakeState | None:
        raw = self._read().get(storage_key(channel_type))
        if not isinstance(raw, dict) or not raw.get("nonce"):
            return None
        return OAuthHandshakeState(
            nonce=str(raw["nonce"]),
            redirect_uri=str(raw.get("redirect_uri") or ""),
            channel_type=channel_type,
        )

    def save(self, state: OAuthHandshakeState) -> None:
        data = self._read()
        entry = asdict(state)
        entry["channel_type"] = state.channel_type.value
        data[storage_key(state.channel_type)] = entry
        self._write(data)

    def discard(self, channel_type: ChannelType) -> None:
        data = self._read()
        if data.pop(storage_key(channel_type), None) is not None:
            self._write(data)


def _default_nonce() -> str:
    return secrets.token_urlsafe(24)


class OAuthConnectController:
    """Drives one channel type's handshake for the lifetime of a connect screen.

    A controller instance handles a given set of callback query parameters at
    most once, so repeated invocations (re-renders, retried handlers) never
    exchange the same authorization code twice.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        channel_type: ChannelType,
        state_store: HandshakeStateStore | None = None,
        *,
        nonce_factory: Callable[[], str] = _default_nonce,
    ) -> None:
        self.registry = registry
        self.channel_type = channel_type
        self.state_store = state_store or MemoryHandshakeStateStore()
        self.nonce_factory = nonce_factory
        self.state = HandshakeState.idle
        self._handled: set[tuple[str, str | None]] = set()

    @property
    def label(self) -> str:
        return self.channel_type.value.title()

    async def request_authorization_url(self, redirect_uri: str) -> str:
        nonce = self.nonce_factory()
        self.state_store.save(OAuthHandshakeState(nonce=nonce, redirect_uri=redirect_uri, channel_type=self.channel_type))
        try:
            result = await self.registry.request_connect_url(self.channel_type, redirect_uri, nonce)
        except ApiError:
            self.state_store.discard(self.channel_type)
            self.state = HandshakeState.idle
            raise
        self.state = HandshakeState.awaiting_redirect
        logger.info(
            "oauth_connect_redirect org_id=%s channel_type=%s",
            self.registry.organization_id,
            self.channel_type.value,
        )
        return result.auth_url

    async def handle_callback(
        self, query: Mapping[str, str | None], redirect_uri: str | None = None
    ) -> CallbackOutcome | None:
        """Complete the handshake from the redirect query.

        Returns None when there is nothing to do: no ``code`` in the query, or
        these parameters were already handled by this controller.
        """
        code = (query.get("code") or "").strip()
        returned_state = (query.get("state") or "").strip() or None
        if not code:
            return None

        key = (code, returned_state)
        if key in self._handled:
            logger.debug("oauth_callback_duplicate channel_type=%s", self.channel_type.value)
            return None
        self._handled.add(key)
        self.state = HandshakeState.callback_received

        try:
            stored = self.state_store.load(self.channel_type)
            self.state = HandshakeState.validating_state
            if stored and returned_state and stored.nonce != returned_state:
                self.state = HandshakeState.rejected
                logger.warning(
                    "oauth_callback_state_mismatch org_id=%s channel_type=%s",
                    self.registry.organization_id,
                    self.channel_type.value,
                )
                return CallbackOutcome(
                    state=self.state,
                    message=f"{self.label} OAuth state mismatch. Restart the connect flow.",
                    error=OAuthStateMismatchError(f"{self.label} OAuth state mismatch"),
                )
            if stored is None:
                logger.info("oauth_callback_without_nonce channel_type=%s", self.channel_type.value)

            resolved_redirect = redirect_uri or (stored.redirect_uri if stored else None)
            if not resolved_redirect:
                self.state = HandshakeState.failed
                return CallbackOutcome(
                    state=self.state,
                    message=f"{self.label} connect failed: redirect URI unknown",
                    error=OAuthHandshakeError("redirect URI unknown"),
                )

            try:
                result = await self.registry.complete_connect(
                    self.channel_type,
                    CompleteConnectRequest(code=code, redirect_uri=resolved_redirect, state=returned_state),
                )
            except ApiError as exc:
                self.state = HandshakeState.failed
                logger.warning(
                    "oauth_callback_exchange_failed channel_type=%s status=%s error=%s",
                    self.channel_type.value,
                    exc.status_code,
                    exc.detail,
                )
                error = OAuthHandshakeError(exc.detail)
                error.__cause__ = exc
                return CallbackOutcome(state=self.state, message=f"{self.label} connect failed: {exc.detail}", error=error)
            except ValidationError as exc:
                self.state = HandshakeState.failed
                logger.warning(
                    "oauth_callback_response_malformed channel_type=%s error=%s",
                    self.channel_type.value,
                    exc,
                )
                error = OAuthHandshakeError("unexpected response from server")
                error.__cause__ = exc
                return CallbackOutcome(
                    state=self.state,
                    message=f"{self.label} connect failed: unexpected response from server",
                    error=error,
                )
        finally:
            self.state_store.discard(self.channel_type)

        self.state = HandshakeState.complete
        verb = "connected" if result.is_new else "refreshed"
        logger.info(
            "oauth_callback_complete org_id=%s channel_type=%s channel_id=%s is_new=%s",
            self.registry.organization_id,
            self.channel_type.value,
            result.channel.id,
            result.is_new,
        )
        return CallbackOutcome(state=self.state, message=f"{self.label} channel {verb}.", result=result)
