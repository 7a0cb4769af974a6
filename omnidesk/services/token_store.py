"""Access token store with durable storage and a route-gating cookie mirror."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, urlsplit

import httpx

from omnidesk.config import settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "omnidesk_access_token"
ACCESS_TOKEN_COOKIE = "accessToken"

TokenListener = Callable[[str | None], None]


class TokenStorage(Protocol):
    def load(self) -> str | None: ...

    def save(self, token: str | None) -> None: ...


class MemoryTokenStorage:
    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def load(self) -> str | None:
        return self._token

    def save(self, token: str | None) -> None:
        self._token = token


class FileTokenStorage:
    """JSON file storage so the credential survives process restarts."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def _read(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("token_storage_read_failed path=%s error=%s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> str | None:
        token = self._read().get(ACCESS_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def save(self, token: str | None) -> None:
        data = self._read()
        if token:
            data[ACCESS_TOKEN_KEY] = token
        else:
            data.pop(ACCESS_TOKEN_KEY, None)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, self.path)


class CookieMirror:
    """Mirrors the access token into the `accessToken` cookie used for route gating.

    The cookie is never sent as the API credential; it exists so the edge can
    redirect unauthenticated page loads without calling the API.
    """

    def __init__(
        self,
        *,
        app_url: str = settings.app_url,
        max_age_seconds: int = settings.cookie_max_age_seconds,
        secure: bool | None = None,
        jar: httpx.Cookies | None = None,
    ) -> None:
        self.domain = urlsplit(app_url).hostname or ""
        self.max_age_seconds = max_age_seconds
        self.secure = settings.cookie_secure if secure is None else secure
        self.jar = jar if jar is not None else httpx.Cookies()
        self.header: str | None = None

    def _build_header(self, value: str, max_age: int) -> str:
        secure_suffix = "; Secure" if self.secure else ""
        return f"{ACCESS_TOKEN_COOKIE}={value}; Path=/; Max-Age={max_age}; SameSite=Lax{secure_suffix}"

    def write(self, token: str | None) -> str:
        if token:
            self.header = self._build_header(quote(token, safe=""), self.max_age_seconds)
            self.jar.set(ACCESS_TOKEN_COOKIE, token, domain=self.domain, path="/")
        else:
            self.header = self._build_header("", 0)
            if self.value is not None:
                self.jar.delete(ACCESS_TOKEN_COOKIE, domain=self.domain, path="/")
        return self.header

    @property
    def value(self) -> str | None:
        return self.jar.get(ACCESS_TOKEN_COOKIE, domain=self.domain, path="/")


class TokenStore:
    """Holds the current short-lived access credential.

    Every change goes to durable storage and the cookie mirror, then listeners
    are notified. Writing the current value again is a no-op. Reads never
    touch storage after construction.
    """

    def __init__(self, storage: TokenStorage | None = None, cookie: CookieMirror | None = None) -> None:
        self._storage = storage or MemoryTokenStorage()
        self._cookie = cookie or CookieMirror()
        self._listeners: list[TokenListener] = []
        self._token = self._storage.load()
        if self._token:
            self._cookie.write(self._token)

    @property
    def cookie(self) -> CookieMirror:
        return self._cookie

    def get_token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        token = token or None
        if token == self._token:
            return
        self._token = token
        self._storage.save(token)
        self._cookie.write(token)
        logger.debug("token_store_write present=%s", token is not None)
        for listener in list(self._listeners):
            try:
                listener(token)
            except Exception as exc:
                logger.warning("token_store_listener_error error=%s", exc)

    def clear(self) -> None:
        self.set_token(None)

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
