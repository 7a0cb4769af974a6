"""API gateway client.

All outbound REST calls go through ``ApiClient.request``. The client attaches
the bearer credential, and on a 401 performs a single-flight refresh shared by
every concurrent caller, then replays the failed request exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from omnidesk.config import settings
from omnidesk.services.errors import ApiError, error_from_response, error_from_transport
from omnidesk.services.token_store import TokenStore

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh"
AUTH_PATH_MARKER = "/auth/"

ErrorReporter = Callable[[str], None]
SessionExpiredListener = Callable[[ApiError], None]


def unwrap_data(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class ApiClient:
    def __init__(
        self,
        token_store: TokenStore,
        *,
        base_url: str = settings.api_base_url,
        timeout_seconds: float = settings.request_timeout_seconds,
        transport: httpx.AsyncBaseTransport | None = None,
        on_error: ErrorReporter | None = None,
        on_session_expired: SessionExpiredListener | None = None,
    ) -> None:
        self.tokens = token_store
        self.on_error = on_error
        self.on_session_expired = on_session_expired
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds, transport=transport)
        self._refresh_task: asyncio.Task[str | None] | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return await self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise error_from_transport(exc) from exc

    def _report(self, path: str, error: ApiError, suppress: bool) -> None:
        if suppress or AUTH_PATH_MARKER in path or self.on_error is None:
            return
        try:
            self.on_error(error.detail)
        except Exception as exc:
            logger.warning("api_error_reporter_failed error=%s", exc)

    async def _do_refresh(self) -> str | None:
        try:
            response = await self._client.post(REFRESH_PATH, json={})
            if response.is_error:
                logger.info("api_token_refresh_rejected status=%s", response.status_code)
                new_token = None
            else:
                data = unwrap_data(response.json()) or {}
                new_token = data.get("accessToken") if isinstance(data, dict) else None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("api_token_refresh_failed error=%s", exc)
            new_token = None
        finally:
            self._refresh_task = None
        self.tokens.set_token(new_token)
        return new_token

    async def refresh_access_token(self) -> str | None:
        """Refresh the credential; concurrent callers share one in-flight call."""
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        # shield: one cancelled waiter must not cancel the refresh for the rest
        return await asyncio.shield(self._refresh_task)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        suppress_error_report: bool = False,
    ) -> Any:
        """Send a request and return the decoded JSON body (or None when empty).

        Raises an ``ApiError`` subclass for any non-2xx outcome.
        """
        if params:
            params = {key: value for key, value in params.items() if value is not None}
        response = await self._send(method, path, json=json, params=params, token=self.tokens.get_token())

        if response.status_code == 401 and REFRESH_PATH not in path:
            original_error = error_from_response(response)
            new_token = await self.refresh_access_token()
            if not new_token:
                logger.info("api_session_expired path=%s", path)
                if self.on_session_expired is not None:
                    self.on_session_expired(original_error)
                raise original_error
            response = await self._send(method, path, json=json, params=params, token=new_token)

        if response.is_error:
            error = error_from_response(response)
            self._report(path, error, suppress_error_report)
            raise error

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                code="invalid_response", detail="Invalid response payload", status_code=response.status_code
            ) from exc

    async def get(self, path: str, *, params: dict[str, Any] | None = None, **kwargs) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def get_data(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return unwrap_data(await self.get(path, params=params))

    async def get_list(self, path: str, *, params: dict[str, Any] | None = None) -> tuple[list[Any], dict[str, Any]]:
        payload = await self.get(path, params=params) or {}
        return list(payload.get("data") or []), dict(payload.get("meta") or {})
