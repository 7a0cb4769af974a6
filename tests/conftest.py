import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from omnidesk.services.api_client import ApiClient
from omnidesk.services.inbox_store import InboxStore
from omnidesk.services.notifications import NotificationStore
from omnidesk.services.query_cache import QueryCache
from omnidesk.services.token_store import CookieMirror, MemoryTokenStorage, TokenStore

API_BASE_URL = "http://api.test/api/v1"
API_PREFIX = "/api/v1"


@dataclass
class RecordedCall:
    method: str
    path: str
    params: dict[str, str]
    body: Any
    authorization: str | None


@dataclass
class FakeApi:
    """Route table for ``httpx.MockTransport``.

    A route response is either a JSON body (served with 200), a
    ``(status, body)`` tuple, or a callable taking the request and returning
    one of those or an ``httpx.Response``. Callables may be async.
    """

    routes: dict[tuple[str, str], Any] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)

    def add(self, method: str, path: str, response: Any) -> None:
        self.routes[(method.upper(), path)] = response

    def calls_to(self, method: str, path: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.method == method.upper() and call.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix(API_PREFIX)
        body = json.loads(request.content) if request.content else None
        self.calls.append(
            RecordedCall(
                method=request.method,
                path=path,
                params=dict(request.url.params),
                body=body,
                authorization=request.headers.get("Authorization"),
            )
        )
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"success": False, "error": {"code": "not_found", "message": "No route"}})
        result = route(request) if callable(route) else route
        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, tuple):
            status_code, payload = result
            return httpx.Response(status_code, json=payload)
        return httpx.Response(200, json=result)


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def token_store():
    return TokenStore(MemoryTokenStorage(), CookieMirror(app_url="http://localhost:3000", secure=False))


@pytest.fixture
def make_api(fake_api, token_store) -> Callable[..., ApiClient]:
    def _make(**kwargs) -> ApiClient:
        return ApiClient(
            token_store,
            base_url=API_BASE_URL,
            transport=httpx.MockTransport(fake_api.handler),
            **kwargs,
        )

    return _make


@pytest.fixture
def api(make_api):
    return make_api()


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def inbox():
    return InboxStore()


@pytest.fixture
def notifications():
    return NotificationStore()
