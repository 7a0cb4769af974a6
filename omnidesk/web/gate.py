"""Route gating for the inbox web app.

Page loads are gated on the presence of the ``accessToken`` cookie only; the
cookie is never validated here. The API stays the source of truth for
authorization.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import RedirectResponse

from omnidesk.services.token_store import ACCESS_TOKEN_COOKIE

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)


class RouteGateMiddleware:
    """
    Redirects page requests based on the session cookie.

    - Protected sections without the cookie go to ``/login?next=<path>``.
    - Auth pages with the cookie go to ``/dashboard``.
    """

    PROTECTED_PREFIXES: ClassVar[tuple[str, ...]] = (
        "/dashboard",
        "/inbox",
        "/contacts",
        "/channels",
        "/ai-settings",
        "/analytics",
        "/team",
        "/settings",
    )

    AUTH_PATHS: ClassVar[set[str]] = {
        "/login",
        "/register",
        "/forgot-password",
        "/verify-email",
    }

    LOGIN_PATH = "/login"
    HOME_PATH = "/dashboard"

    def __init__(self, app: ASGIApp):
        self.app = app

    def _is_protected(self, path: str) -> bool:
        return any(path == prefix or path.startswith(f"{prefix}/") for prefix in self.PROTECTED_PREFIXES)

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        path = request.url.path
        has_session = bool(request.cookies.get(ACCESS_TOKEN_COOKIE))

        if self._is_protected(path) and not has_session:
            logger.debug("route_gate_redirect_login path=%s", path)
            response = RedirectResponse(f"{self.LOGIN_PATH}?{urlencode({'next': path})}")
            await response(scope, receive, send)
            return

        if path in self.AUTH_PATHS and has_session:
            response = RedirectResponse(self.HOME_PATH)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
