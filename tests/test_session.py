"""Tests for the session container and its lifecycle facade."""

import asyncio

import httpx
import pytest

from omnidesk.container import InboxSession, SessionContainer
from omnidesk.realtime.sources import InMemoryEventSource
from omnidesk.schemas.enums import ChannelType
from omnidesk.services.errors import ApiAuthError
from omnidesk.services.oauth_connect import MemoryHandshakeStateStore
from omnidesk.services.token_store import CookieMirror, MemoryTokenStorage

LOGIN_BODY = {
    "success": True,
    "data": {
        "accessToken": "tok-1",
        "user": {"id": "u1", "email": "agent@example.com", "firstName": "Ada"},
        "org": {"id": "o1", "name": "Acme", "role": "AGENT"},
    },
}


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def session(fake_api):
    container = SessionContainer()
    container.token_storage.override(MemoryTokenStorage())
    container.cookie.override(CookieMirror(app_url="http://localhost:3000", secure=False))
    container.api_transport.override(httpx.MockTransport(fake_api.handler))
    container.event_source.override(InMemoryEventSource())
    container.oauth_state_store.override(MemoryHandshakeStateStore())
    return InboxSession(container)


def test_login_scopes_services_and_subscribes(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)

    async def scenario():
        payload = await session.login("agent@example.com", "secret")
        await _settle()
        counts = (
            session.bridge.source.subscriber_count("org:o1"),
            session.bridge.source.subscriber_count("user:u1"),
        )
        await session.close()
        return payload, counts

    payload, counts = asyncio.run(scenario())

    assert payload.user.full_name == "Ada"
    assert counts == (1, 1)
    assert fake_api.calls[0].body == {"email": "agent@example.com", "password": "secret"}
    assert session.tokens.get_token() is None
    assert session.organization_id is None


def test_started_session_wires_organization_services(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)

    async def scenario():
        await session.login("agent@example.com", "secret")
        snapshot = {
            "token": session.tokens.get_token(),
            "cookie": session.tokens.cookie.value,
            "conversations_org": session.conversations.organization_id,
            "channels_org": session.channels.organization_id,
            "bridge_jobs": session.bridge.ai_replies is session.ai_replies,
            "oauth_label": session.oauth_controller(ChannelType.facebook).channel_type,
        }
        await session.close()
        return snapshot

    snapshot = asyncio.run(scenario())

    assert snapshot == {
        "token": "tok-1",
        "cookie": "tok-1",
        "conversations_org": "o1",
        "channels_org": "o1",
        "bridge_jobs": True,
        "oauth_label": ChannelType.facebook,
    }


def test_clearing_token_tears_down_realtime(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)

    async def scenario():
        await session.login("agent@example.com", "secret")
        await _settle()
        session.inbox.sync_unread_from_conversations([{"id": "c1", "unreadCount": 2}])
        session.tokens.clear()
        await _settle()
        result = (session.bridge.is_running, session.bridge.source.subscriber_count("org:o1"))
        await session.close()
        return result

    running, subscribers = asyncio.run(scenario())

    assert running is False
    assert subscribers == 0
    assert session.inbox.state.unread_count == 0


def test_failed_refresh_expires_session(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)
    fake_api.add("GET", "/orgs/o1/conversations", (401, {"error": {"code": "token_expired", "message": "Expired"}}))
    fake_api.add("POST", "/auth/refresh", (401, {"message": "Refresh token revoked"}))

    async def scenario():
        await session.login("agent@example.com", "secret")
        await _settle()
        with pytest.raises(ApiAuthError):
            await session.conversations.list_conversations()
        await _settle()
        result = (session.auth.payload, session.bridge.is_running)
        await session.close()
        return result

    payload, running = asyncio.run(scenario())

    assert payload is None
    assert running is False


def test_switch_organization_resets_local_state(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)

    async def scenario():
        await session.login("agent@example.com", "secret")
        await _settle()
        session.cache.set(("channels", "o1"), ["stale"], 60)
        session.inbox.set_ai_suggestion("c1", "draft")
        session.switch_organization("o2")
        await _settle()
        result = {
            "org": session.conversations.organization_id,
            "old_subscribers": session.bridge.source.subscriber_count("org:o1"),
            "new_subscribers": session.bridge.source.subscriber_count("org:o2"),
            "cached": session.cache.get(("channels", "o1")),
            "suggestion": session.inbox.state.ai_suggestion("c1"),
        }
        await session.close()
        return result

    assert asyncio.run(scenario()) == {
        "org": "o2",
        "old_subscribers": 0,
        "new_subscribers": 1,
        "cached": None,
        "suggestion": None,
    }


def test_logout_ends_session_even_when_server_call_fails(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)
    fake_api.add("POST", "/auth/logout", (500, {"message": "boom"}))

    async def scenario():
        await session.login("agent@example.com", "secret")
        await session.logout()

    asyncio.run(scenario())

    assert session.tokens.get_token() is None
    assert session.auth.payload is None
    assert session.is_active is False


def test_start_requires_organization(session):
    with pytest.raises(ValueError):
        session.start("")


def test_oauth_controller_requires_started_session(session):
    with pytest.raises(RuntimeError):
        session.oauth_controller(ChannelType.instagram)


def test_login_again_after_logout(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)
    fake_api.add("POST", "/auth/logout", {"success": True})

    async def scenario():
        await session.login("agent@example.com", "secret")
        await _settle()
        await session.logout()
        await _settle()
        after_logout = (session.tokens.get_token(), session.bridge.source.subscriber_count("org:o1"))
        await session.login("agent@example.com", "secret")
        await _settle()
        after_login = (session.tokens.get_token(), session.bridge.source.subscriber_count("org:o1"))
        await session.close()
        return after_logout, after_login

    after_logout, after_login = asyncio.run(scenario())

    assert after_logout == (None, 0)
    assert after_login == ("tok-1", 1)
    assert len(fake_api.calls_to("POST", "/auth/login")) == 2


def test_closed_session_rejects_reuse(fake_api, session):
    fake_api.add("POST", "/auth/login", LOGIN_BODY)

    async def scenario():
        await session.close()
        await session.close()
        with pytest.raises(RuntimeError):
            await session.login("agent@example.com", "secret")

    asyncio.run(scenario())

    assert fake_api.calls_to("POST", "/auth/login") == []
