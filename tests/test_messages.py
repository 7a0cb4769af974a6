"""Tests for cursor-paginated message history and message sending."""

import asyncio

from omnidesk.schemas.messages import Message, MessagePage, PageMeta
from omnidesk.services.messages import MessageHistory, MessageService, flatten_message_pages

MESSAGES_PATH = "/orgs/o1/conversations/c1/messages"


def _run(coro):
    return asyncio.run(coro)


def _message(message_id: str) -> dict:
    return {"id": message_id, "conversationId": "c1", "content": message_id, "direction": "INBOUND", "sender": "CONTACT"}


def _pages_by_cursor(request):
    cursor = request.url.params.get("cursor")
    if cursor is None:
        return {"data": [_message("m5"), _message("m4")], "meta": {"limit": 2, "hasMore": True, "nextCursor": "m4"}}
    if cursor == "m4":
        return {"data": [_message("m3"), _message("m2")], "meta": {"limit": 2, "hasMore": True, "nextCursor": "m2"}}
    return {"data": [_message("m1")], "meta": {"limit": 2, "hasMore": False, "nextCursor": None}}


def test_pages_are_concatenated_in_fetch_order(fake_api, api, cache):
    fake_api.add("GET", MESSAGES_PATH, _pages_by_cursor)
    history = MessageHistory(api, cache, "o1", "c1", limit=2)

    async def scenario():
        await history.fetch_next_page()
        await history.fetch_next_page()

    _run(scenario())

    assert [message.id for message in history.messages] == ["m5", "m4", "m3", "m2"]
    assert history.has_next_page is True
    assert [call.params for call in fake_api.calls] == [{"limit": "2"}, {"limit": "2", "cursor": "m4"}]


def test_last_page_stops_pagination(fake_api, api, cache):
    fake_api.add("GET", MESSAGES_PATH, _pages_by_cursor)
    history = MessageHistory(api, cache, "o1", "c1", limit=2)

    async def scenario():
        for _ in range(4):
            await history.fetch_next_page()

    _run(scenario())

    assert [message.id for message in history.messages] == ["m5", "m4", "m3", "m2", "m1"]
    assert history.has_next_page is False
    assert len(fake_api.calls) == 3


def test_flatten_message_pages_handles_missing_pages():
    assert flatten_message_pages(None) == []
    page = MessagePage(
        data=[Message.model_validate(_message("m1"))],
        meta=PageMeta(limit=50, has_more=False),
    )
    assert [message.id for message in flatten_message_pages([page])] == ["m1"]


def test_send_invalidates_and_history_refetches(fake_api, api, cache):
    sent = {"done": False}

    def pages(request):
        data = [_message("m6"), _message("m5")] if sent["done"] else [_message("m5")]
        return {"data": data, "meta": {"limit": 50, "hasMore": False}}

    def send(request):
        sent["done"] = True
        return {"success": True, "data": {**_message("m6"), "direction": "OUTBOUND", "sender": "AGENT"}}

    fake_api.add("GET", MESSAGES_PATH, pages)
    fake_api.add("POST", MESSAGES_PATH, send)
    service = MessageService(api, cache, "o1")
    history = service.history("c1")

    async def scenario():
        await history.ensure_fresh()
        assert [message.id for message in history.messages] == ["m5"]
        message = await service.send_message("c1", "hello")
        # nothing is inserted locally before the refetch
        assert [item.id for item in history.messages] == ["m5"]
        assert history.is_stale
        await history.ensure_fresh()
        return message

    message = _run(scenario())

    assert message.id == "m6"
    assert [item.id for item in history.messages] == ["m6", "m5"]
    assert fake_api.calls_to("POST", MESSAGES_PATH)[0].body["content"] == "hello"
    assert fake_api.calls_to("POST", MESSAGES_PATH)[0].body["contentType"] == "TEXT"


def test_refetch_keeps_loaded_page_count(fake_api, api, cache):
    fake_api.add("GET", MESSAGES_PATH, _pages_by_cursor)
    history = MessageHistory(api, cache, "o1", "c1", limit=2)

    async def scenario():
        await history.fetch_next_page()
        await history.fetch_next_page()
        history.invalidate()
        await history.ensure_fresh()

    _run(scenario())

    assert len(history.pages) == 2
    assert len(fake_api.calls) == 4
    assert history.is_stale is False


def test_fresh_history_is_served_without_network(fake_api, api, cache):
    fake_api.add("GET", MESSAGES_PATH, _pages_by_cursor)
    history = MessageHistory(api, cache, "o1", "c1", limit=2)

    async def scenario():
        await history.ensure_fresh()
        await history.ensure_fresh()

    _run(scenario())

    assert len(fake_api.calls) == 1


def test_closed_history_stops_tracking_invalidation(api, cache):
    history = MessageHistory(api, cache, "o1", "c1")
    history.close()
    cache.invalidate(("messages", "o1"))
    assert history._generation == 0


async def _slow_pages(request):
    await asyncio.sleep(0.01)
    return _pages_by_cursor(request)


def test_overlapping_next_page_loads_share_one_request(fake_api, api, cache):
    fake_api.add("GET", MESSAGES_PATH, _slow_pages)
    history = MessageHistory(api, cache, "o1", "c1", limit=2)

    async def scenario():
        await history.fetch_next_page()
        return await asyncio.gather(history.fetch_next_page(), history.fetch_next_page())

    first, second = _run(scenario())

    assert first is second
    assert [message.id for message in history.messages] == ["m5", "m4", "m3", "m2"]
    assert len(fake_api.calls) == 2


def test_refetch_and_next_page_do_not_interleave(fake_api, api, cache):
    fake_api.add("GET", MESSAGES_PATH, _slow_pages)
    history = MessageHistory(api, cache, "o1", "c1", limit=2)

    async def scenario():
        await history.fetch_next_page()
        await asyncio.gather(history.refetch(), history.fetch_next_page())

    _run(scenario())

    assert [message.id for message in history.messages] == ["m5", "m4", "m3", "m2"]
