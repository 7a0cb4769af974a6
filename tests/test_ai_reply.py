"""Tests for AI reply orchestration."""

import asyncio

import pytest

from omnidesk.schemas.ai import AiJobState
from omnidesk.services.ai_reply import AiReplyOrchestrator
from omnidesk.services.errors import ApiRateLimitError

AI_PATH = "/orgs/o1/conversations/c1/messages/ai-reply"


def _run(coro):
    return asyncio.run(coro)


def test_trigger_records_queued_job_and_invalidates(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"success": True, "data": {"queued": True, "message": "AI reply queued"}})
    cache.set(("messages", "o1", "c1", 50), "pages", 60)
    orchestrator = AiReplyOrchestrator(api, cache, "o1")

    ack = _run(orchestrator.trigger_ai_reply("c1"))

    assert ack.queued is True
    assert ack.message == "AI reply queued"
    assert orchestrator.job("c1").state == AiJobState.queued
    assert cache.get(("messages", "o1", "c1", 50)) is None
    assert fake_api.calls[0].body == {}


def test_force_flag_is_sent(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"data": {"queued": True}})
    orchestrator = AiReplyOrchestrator(api, cache, "o1")

    _run(orchestrator.trigger_ai_reply("c1", force=True))

    assert fake_api.calls[0].body == {"force": True}


def test_not_queued_ack_is_rejected_job(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"data": {"queued": False, "message": "AI is disabled for this conversation"}})
    orchestrator = AiReplyOrchestrator(api, cache, "o1")

    ack = _run(orchestrator.trigger_ai_reply("c1"))

    assert ack.queued is False
    job = orchestrator.job("c1")
    assert job.state == AiJobState.rejected
    assert job.message == "AI is disabled for this conversation"


def test_trigger_error_propagates_without_job(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, (429, {"message": "Too many AI requests"}))
    orchestrator = AiReplyOrchestrator(api, cache, "o1")

    with pytest.raises(ApiRateLimitError):
        _run(orchestrator.trigger_ai_reply("c1"))

    assert orchestrator.job("c1") is None


def test_delivery_and_failure_resolve_queued_job(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"data": {"queued": True}})
    orchestrator = AiReplyOrchestrator(api, cache, "o1")
    seen = []
    orchestrator.on_job_change(lambda job: seen.append(job.state))

    _run(orchestrator.trigger_ai_reply("c1"))
    orchestrator.mark_delivered("c1")
    orchestrator.mark_failed("c1", "too late")

    assert orchestrator.job("c1").state == AiJobState.delivered
    assert seen == [AiJobState.queued, AiJobState.delivered]


def test_last_trigger_wins(fake_api, api, cache):
    acks = iter([{"data": {"queued": True, "message": "first"}}, {"data": {"queued": True, "message": "second"}}])
    fake_api.add("POST", AI_PATH, lambda _request: next(acks))
    orchestrator = AiReplyOrchestrator(api, cache, "o1")

    async def scenario():
        await orchestrator.trigger_ai_reply("c1")
        await orchestrator.trigger_ai_reply("c1")

    _run(scenario())

    assert orchestrator.job("c1").message == "second"
    assert len(orchestrator.jobs) == 1


def test_optional_timeout_marks_job_timed_out(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"data": {"queued": True}})
    orchestrator = AiReplyOrchestrator(api, cache, "o1", timeout_seconds=0.01)

    async def scenario():
        await orchestrator.trigger_ai_reply("c1")
        await asyncio.sleep(0.05)

    _run(scenario())

    assert orchestrator.job("c1").state == AiJobState.timed_out


def test_timeout_disabled_by_default(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"data": {"queued": True}})
    orchestrator = AiReplyOrchestrator(api, cache, "o1", timeout_seconds=0)

    async def scenario():
        await orchestrator.trigger_ai_reply("c1")
        await asyncio.sleep(0.02)

    _run(scenario())

    assert orchestrator.job("c1").state == AiJobState.queued


def test_delivery_cancels_timeout(fake_api, api, cache):
    fake_api.add("POST", AI_PATH, {"data": {"queued": True}})
    orchestrator = AiReplyOrchestrator(api, cache, "o1", timeout_seconds=0.01)

    async def scenario():
        await orchestrator.trigger_ai_reply("c1")
        orchestrator.mark_delivered("c1")
        await asyncio.sleep(0.05)

    _run(scenario())

    assert orchestrator.job("c1").state == AiJobState.delivered
