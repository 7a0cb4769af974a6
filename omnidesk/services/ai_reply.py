"""AI reply orchestration.

Two legs, deliberately decoupled:

1. Trigger: ``trigger_ai_reply`` posts to the backend and gets back an
   acknowledgement ``{queued, message}``. The ack only says the workflow
   engine accepted the job.
2. Delivery: the generated reply arrives later as an ordinary new-message
   realtime event (sender AI), or as ``ai_reply``/``ai_error``; the realtime
   bridge reports it through ``mark_delivered``/``mark_failed``.

A job that never gets a delivery stays queued. The optional timeout turns it
into ``timed_out``; it is off unless configured.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

from omnidesk.config import settings
from omnidesk.schemas.ai import AiJobState, AiReplyAck, AiReplyJob, AiReplyRequest
from omnidesk.services.api_client import ApiClient, unwrap_data
from omnidesk.services.query_cache import QueryCache, invalidate_conversation_collections

logger = logging.getLogger(__name__)

JobListener = Callable[[AiReplyJob], None]


class AiReplyOrchestrator:
    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        organization_id: str,
        *,
        timeout_seconds: float = settings.ai_reply_timeout_seconds,
    ) -> None:
        if not organization_id:
            raise ValueError("organization_id is required")
        self.api = api
        self.cache = cache
        self.organization_id = organization_id
        self.timeout_seconds = timeout_seconds
        self._jobs: dict[str, AiReplyJob] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[JobListener] = []

    @property
    def jobs(self) -> dict[str, AiReplyJob]:
        return dict(self._jobs)

    def job(self, conversation_id: str) -> AiReplyJob | None:
        return self._jobs.get(conversation_id)

    def on_job_change(self, listener: JobListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_job(self, job: AiReplyJob) -> None:
        self._jobs[job.conversation_id] = job
        for listener in list(self._listeners):
            try:
                listener(job)
            except Exception as exc:
                logger.warning("ai_reply_listener_error conversation_id=%s error=%s", job.conversation_id, exc)

    def _cancel_timer(self, conversation_id: str) -> None:
        timer = self._timers.pop(conversation_id, None)
        if timer is not None:
            timer.cancel()

    def _arm_timer(self, job: AiReplyJob) -> None:
        self._cancel_timer(job.conversation_id)
        if self.timeout_seconds <= 0 or not job.queued:
            return
        loop = asyncio.get_running_loop()
        self._timers[job.conversation_id] = loop.call_later(self.timeout_seconds, self._expire, job)

    def _expire(self, job: AiReplyJob) -> None:
        self._timers.pop(job.conversation_id, None)
        current = self._jobs.get(job.conversation_id)
        # a newer trigger supersedes this timer
        if current is None or current.requested_at != job.requested_at or current.state != AiJobState.queued:
            return
        logger.warning("ai_reply_timed_out conversation_id=%s", job.conversation_id)
        self._set_job(replace(current, state=AiJobState.timed_out))

    async def trigger_ai_reply(self, conversation_id: str, *, force: bool | None = None) -> AiReplyAck:
        """Ask the backend to queue an AI reply. Errors propagate to the caller unchanged."""
        path = f"/orgs/{self.organization_id}/conversations/{conversation_id}/messages/ai-reply"
        payload = AiReplyRequest(force=force).model_dump(mode="json", by_alias=True, exclude_none=True)
        body = await self.api.post(path, payload)
        ack = AiReplyAck.model_validate(unwrap_data(body))
        invalidate_conversation_collections(self.cache, self.organization_id, conversation_id)

        job = AiReplyJob(
            conversation_id=conversation_id,
            requested_at=datetime.now(UTC),
            queued=ack.queued,
            state=AiJobState.queued if ack.queued else AiJobState.rejected,
            message=ack.message,
        )
        self._set_job(job)
        self._arm_timer(job)
        logger.info("ai_reply_triggered conversation_id=%s queued=%s", conversation_id, ack.queued)
        return ack

    def mark_delivered(self, conversation_id: str) -> None:
        current = self._jobs.get(conversation_id)
        if current is None or current.state != AiJobState.queued:
            return
        self._cancel_timer(conversation_id)
        self._set_job(replace(current, state=AiJobState.delivered))

    def mark_failed(self, conversation_id: str, message: str = "") -> None:
        current = self._jobs.get(conversation_id)
        if current is None or current.state != AiJobState.queued:
            return
        self._cancel_timer(conversation_id)
        self._set_job(replace(current, state=AiJobState.failed, message=message or current.message))

    def reset(self) -> None:
        for conversation_id in list(self._timers):
            self._cancel_timer(conversation_id)
        self._jobs.clear()
