from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from omnidesk.config import settings
from omnidesk.realtime.events import EventType, RealtimeEvent, organization_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc


def _echo(source: str, payload: Any) -> dict:
    return {"success": True, "data": {"source": source, "payload": payload}}


@router.post("/n8n-callback", status_code=status.HTTP_200_OK)
async def n8n_callback(request: Request):
    """Receive a workflow-engine callback.

    When a realtime publisher is configured and the payload names both the
    organization and the conversation, an ``ai_reply`` event is published so
    connected inboxes refresh that conversation.
    """
    payload = await _read_json(request)
    publisher = getattr(request.app.state, "realtime_publisher", None)
    if publisher is not None and isinstance(payload, dict):
        organization_id = payload.get("organizationId")
        conversation_id = payload.get("conversationId")
        if organization_id and conversation_id:
            event = RealtimeEvent(event=EventType.AI_REPLY, payload={"conversationId": conversation_id})
            await publisher.publish(organization_scope(str(organization_id)), event)
            logger.info(
                "n8n_callback_published org_id=%s conversation_id=%s",
                organization_id,
                conversation_id,
            )
    return _echo("n8n", payload)


@router.get("/instagram")
async def instagram_webhook_verify(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    """Answer the subscription challenge sent while the webhook URL is configured."""
    expected_token = settings.webhook_verify_token
    token_ok = not expected_token or hub_verify_token == expected_token
    if hub_mode == "subscribe" and hub_challenge and token_ok:
        logger.info("instagram_webhook_verified")
        return Response(content=hub_challenge, media_type="text/plain")

    logger.warning("instagram_webhook_verify_failed mode=%s", hub_mode)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": "Invalid challenge"},
    )


@router.post("/instagram", status_code=status.HTTP_200_OK)
async def instagram_webhook(request: Request):
    payload = await _read_json(request)
    return _echo("instagram", payload)
