from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from omnidesk.schemas.base import CamelModel


class AiReplyRequest(CamelModel):
    force: bool | None = None


class AiReplyAck(CamelModel):
    queued: bool
    message: str = ""


class AiJobState(enum.Enum):
    queued = "queued"
    rejected = "rejected"
    delivered = "delivered"
    failed = "failed"
    timed_out = "timed_out"


@dataclass(frozen=True)
class AiReplyJob:
    conversation_id: str
    requested_at: datetime
    queued: bool
    state: AiJobState
    message: str = ""
