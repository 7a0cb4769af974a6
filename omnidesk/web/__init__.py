from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from omnidesk.logging import configure_logging
from omnidesk.realtime.sources import RedisEventPublisher
from omnidesk.web.gate import RouteGateMiddleware
from omnidesk.web.webhooks import router as webhooks_router

logger = logging.getLogger(__name__)


def create_app(realtime_publisher: RedisEventPublisher | None = None) -> FastAPI:
    """Build the web edge: route gating plus the inbound webhook endpoints."""
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        publisher = app.state.realtime_publisher
        if publisher is not None:
            await publisher.close()
            logger.info("realtime_publisher_closed")

    app = FastAPI(title="OmniDesk web edge", lifespan=lifespan)
    app.state.realtime_publisher = realtime_publisher
    app.add_middleware(RouteGateMiddleware)
    app.include_router(webhooks_router)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app
