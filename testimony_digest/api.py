"""FastAPI application exposing the on-demand delivery trigger."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from testimony_digest import __version__
from testimony_digest.core.config import Settings, get_settings
from testimony_digest.core.models import ProcessingStatus
from testimony_digest.data.db import create_engine_for_url
from testimony_digest.workflows.deliver_notifications import (
    DigestDeliveryWorkflow,
    create_delivery_workflow,
)

logger = structlog.get_logger(__name__)


def build_app(
    settings: Optional[Settings] = None,
    workflow_factory: Optional[Callable[[], DigestDeliveryWorkflow]] = None,
) -> FastAPI:
    """
    Create a configured FastAPI instance.

    Without a ``workflow_factory`` one engine is created here and shared by
    every triggered cycle; it is disposed when the app shuts down.
    """
    settings = settings or get_settings()
    engine = None

    if workflow_factory is None:
        engine = create_engine_for_url(settings.database.url, echo=settings.database.echo)

        def workflow_factory() -> DigestDeliveryWorkflow:
            return create_delivery_workflow(settings, engine=engine)

    make_workflow = workflow_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="Testimony Digest", version=__version__, lifespan=lifespan)
    app.state.engine = engine

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "ok",
            "environment": settings.environment,
            "dry_run": settings.dry_run,
            "schedule": settings.digest.schedule,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.api_route(
        "/deliver-notifications",
        methods=["GET", "POST"],
        response_class=PlainTextResponse,
    )
    def deliver_notifications() -> PlainTextResponse:
        try:
            result = make_workflow().run_digest_cycle()
        except Exception as exc:
            logger.error(
                "Error in deliverNotifications",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return PlainTextResponse("Internal server error", status_code=500)

        if result.status != ProcessingStatus.COMPLETED:
            logger.error(
                "Error in deliverNotifications",
                error=result.error_message,
                **result.error_details,
            )
            return PlainTextResponse("Internal server error", status_code=500)

        logger.info("deliverNotifications completed", **result.summary())
        return PlainTextResponse("Successfully delivered notifications", status_code=200)

    return app
