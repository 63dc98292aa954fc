"""
Webhook Event System - FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from webhook_events.api.v1.router import api_router
from webhook_events.core.config import Settings, get_settings
from webhook_events.core.logging import configure_logging
from webhook_events.core.webhooks.system import WebhookEventSystem
from webhook_events.monitoring.metrics import MetricsCollector
from webhook_events.utils.error_handlers import (
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    webhook_system_exception_handler,
)
from webhook_events.utils.exceptions import WebhookSystemException


def create_app(
    system: Optional[WebhookEventSystem] = None,
    settings: Optional[Settings] = None,
    start_background_tasks: bool = True,
) -> FastAPI:
    """
    Build the application.

    ``system`` defaults to an in-memory ``WebhookEventSystem`` reporting to
    a ``MetricsCollector``, whose summary is served by the metrics route.
    Its dispatcher and health loops run for the lifetime of the app unless
    ``start_background_tasks`` is false.
    """
    settings = settings or get_settings()
    webhook_system = system or WebhookEventSystem(
        settings=settings,
        metrics=MetricsCollector(max_samples=settings.METRICS_MAX_SAMPLES),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        configure_logging(settings)
        logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION} ({settings.ENVIRONMENT})")
        if start_background_tasks:
            webhook_system.start()
        yield
        logger.info(f"Shutting down {settings.PROJECT_NAME}...")
        await webhook_system.stop()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Outbound webhook delivery with signing, retries and health monitoring",
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
        debug=settings.DEBUG,
    )
    app.state.webhook_system = webhook_system

    # Add exception handlers
    app.add_exception_handler(WebhookSystemException, webhook_system_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    async def health_check():
        """Basic liveness check."""
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "webhook_system_running": webhook_system.is_running,
        }

    return app


app = create_app()
