"""The main application factory for the EFK operator."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib.metadata import metadata, version

import structlog
from fastapi import FastAPI
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging, configure_uvicorn_logging
from safir.middleware.x_forwarded import XForwardedMiddleware
from safir.slack.webhook import SlackRouteErrorHandler

from .dependencies.config import config_dependency
from .factory import ProcessContext
from .handlers import index

__all__ = ["create_app"]


def create_app() -> FastAPI:
    """Create the FastAPI application.

    This is in a function rather than using a global variable (as is more
    typical for FastAPI) because we want to defer configuration loading until
    after the test suite has a chance to override the path to the
    configuration file.

    The application itself only serves metadata and health checks. The real
    work of the operator is done by the background tasks started by the
    lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await initialize_kubernetes()
        context = await ProcessContext.from_config(config_dependency.config)
        await context.start()

        yield

        await context.stop()
        await context.aclose()

    # Configure logging.
    config = config_dependency.config
    configure_logging(
        name="efkoperator",
        profile=config.profile,
        log_level=config.log_level,
    )
    configure_uvicorn_logging(config.log_level)

    # Create the application object.
    app = FastAPI(
        title=config.name,
        description=metadata("efk-operator")["Summary"],
        version=version("efk-operator"),
        openapi_url=f"{config.path_prefix}/openapi.json",
        docs_url=f"{config.path_prefix}/docs",
        redoc_url=f"{config.path_prefix}/redoc",
        lifespan=lifespan,
    )

    # Attach the routers.
    app.include_router(index.internal_router)
    app.include_router(index.external_router, prefix=config.path_prefix)

    # Register middleware.
    app.add_middleware(XForwardedMiddleware)

    # Configure Slack alerts.
    if config.slack_webhook:
        webhook = config.slack_webhook.get_secret_value()
        logger = structlog.get_logger(__name__)
        SlackRouteErrorHandler.initialize(webhook, config.name, logger)
        logger.debug("Initialized Slack webhook")

    return app
