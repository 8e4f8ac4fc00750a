"""FastAPI application wiring for recallbot.

- Configures logging, error handlers and Prometheus metrics.
- Owns the :class:`~recallbot.container.ServiceContainer` holding the
  rate-limit counters and the memory store clients for the process
  lifetime; the rate-limit sweeper runs as a background task between
  start-up and shutdown.
- Exposes the WhatsApp webhook, memory search, health and version routes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.concurrency import run_in_threadpool

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import Settings, get_settings
from .container import ServiceContainer
from .errors import install_exception_handlers
from .routers import memories, webhooks

load_dotenv()

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, *, container: ServiceContainer | None = None
) -> FastAPI:
    """Build the application; tests pass their own settings or container."""

    if container is None:
        container = ServiceContainer(settings or get_settings())
    settings = container.settings

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await run_in_threadpool(container.prepare_database)
        sweeper = asyncio.create_task(
            container.rate_limiter.run_sweeper(settings.rate_limit_sweep_seconds)
        )
        logger.info("recallbot %s started (env=%s)", __version__, settings.app_env)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            logger.info("recallbot stopped")

    app = FastAPI(title="recallbot", version=__version__, lifespan=lifespan)
    app.state.container = container
    init_logging(app)
    install_exception_handlers(app)
    app.include_router(webhooks.router)
    app.include_router(memories.router)

    if settings.metrics_enabled:
        Instrumentator().instrument(app).expose(
            app, include_in_schema=False, endpoint="/api/metrics"
        )

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    return app


app = create_app()
