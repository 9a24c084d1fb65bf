r"""backend\app\main.py

Main entrypoint for the FastAPI application.

The API exposes endpoints to register customers and their water deliveries,
inspect the predicted reorder cadence, send reminders on demand and run the
reminder sweep. When ``ENABLE_SCHEDULER`` is set the sweep also runs daily
at the time configured in ``configs/settings.yaml``. A health endpoint is
provided for readiness/liveness checks.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from .api.v1 import analytics, configs, customers, health, notifications, orders
from .core.config import Settings, get_settings
from .core.observability import SlidingWindowRateLimiter, TokenAndRateLimitMiddleware, metrics_endpoint
from .services.container import ServiceContainer, build_services

# Load .env from repo root
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    services: Optional[ServiceContainer] = getattr(app.state, "services", None)
    owns_services = services is None
    if services is None:
        services = build_services(app.state.settings)
        app.state.services = services

    if services.settings.enable_scheduler:
        services.trigger.start()
    else:
        LOGGER.info("Daily sweep disabled (ENABLE_SCHEDULER=false)")

    try:
        yield
    finally:
        services.trigger.stop()
        if owns_services:
            services.close()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Build the FastAPI app; ``services`` replaces the default wiring (tests)."""

    settings = settings or (services.settings if services is not None else get_settings())
    app = FastAPI(title="Refill Reminder API", version="0.1.0", lifespan=_lifespan)
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    # Allow cross-origin requests from dashboards (and others).
    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,  # In production specify your UI domain(s)
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TokenAndRateLimitMiddleware,
        token=settings.api_token,
        limiter=SlidingWindowRateLimiter(per_minute=settings.rate_limit_per_min),
    )

    # Include versioned routers
    app.include_router(health.router, prefix="/api/v1")
    app.include_router(customers.router, prefix="/api/v1")
    app.include_router(orders.router, prefix="/api/v1")
    app.include_router(analytics.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(configs.router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    def _root() -> RedirectResponse:
        """Redirect the root path to the interactive docs."""

        return RedirectResponse(url="/docs")

    @app.get("/metrics", include_in_schema=False)
    async def _metrics() -> Response:
        """Expose Prometheus metrics."""

        return metrics_endpoint()

    return app


app = create_app()


def run() -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    uvicorn.run("backend.app.main:app", host=settings.api_host, port=settings.api_port, log_level="info")


if __name__ == "__main__":
    run()
