"""FastAPI application entry point.

Wires together: middleware, exception handlers, routes, metrics, and the
shared outbound httpx client. Validates config at startup.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import settings
from shared.exceptions import ProblemDetailError
from shared.logging import configure_logging
from shared.metrics import create_metrics_app
from shared.middleware import (
    RequestIdMiddleware,
    http_exception_handler,
    problem_detail_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from settlement.api import router as leaderboard_router
from whoop.adapters.http_client import build_http_client
from whoop.api import router as whoop_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    configure_logging(json_output=settings.log_json)
    logger.info(
        "app_starting",
        database_url=settings.database_url.split("@")[-1],  # hide credentials
        oauth_client_configured=settings.oauth_client_configured,
        settlement_configured=settings.settlement_configured,
        defer_sleep_sync=settings.defer_sleep_sync,
    )
    if not settings.webhook_secret:
        logger.warning("webhook_secret_missing")
    if not settings.settlement_configured:
        logger.warning("settlement_disabled")

    app.state.http_client = build_http_client(settings)
    yield
    await app.state.http_client.aclose()
    logger.info("app_shutting_down")


app = FastAPI(
    title="Whoop Sleep Sync API",
    description=(
        "Receives signed Whoop webhooks, keeps an audit log and resource ledger, "
        "fetches sleep records with silent OAuth refresh, and forwards nightly "
        "metrics to the SleepToEarn settlement gateway."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)

# All errors emit application/problem+json (RFC 9457)
app.add_exception_handler(ProblemDetailError, problem_detail_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(whoop_router)
app.include_router(leaderboard_router)

metrics_app = create_metrics_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    return {"status": "ok"}
