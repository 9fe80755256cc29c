"""FastAPI router for the Whoop integration.

Endpoints:
- POST /api/whoop/webhook              (X-WHOOP-Signature + timestamp headers)
- POST /api/whoop/register
- GET  /api/whoop/user/{wallet_address}
- GET  /api/whoop/sleep/{wallet_address}
- GET  /api/whoop/stats/{wallet_address}
"""

import time
from datetime import UTC, datetime, timedelta

import httpx
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError

from shared.config import Settings, get_settings
from shared.exceptions import (
    MisconfiguredError,
    MissingRegistrationFieldsError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
    WalletConflictError,
)
from shared.metrics import api_requests_total, api_response_duration_seconds
from shared.middleware import response_meta
from settlement.service import SettlementStatsService
from whoop.dependencies import (
    RepositoryScope,
    get_http_client,
    get_processor,
    get_repository,
    get_repository_scope,
    get_stats_service,
    run_deferred_sleep_sync,
)
from whoop.domain.models import Credential
from whoop.domain.results import WebhookOutcome
from whoop.processor import WebhookProcessor
from whoop.repository import WhoopRepository

logger = structlog.get_logger()

router = APIRouter(prefix="/api/whoop", tags=["whoop"])


# --- Request models ---


class RegisterRequest(BaseModel):
    """Registration body. Field presence is checked in the handler so a
    missing id/wallet/token is a 400, not a 422."""

    model_config = ConfigDict(populate_by_name=True)

    whoop_user_id: int | None = Field(None, alias="whoopUserId")
    wallet_address: str | None = Field(None, alias="walletAddress")
    access_token: str | None = Field(None, alias="accessToken")
    refresh_token: str | None = Field(None, alias="refreshToken")
    expires_in: int | None = Field(None, alias="expiresIn", ge=0)


# --- Endpoints ---


@router.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    processor: WebhookProcessor = Depends(get_processor),
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    repository_scope: RepositoryScope = Depends(get_repository_scope),
    signature: str | None = Header(None, alias="X-WHOOP-Signature"),
    timestamp: str | None = Header(None, alias="X-WHOOP-Signature-Timestamp"),
):
    """Receive a Whoop webhook.

    The signature is checked against the raw request bytes. Once the event is
    recorded the response is always 200 "ok"; fetch, refresh and settlement
    failures are internal and never trigger a provider redelivery.
    """
    raw_body = await request.body()
    result = await processor.handle(signature, timestamp, raw_body)

    if result.outcome is WebhookOutcome.MISCONFIGURED:
        raise MisconfiguredError(result.detail)
    if result.outcome is WebhookOutcome.UNAUTHENTICATED:
        raise UnauthenticatedError(result.detail)
    if result.outcome is WebhookOutcome.MALFORMED:
        raise ValidationError(result.violations)

    if result.sync is not None and settings.defer_sleep_sync:
        background_tasks.add_task(
            run_deferred_sleep_sync, result.sync, settings, http_client, repository_scope
        )

    api_requests_total.labels(endpoint="webhook", method="POST", status_code="200").inc()
    return PlainTextResponse("ok")


@router.post("/register")
async def register(
    body: RegisterRequest,
    repo: WhoopRepository = Depends(get_repository),
):
    """Link a Whoop user to a wallet and store its OAuth tokens (upsert)."""
    missing = [
        alias
        for alias, value in (
            ("whoopUserId", body.whoop_user_id),
            ("walletAddress", body.wallet_address),
            ("accessToken", body.access_token),
        )
        if not value
    ]
    if missing:
        raise MissingRegistrationFieldsError(missing)

    expires_at = None
    if body.expires_in is not None:
        expires_at = datetime.now(UTC) + timedelta(seconds=body.expires_in)

    try:
        await repo.upsert_account(
            {
                "whoop_user_id": body.whoop_user_id,
                "wallet_address": body.wallet_address,
                "access_token": body.access_token,
                "refresh_token": body.refresh_token,
                "access_token_expires_at": expires_at,
            }
        )
        await repo.commit()
    except IntegrityError:
        await repo.rollback()
        raise WalletConflictError(body.wallet_address) from None

    logger.info(
        "account_registered",
        whoop_user_id=body.whoop_user_id,
        wallet_address=body.wallet_address,
        has_refresh_token=body.refresh_token is not None,
    )
    api_requests_total.labels(endpoint="register", method="POST", status_code="200").inc()
    return {"ok": True}


@router.get("/user/{wallet_address}")
async def get_user(
    wallet_address: str,
    repo: WhoopRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """Credential record for a wallet. Token values are never returned."""
    account = await repo.get_account_by_wallet(wallet_address)
    if account is None:
        raise NotFoundError("User not found")

    api_requests_total.labels(endpoint="user", method="GET", status_code="200").inc()
    return {
        "data": Credential.model_validate(account).public_view(),
        "meta": response_meta(settings.api_version),
    }


@router.get("/sleep/{wallet_address}")
async def get_latest_sleep(
    wallet_address: str,
    repo: WhoopRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """Raw payload of the user's most recent sleep (by start), or null."""
    start_time = time.monotonic()
    account = await repo.get_account_by_wallet(wallet_address)
    if account is None:
        raise NotFoundError("User not found")

    latest = await repo.get_latest_sleep(account.whoop_user_id)

    api_requests_total.labels(endpoint="sleep", method="GET", status_code="200").inc()
    api_response_duration_seconds.labels(endpoint="sleep").observe(time.monotonic() - start_time)
    return {
        "data": latest.raw_payload if latest is not None else None,
        "meta": response_meta(settings.api_version),
    }


@router.get("/stats/{wallet_address}")
async def get_stats(
    wallet_address: str,
    stats: SettlementStatsService = Depends(get_stats_service),
    settings: Settings = Depends(get_settings),
):
    """Settlement stats for a wallet; all-zero and disabled when unavailable."""
    data = await stats.get_user_stats(wallet_address)
    api_requests_total.labels(endpoint="stats", method="GET", status_code="200").inc()
    return {"data": data, "meta": response_meta(settings.api_version)}
