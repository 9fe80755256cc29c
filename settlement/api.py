"""FastAPI router for the token leaderboard.

Endpoints:
- GET /api/leaderboard?limit=10               (limit capped at 50)
- GET /api/leaderboard/user/{wallet_address}
"""

from fastapi import APIRouter, Depends, Query

from shared.config import Settings, get_settings
from shared.metrics import api_requests_total
from shared.middleware import response_meta
from settlement.service import MAX_LEADERBOARD_LIMIT, SettlementStatsService
from whoop.dependencies import get_stats_service

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("")
async def get_leaderboard(
    limit: int = Query(10, ge=1),
    stats: SettlementStatsService = Depends(get_stats_service),
    settings: Settings = Depends(get_settings),
):
    """Top wallets by token balance. Limits above the cap are clamped, not rejected."""
    data = await stats.get_leaderboard(min(limit, MAX_LEADERBOARD_LIMIT))
    api_requests_total.labels(endpoint="leaderboard", method="GET", status_code="200").inc()
    return {"data": data, "meta": response_meta(settings.api_version)}


@router.get("/user/{wallet_address}")
async def get_user_rank(
    wallet_address: str,
    stats: SettlementStatsService = Depends(get_stats_service),
    settings: Settings = Depends(get_settings),
):
    data = await stats.get_user_rank(wallet_address)
    api_requests_total.labels(
        endpoint="leaderboard_user", method="GET", status_code="200"
    ).inc()
    return {"data": data, "meta": response_meta(settings.api_version)}
