"""FastAPI dependency wiring for the Whoop and settlement routers.

Components receive Settings, the repository and the shared httpx client
explicitly; tests override get_repository / get_repository_scope / get_http_client /
get_settings.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import Settings, get_settings
from shared.database import get_session, session_scope
from settlement.client import SettlementClient
from settlement.forwarder import SettlementForwarder
from settlement.service import SettlementStatsService
from whoop.adapters.oauth import TokenManager
from whoop.adapters.sleep_fetcher import SleepFetcher
from whoop.domain.results import SleepSyncRequest
from whoop.processor import SleepSyncService, WebhookProcessor
from whoop.repository import WhoopRepository


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_repository(session: AsyncSession = Depends(get_session)) -> WhoopRepository:
    return WhoopRepository(session)


def build_sync_service(
    repo: WhoopRepository, settings: Settings, http_client: httpx.AsyncClient
) -> SleepSyncService:
    tokens = TokenManager(repo, settings, http_client)
    fetcher = SleepFetcher(repo, tokens, settings, http_client)
    forwarder = SettlementForwarder(repo, SettlementClient(settings, http_client))
    return SleepSyncService(repo, fetcher, forwarder)


def get_processor(
    repo: WhoopRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> WebhookProcessor:
    return WebhookProcessor(repo, settings, build_sync_service(repo, settings, http_client))


def get_stats_service(
    repo: WhoopRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> SettlementStatsService:
    return SettlementStatsService(repo, SettlementClient(settings, http_client))


RepositoryScope = Callable[[], AbstractAsyncContextManager[WhoopRepository]]


@asynccontextmanager
async def repository_scope() -> AsyncIterator[WhoopRepository]:
    """Repository on a fresh session, for work that outlives the request."""
    async with session_scope() as session:
        yield WhoopRepository(session)


def get_repository_scope() -> RepositoryScope:
    return repository_scope


async def run_deferred_sleep_sync(
    request: SleepSyncRequest,
    settings: Settings,
    http_client: httpx.AsyncClient,
    scope: RepositoryScope = repository_scope,
) -> None:
    """Background variant of the sync step; the request session is closed by now."""
    async with scope() as repo:
        await build_sync_service(repo, settings, http_client).sync(request)
