"""Whoop sleep resource fetcher: fetches from the Whoop v2 API, then upserts.

Uses request_with_token_refresh for the single refresh-then-retry on 401.
Any other non-success status, a timeout, or a transport error fails the
fetch without retry.
"""

import time
from datetime import datetime
from typing import Any

import httpx
import structlog

from shared.config import Settings
from shared.metrics import sleep_fetch_total, whoop_api_duration_seconds
from whoop.adapters.http_client import (
    RefreshUnavailableError,
    TokenRejectedError,
    request_with_token_refresh,
)
from whoop.adapters.oauth import TokenManager
from whoop.domain.models import Credential
from whoop.domain.results import FetchResult, FetchStatus, RefreshFailed
from whoop.repository import WhoopRepository

logger = structlog.get_logger()


def _parse_iso(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp (trailing Z accepted). None passthrough."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class SleepFetcher:
    """Fetch-and-store for one Whoop sleep resource."""

    def __init__(
        self,
        repo: WhoopRepository,
        tokens: TokenManager,
        settings: Settings,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._repo = repo
        self._tokens = tokens
        self._settings = settings
        self._client = http_client

    def sleep_url(self, sleep_id: str) -> str:
        base = self._settings.whoop_api_hostname.rstrip("/")
        return f"{base}/developer/v2/activity/sleep/{sleep_id}"

    async def fetch_sleep(self, whoop_user_id: int, sleep_id: str) -> FetchResult:
        account = await self._repo.get_account(whoop_user_id)
        if account is None:
            return self._finish(FetchResult.skipped(sleep_id, "user_not_registered"))

        credential = Credential.model_validate(account)
        access_token = await self._tokens.ensure_valid(credential)

        async def force_refresh() -> str | None:
            refreshed = await self._tokens.refresh_and_persist(whoop_user_id)
            if isinstance(refreshed, RefreshFailed):
                return None
            return refreshed.access_token

        url = self.sleep_url(sleep_id)
        start = time.monotonic()
        try:
            response = await request_with_token_refresh(
                self._client, "GET", url, access_token, force_refresh
            )
        except TokenRejectedError:
            return self._finish(FetchResult.failed(sleep_id, "unauthorized_after_refresh"))
        except RefreshUnavailableError:
            return self._finish(FetchResult.failed(sleep_id, "unauthorized_refresh_failed"))
        except httpx.TimeoutException:
            return self._finish(FetchResult.failed(sleep_id, "timeout"))
        except httpx.HTTPError as exc:
            return self._finish(
                FetchResult.failed(sleep_id, f"transport_error:{type(exc).__name__}")
            )
        finally:
            whoop_api_duration_seconds.labels(endpoint="sleep").observe(time.monotonic() - start)

        if not response.is_success:
            return self._finish(FetchResult.failed(sleep_id, f"http_{response.status_code}"))

        try:
            payload = response.json()
        except ValueError:
            return self._finish(FetchResult.failed(sleep_id, "invalid_json"))
        if not isinstance(payload, dict):
            return self._finish(FetchResult.failed(sleep_id, "unexpected_body"))

        db_result = await self._repo.upsert_sleep(
            {
                "sleep_id": sleep_id,
                "whoop_user_id": whoop_user_id,
                "start": _parse_iso(payload.get("start")),
                "end": _parse_iso(payload.get("end")),
                "raw_payload": payload,
            }
        )
        await self._repo.commit()

        logger.info(
            "sleep_record_upserted",
            whoop_user_id=whoop_user_id,
            sleep_id=sleep_id,
            status="created" if db_result["was_inserted"] else "updated",
        )
        return self._finish(FetchResult.stored(sleep_id, payload))

    @staticmethod
    def _finish(result: FetchResult) -> FetchResult:
        sleep_fetch_total.labels(status=result.status.value).inc()
        if result.status is FetchStatus.FAILED:
            logger.warning("sleep_fetch_failed", sleep_id=result.sleep_id, reason=result.reason)
        elif result.status is FetchStatus.SKIPPED:
            logger.info("sleep_fetch_skipped", sleep_id=result.sleep_id, reason=result.reason)
        return result
