"""HTTP client helpers for Whoop API calls.

Retry policy:
- Every call carries a bounded timeout; a timeout is treated like any
  other failed response by callers
- 401 Unauthorized triggers exactly one token refresh and one retry
- Nothing else is retried and there is no backoff
"""

from collections.abc import Awaitable, Callable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from shared.config import Settings

logger = structlog.get_logger()


class TokenRejectedError(Exception):
    """The provider answered 401 for the bearer token that was sent."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"HTTP 401 from {url}")


class RefreshUnavailableError(Exception):
    """A 401 retry was needed but no fresh token could be obtained."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Token refresh unavailable for {url}")


def build_http_client(settings: Settings, **kwargs) -> httpx.AsyncClient:
    """Shared AsyncClient with the configured timeout on every request."""
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds), **kwargs)


def _log_token_rejected(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "whoop_token_rejected_refreshing",
        url=getattr(exc, "url", None),
        attempt=retry_state.attempt_number,
    )


async def request_with_token_refresh(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    access_token: str,
    refresh: Callable[[], Awaitable[str | None]],
    **kwargs,
) -> httpx.Response:
    """Make a bearer-authenticated request, refreshing the token once on 401.

    `refresh` returns a new access token, or None when refresh failed; in that
    case RefreshUnavailableError is raised instead of retrying. A second 401
    re-raises TokenRejectedError.
    """
    extra_headers = kwargs.pop("headers", {})
    token = access_token

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(TokenRejectedError),
        stop=stop_after_attempt(2),
        before_sleep=_log_token_rejected,
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                refreshed = await refresh()
                if refreshed is None:
                    raise RefreshUnavailableError(url)
                token = refreshed

            headers = {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                **extra_headers,
            }
            response = await client.request(method, url, headers=headers, **kwargs)
            if response.status_code == httpx.codes.UNAUTHORIZED:
                raise TokenRejectedError(url)

    return response
