"""Whoop OAuth2 token lifecycle.

Decides whether a stored access token is still usable and performs
refresh-and-persist against the Whoop token endpoint when it is not.

Refreshes for the same user are not serialized in-process. Overlapping
refreshes each persist their result and the last write wins; Whoop accepts a
just-rotated refresh token for a short window, so both calls succeed.
"""

import time
from datetime import UTC, datetime, timedelta

import httpx
import structlog

from shared.config import Settings
from shared.metrics import token_refresh_total, whoop_api_duration_seconds
from whoop.domain.models import Credential
from whoop.domain.results import RefreshFailed
from whoop.repository import WhoopRepository

logger = structlog.get_logger()

_TOKEN_PATH = "/oauth/oauth2/token"


class TokenManager:
    def __init__(
        self,
        repo: WhoopRepository,
        settings: Settings,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._repo = repo
        self._settings = settings
        self._client = http_client

    @property
    def token_url(self) -> str:
        return f"{self._settings.whoop_api_hostname.rstrip('/')}{_TOKEN_PATH}"

    def is_expiring(self, credential: Credential, now: datetime | None = None) -> bool:
        """True when the token expires within the lookahead window.

        A credential without a stored expiry is treated as valid.
        """
        expires_at = credential.access_token_expires_at
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        now = now or datetime.now(UTC)
        lookahead = timedelta(seconds=self._settings.token_refresh_lookahead_seconds)
        return now + lookahead >= expires_at

    async def ensure_valid(self, credential: Credential) -> str:
        """Return a usable access token, refreshing first if it is about to expire.

        If the refresh fails the stored token is returned unchanged and the
        provider's 401 handling decides what happens next.
        """
        if not self.is_expiring(credential):
            return credential.access_token

        refreshed = await self.refresh_and_persist(credential.whoop_user_id)
        if isinstance(refreshed, RefreshFailed):
            logger.info(
                "token_refresh_skipped_using_stored_token",
                whoop_user_id=credential.whoop_user_id,
                reason=refreshed.reason,
            )
            return credential.access_token
        return refreshed.access_token

    async def refresh_and_persist(self, whoop_user_id: int) -> Credential | RefreshFailed:
        """Exchange the stored refresh token and persist the new token set."""
        account = await self._repo.get_account(whoop_user_id)
        if account is None:
            return self._failed(whoop_user_id, "no_credential")
        if not account.refresh_token:
            return self._failed(whoop_user_id, "no_refresh_token")
        if not self._settings.oauth_client_configured:
            return self._failed(whoop_user_id, "oauth_client_not_configured")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": account.refresh_token,
            "client_id": self._settings.whoop_client_id,
            "client_secret": self._settings.whoop_client_secret,
            "scope": self._settings.whoop_oauth_scope,
        }

        start = time.monotonic()
        try:
            response = await self._client.post(
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TimeoutException:
            return self._failed(whoop_user_id, "timeout")
        except httpx.HTTPError as exc:
            return self._failed(whoop_user_id, f"transport_error:{type(exc).__name__}")
        finally:
            whoop_api_duration_seconds.labels(endpoint="token").observe(time.monotonic() - start)

        if not response.is_success:
            return self._failed(whoop_user_id, f"http_{response.status_code}")

        try:
            data = response.json()
            access_token = data["access_token"]
        except (ValueError, KeyError, TypeError):
            return self._failed(whoop_user_id, "invalid_token_response")

        expires_in = data.get("expires_in")
        try:
            expires_at = (
                datetime.now(UTC) + timedelta(seconds=float(expires_in))
                if expires_in is not None
                else None
            )
        except (TypeError, ValueError, OverflowError):
            return self._failed(whoop_user_id, "invalid_token_response")

        updated = await self._repo.update_tokens(
            whoop_user_id,
            access_token=access_token,
            refresh_token=data.get("refresh_token") or account.refresh_token,
            expires_at=expires_at,
        )
        if updated is None:
            return self._failed(whoop_user_id, "credential_removed")
        await self._repo.commit()

        token_refresh_total.labels(status="refreshed").inc()
        logger.info(
            "token_refreshed",
            whoop_user_id=whoop_user_id,
            rotated=bool(data.get("refresh_token")),
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return Credential.model_validate(updated)

    @staticmethod
    def _failed(whoop_user_id: int, reason: str) -> RefreshFailed:
        token_refresh_total.labels(status="failed").inc()
        logger.warning("token_refresh_failed", whoop_user_id=whoop_user_id, reason=reason)
        return RefreshFailed(reason)
