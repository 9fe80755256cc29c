"""Settlement gateway client.

The SleepToEarn contract is reached through an HTTP gateway that holds the
oracle key and exposes submission and read endpoints:

- POST /v1/sleep-submissions          → {"tx_hash": "0x..."}
- GET  /v1/users/{wallet}/balance     → {"balance_wei": "..."}
- GET  /v1/users/{wallet}/stats       → {"total_tokens_wei", "current_streak",
                                         "longest_streak", "total_sessions"}

The collaborator is optional. When it is not configured the client reports
itself disabled and every call raises SettlementNotConfiguredError.
"""

from dataclasses import dataclass
from decimal import Decimal

import httpx

from shared.config import Settings
from whoop.domain.models import SleepMetrics

TOKEN_DECIMALS = 18


class SettlementError(Exception):
    """The settlement collaborator call failed or was unreachable."""


class SettlementNotConfiguredError(SettlementError):
    pass


@dataclass(frozen=True)
class ContractStats:
    total_tokens: float
    current_streak: int
    longest_streak: int
    total_sessions: int


def wei_to_tokens(wei: int | str) -> float:
    return float(Decimal(int(wei)) / (Decimal(10) ** TOKEN_DECIMALS))


class SettlementClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = http_client

    def is_configured(self) -> bool:
        return self._settings.settlement_configured

    def _url(self, path: str) -> str:
        return f"{self._settings.settlement_gateway_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._settings.settlement_api_key:
            headers["Authorization"] = f"Bearer {self._settings.settlement_api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.is_configured():
            raise SettlementNotConfiguredError("Settlement gateway not configured")
        try:
            response = await self._client.request(
                method, self._url(path), headers=self._headers(), **kwargs
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SettlementError(f"{method} {path} failed: {exc}") from exc
        if not isinstance(body, dict):
            raise SettlementError(f"{method} {path} returned a non-object body")
        return body

    async def submit_sleep_data(self, wallet_address: str, metrics: SleepMetrics) -> str:
        """Submit one night's metrics; returns the transaction hash."""
        body = await self._request(
            "POST",
            "/v1/sleep-submissions",
            json={
                "wallet_address": wallet_address,
                "date": metrics.date_number,
                "sleep_duration_minutes": metrics.sleep_duration_minutes,
                "efficiency_percentage": metrics.efficiency_percentage,
                "sleep_cycles": metrics.sleep_cycles,
                "deep_sleep_minutes": metrics.deep_sleep_minutes,
                "rem_sleep_minutes": metrics.rem_sleep_minutes,
            },
        )
        tx_hash = body.get("tx_hash")
        if not tx_hash:
            raise SettlementError("Submission response carried no tx_hash")
        return str(tx_hash)

    async def get_token_balance(self, wallet_address: str) -> float:
        body = await self._request("GET", f"/v1/users/{wallet_address}/balance")
        try:
            return wei_to_tokens(body.get("balance_wei", 0))
        except (TypeError, ValueError) as exc:
            raise SettlementError(f"Invalid balance for {wallet_address}") from exc

    async def get_user_stats(self, wallet_address: str) -> ContractStats:
        body = await self._request("GET", f"/v1/users/{wallet_address}/stats")
        try:
            return ContractStats(
                total_tokens=wei_to_tokens(body.get("total_tokens_wei", 0)),
                current_streak=int(body.get("current_streak", 0)),
                longest_streak=int(body.get("longest_streak", 0)),
                total_sessions=int(body.get("total_sessions", 0)),
            )
        except (TypeError, ValueError) as exc:
            raise SettlementError(f"Invalid stats for {wallet_address}") from exc
