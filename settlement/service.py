"""Read-side settlement views: per-wallet stats and the token leaderboard.

Every read degrades to a disabled or empty shape instead of raising, so the
read endpoints stay available while the gateway is down or unconfigured.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from settlement.client import SettlementClient, SettlementError
from whoop.repository import WhoopRepository

logger = structlog.get_logger()

MAX_LEADERBOARD_LIMIT = 50
# Wallets read at once during a leaderboard or rank scan; each read is two requests
MAX_CONCURRENT_WALLET_READS = 10


@dataclass(frozen=True)
class WalletStanding:
    wallet_address: str
    token_balance: float
    total_tokens_earned: float
    current_streak: int
    longest_streak: int
    total_sessions: int


def disabled_user_stats() -> dict[str, Any]:
    return {
        "token_balance": 0,
        "total_tokens_earned": 0,
        "current_streak": 0,
        "longest_streak": 0,
        "total_sessions": 0,
        "is_blockchain_enabled": False,
    }


class SettlementStatsService:
    def __init__(self, repo: WhoopRepository, client: SettlementClient) -> None:
        self._repo = repo
        self._client = client

    async def _standing(self, wallet_address: str) -> WalletStanding:
        # Both reads settle before either failure is raised
        balance, stats = await asyncio.gather(
            self._client.get_token_balance(wallet_address),
            self._client.get_user_stats(wallet_address),
            return_exceptions=True,
        )
        failures = [r for r in (balance, stats) if isinstance(r, BaseException)]
        if failures:
            raise next((f for f in failures if isinstance(f, SettlementError)), failures[0])
        return WalletStanding(
            wallet_address=wallet_address,
            token_balance=balance,
            total_tokens_earned=stats.total_tokens,
            current_streak=stats.current_streak,
            longest_streak=stats.longest_streak,
            total_sessions=stats.total_sessions,
        )

    async def _active_standings(self, wallets: list[str]) -> list[WalletStanding]:
        """Standings for wallets with at least one session; failed reads are dropped."""
        slots = asyncio.Semaphore(MAX_CONCURRENT_WALLET_READS)

        async def bounded(wallet: str) -> WalletStanding:
            async with slots:
                return await self._standing(wallet)

        results = await asyncio.gather(*(bounded(w) for w in wallets), return_exceptions=True)
        standings = []
        for wallet, result in zip(wallets, results):
            if isinstance(result, SettlementError):
                logger.warning("settlement_read_failed", wallet_address=wallet, error=str(result))
                continue
            if isinstance(result, BaseException):
                raise result
            if result.total_sessions > 0:
                standings.append(result)
        return standings

    async def get_user_stats(self, wallet_address: str) -> dict[str, Any]:
        if not self._client.is_configured():
            return disabled_user_stats()
        try:
            standing = await self._standing(wallet_address)
        except SettlementError as exc:
            logger.warning(
                "settlement_stats_unavailable", wallet_address=wallet_address, error=str(exc)
            )
            return disabled_user_stats()
        return {
            "token_balance": standing.token_balance,
            "total_tokens_earned": standing.total_tokens_earned,
            "current_streak": standing.current_streak,
            "longest_streak": standing.longest_streak,
            "total_sessions": standing.total_sessions,
            "is_blockchain_enabled": True,
        }

    async def get_leaderboard(self, limit: int = 10) -> dict[str, Any]:
        """Registered wallets ranked by token balance, highest first."""
        limit = max(1, min(limit, MAX_LEADERBOARD_LIMIT))
        if not self._client.is_configured():
            return {"users": [], "is_blockchain_enabled": False}

        # Over-fetch: wallets without sessions or with failed reads are dropped
        wallets = await self._repo.list_wallet_addresses(limit * 2)
        standings = await self._active_standings(wallets)
        standings.sort(key=lambda s: s.token_balance, reverse=True)

        users = [
            {**asdict(standing), "rank": index + 1}
            for index, standing in enumerate(standings[:limit])
        ]
        return {"users": users, "is_blockchain_enabled": True}

    async def get_user_rank(self, wallet_address: str) -> dict[str, Any]:
        """Rank is 1 + the number of active wallets holding a higher balance."""
        unranked = {"rank": None, "total_users": 0, "user_stats": None}
        if not self._client.is_configured():
            return unranked

        try:
            own = await self._standing(wallet_address)
        except SettlementError as exc:
            logger.warning(
                "settlement_rank_unavailable", wallet_address=wallet_address, error=str(exc)
            )
            return unranked
        if own.total_sessions == 0:
            return unranked

        wallets = await self._repo.list_wallet_addresses(limit=10_000)
        standings = await self._active_standings(wallets)
        higher = sum(1 for s in standings if s.token_balance > own.token_balance)

        return {
            "rank": higher + 1,
            "total_users": len(standings),
            "user_stats": {
                "total_tokens": own.total_tokens_earned,
                "current_streak": own.current_streak,
                "longest_streak": own.longest_streak,
                "total_sessions": own.total_sessions,
                "token_balance": own.token_balance,
            },
        }
