"""Best-effort forwarding of extracted sleep metrics to the settlement contract.

Sleep data is already persisted when this runs; a settlement failure is
logged and counted, never raised into the ingestion path.
"""

import structlog

from shared.metrics import settlement_submissions_total
from settlement.client import SettlementClient, SettlementError
from whoop.domain.models import SleepMetrics
from whoop.repository import WhoopRepository

logger = structlog.get_logger()


class SettlementForwarder:
    def __init__(self, repo: WhoopRepository, client: SettlementClient) -> None:
        self._repo = repo
        self._client = client

    async def forward(self, whoop_user_id: int, metrics: SleepMetrics) -> str | None:
        """Submit metrics for the wallet linked to whoop_user_id.

        Returns the transaction hash, or None when skipped or failed.
        """
        if not self._client.is_configured():
            settlement_submissions_total.labels(status="skipped").inc()
            logger.info("settlement_skipped_not_configured", whoop_user_id=whoop_user_id)
            return None

        account = await self._repo.get_account(whoop_user_id)
        if account is None or not account.wallet_address:
            settlement_submissions_total.labels(status="skipped").inc()
            logger.info("settlement_skipped_no_wallet", whoop_user_id=whoop_user_id)
            return None

        try:
            tx_hash = await self._client.submit_sleep_data(account.wallet_address, metrics)
        except SettlementError as exc:
            settlement_submissions_total.labels(status="failed").inc()
            logger.warning(
                "settlement_submission_failed",
                whoop_user_id=whoop_user_id,
                wallet_address=account.wallet_address,
                sleep_date=metrics.date.isoformat(),
                error=str(exc),
            )
            return None

        settlement_submissions_total.labels(status="submitted").inc()
        logger.info(
            "settlement_submitted",
            whoop_user_id=whoop_user_id,
            wallet_address=account.wallet_address,
            sleep_date=metrics.date.isoformat(),
            tx_hash=tx_hash,
        )
        return tx_hash
