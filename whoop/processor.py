"""Webhook processing pipeline: verify → record → reconcile → sync.

Per delivery:
1. Verify the signature against the raw transport bytes
2. Append the event to the audit log (always, for any accepted delivery)
3. Reconcile the resource ledger from the "<domain>.<action>" type
4. For sleep.updated, fetch the sleep body, upsert it, extract metrics and
   forward them to settlement

Only steps 1 and body validation can reject a delivery. Failures after the
audit write are logged and absorbed so an acknowledged webhook is never
redelivered because of a downstream problem.

The processor keeps no state between deliveries; each decision re-reads
storage, and concurrent deliveries for the same resource are reconciled by
the repository's upserts.
"""

import time

import structlog
from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings
from shared.metrics import webhook_duration_seconds, webhook_events_total
from shared.middleware import violations_from_errors
from settlement.forwarder import SettlementForwarder
from whoop.adapters.sleep_fetcher import SleepFetcher
from whoop.domain.models import WebhookEvent
from whoop.domain.results import (
    FetchResult,
    FetchStatus,
    SignatureCheck,
    SleepSyncRequest,
    WebhookOutcome,
    WebhookResult,
)
from whoop.repository import WhoopRepository
from whoop.signature import check_signature
from whoop.sleep_metrics import extract_sleep_metrics

logger = structlog.get_logger()

SYNCED_DOMAINS = {"sleep"}


class SleepSyncService:
    """Fetch-and-store plus settlement for one sleep resource."""

    def __init__(
        self,
        repo: WhoopRepository,
        fetcher: SleepFetcher,
        forwarder: SettlementForwarder,
    ) -> None:
        self._repo = repo
        self._fetcher = fetcher
        self._forwarder = forwarder

    async def sync(self, request: SleepSyncRequest) -> FetchResult:
        try:
            result = await self._fetcher.fetch_sleep(request.whoop_user_id, request.sleep_id)
        except Exception:
            logger.exception(
                "sleep_sync_failed",
                whoop_user_id=request.whoop_user_id,
                sleep_id=request.sleep_id,
            )
            await self._repo.rollback()
            return FetchResult.failed(request.sleep_id, "unexpected_error")

        if result.status is not FetchStatus.STORED:
            return result

        metrics = extract_sleep_metrics(result.payload or {})
        if metrics is None:
            logger.info("sleep_metrics_extraction_failed", sleep_id=request.sleep_id)
            return result

        try:
            await self._forwarder.forward(request.whoop_user_id, metrics)
        except Exception:
            logger.exception("settlement_forward_failed", sleep_id=request.sleep_id)
        return result


class WebhookProcessor:
    def __init__(
        self,
        repo: WhoopRepository,
        settings: Settings,
        sync_service: SleepSyncService | None = None,
    ) -> None:
        self._repo = repo
        self._settings = settings
        self._sync = sync_service

    async def handle(
        self, signature: str | None, timestamp: str | None, raw_body: bytes
    ) -> WebhookResult:
        start = time.monotonic()
        try:
            return await self._handle(signature, timestamp, raw_body)
        finally:
            webhook_duration_seconds.observe(time.monotonic() - start)

    async def _handle(
        self, signature: str | None, timestamp: str | None, raw_body: bytes
    ) -> WebhookResult:
        secret = self._settings.webhook_secret
        if not secret:
            logger.error("webhook_secret_not_configured")
            return self._reject(WebhookOutcome.MISCONFIGURED, "Server misconfigured")

        check = check_signature(signature, timestamp, raw_body, secret)
        if check is SignatureCheck.MISSING:
            return self._reject(WebhookOutcome.UNAUTHENTICATED, "Missing signature")
        if check is SignatureCheck.INVALID:
            return self._reject(WebhookOutcome.UNAUTHENTICATED, "Invalid signature")

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except PydanticValidationError as exc:
            result = self._reject(WebhookOutcome.MALFORMED, "Malformed webhook body")
            result.violations = violations_from_errors(list(exc.errors()))
            return result

        with structlog.contextvars.bound_contextvars(
            whoop_user_id=event.user_id,
            resource_id=event.resource_id,
            event_type=event.type,
            trace_id=event.trace_id,
        ):
            return await self._process(event, raw_body)

    async def _process(self, event: WebhookEvent, raw_body: bytes) -> WebhookResult:
        event_id = await self._repo.record_event(
            {
                "whoop_user_id": event.user_id,
                "resource_id": event.resource_id,
                "event_type": event.type,
                "trace_id": event.trace_id,
                "raw_body": raw_body.decode("utf-8", errors="replace"),
            }
        )
        await self._repo.commit()
        logger.info("webhook_recorded", event_id=str(event_id))

        domain, action = event.domain, event.action
        ledger_change = await self._reconcile_ledger(event)

        webhook_events_total.labels(domain=domain, action=action, outcome="accepted").inc()
        result = WebhookResult(
            outcome=WebhookOutcome.ACCEPTED,
            event_id=str(event_id),
            domain=domain,
            action=action,
            ledger_change=ledger_change,
        )

        if domain in SYNCED_DOMAINS and action == "updated":
            result.sync = SleepSyncRequest(event.user_id, event.resource_id)
            if self._sync is not None and not self._settings.defer_sleep_sync:
                result.fetch = await self._sync.sync(result.sync)
        return result

    async def _reconcile_ledger(self, event: WebhookEvent) -> str:
        """Apply the event to the resource ledger; returns the change made.

        The event is already recorded, so a ledger failure is logged and
        rolled back rather than raised.
        """
        domain, action = event.domain, event.action
        try:
            if action == "updated":
                await self._repo.touch_resource(event.user_id, event.resource_id, domain)
                change = "touched"
            elif action == "deleted":
                await self._repo.delete_resource(event.user_id, event.resource_id, domain)
                change = "deleted"
            else:
                change = "none"
            await self._repo.commit()
        except Exception:
            logger.exception("resource_ledger_reconcile_failed", domain=domain, action=action)
            await self._repo.rollback()
            return "failed"

        logger.info("resource_ledger_reconciled", domain=domain, action=action, change=change)
        return change

    @staticmethod
    def _reject(outcome: WebhookOutcome, detail: str) -> WebhookResult:
        webhook_events_total.labels(domain="unknown", action="unknown", outcome=outcome.value).inc()
        logger.warning("webhook_rejected", outcome=outcome.value, detail=detail)
        return WebhookResult(outcome=outcome, detail=detail)
