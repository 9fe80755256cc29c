"""Typed outcomes returned across internal pipeline boundaries.

Internal failures (refresh, fetch, extraction, settlement) are values, not
exceptions: callers branch on them and nothing past the audit write is
allowed to surface to the webhook caller.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class SignatureCheck(StrEnum):
    VALID = "valid"
    MISSING = "missing"
    INVALID = "invalid"


class WebhookOutcome(StrEnum):
    ACCEPTED = "accepted"
    UNAUTHENTICATED = "unauthenticated"
    MISCONFIGURED = "misconfigured"
    MALFORMED = "malformed"


class FetchStatus(StrEnum):
    STORED = "stored"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RefreshFailed:
    """Token refresh could not complete. Non-fatal: callers keep the old token."""

    reason: str


@dataclass(frozen=True)
class FetchResult:
    status: FetchStatus
    sleep_id: str
    payload: dict[str, Any] | None = None
    reason: str = ""

    @classmethod
    def stored(cls, sleep_id: str, payload: dict[str, Any]) -> "FetchResult":
        return cls(FetchStatus.STORED, sleep_id, payload=payload)

    @classmethod
    def skipped(cls, sleep_id: str, reason: str) -> "FetchResult":
        return cls(FetchStatus.SKIPPED, sleep_id, reason=reason)

    @classmethod
    def failed(cls, sleep_id: str, reason: str) -> "FetchResult":
        return cls(FetchStatus.FAILED, sleep_id, reason=reason)


@dataclass(frozen=True)
class SleepSyncRequest:
    """A fetch-and-store cycle owed for one sleep resource."""

    whoop_user_id: int
    sleep_id: str


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    detail: str = ""
    event_id: str | None = None
    domain: str | None = None
    action: str | None = None
    ledger_change: str | None = None  # touched, deleted, none, failed
    sync: SleepSyncRequest | None = None
    fetch: FetchResult | None = None
    violations: list[dict] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.outcome is WebhookOutcome.ACCEPTED
