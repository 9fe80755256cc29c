"""Domain models for Whoop webhook ingestion.

- WebhookEvent: the inbound webhook body, validated before the audit write
- Credential: read-only view of a stored OAuth credential
- SleepMetrics: the fixed metric set forwarded to the settlement collaborator
"""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookEvent(BaseModel):
    """Inbound Whoop webhook body.

    type is dot-delimited "<domain>.<action>", e.g. "sleep.updated".
    """

    user_id: int
    id: str | int
    type: str
    trace_id: str | None = None

    @field_validator("type")
    @classmethod
    def require_domain_and_action(cls, v: str) -> str:
        domain, sep, action = v.partition(".")
        if not sep or not domain or not action:
            raise ValueError("type must be '<domain>.<action>'")
        return v

    @property
    def resource_id(self) -> str:
        return str(self.id)

    @property
    def domain(self) -> str:
        return self.type.split(".")[0]

    @property
    def action(self) -> str:
        return self.type.split(".")[1]


class Credential(BaseModel):
    """OAuth credential for one Whoop user, linked to a wallet address."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    whoop_user_id: int
    wallet_address: str
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(None, repr=False)
    access_token_expires_at: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    def public_view(self) -> dict[str, Any]:
        """Credential fields that are safe to return from read endpoints."""
        return {
            "whoop_user_id": self.whoop_user_id,
            "wallet_address": self.wallet_address,
            "has_refresh_token": self.refresh_token is not None,
            "access_token_expires_at": (
                self.access_token_expires_at.isoformat() if self.access_token_expires_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SleepMetrics(BaseModel):
    """Numeric sleep metrics derived from one Whoop sleep payload."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    sleep_duration_minutes: int = Field(ge=0)
    efficiency_percentage: int
    sleep_cycles: int
    deep_sleep_minutes: int
    rem_sleep_minutes: int

    @property
    def date_number(self) -> int:
        """Calendar date as a YYYYMMDD integer, the contract's date key."""
        return int(self.date.strftime("%Y%m%d"))
