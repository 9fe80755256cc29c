"""SQLAlchemy ORM models for the four Whoop ingestion tables.

Tables:
- whoop_accounts: one OAuth credential per Whoop user, linked to a wallet
- whoop_events: append-only webhook audit log
- whoop_resources: latest-known revision marker per (user, resource, domain)
- whoop_sleeps: canonical fetched sleep bodies, one row per sleep id
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class WhoopAccountModel(Base):
    __tablename__ = "whoop_accounts"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    whoop_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    wallet_address: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    # Secrets
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )


class WhoopEventModel(Base):
    __tablename__ = "whoop_events"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    whoop_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    resource_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    trace_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_body: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        Index("idx_whoop_events_user_resource", "whoop_user_id", "resource_id"),
        Index("idx_whoop_events_received_at", received_at.desc()),
    )


class WhoopResourceModel(Base):
    __tablename__ = "whoop_resources"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    whoop_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    resource_id: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        UniqueConstraint(
            "whoop_user_id", "resource_id", "domain", name="uq_whoop_resources_user_resource_domain"
        ),
    )


class WhoopSleepModel(Base):
    __tablename__ = "whoop_sleeps"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    sleep_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    whoop_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_whoop_sleeps_user_start", "whoop_user_id", start.desc()),)
