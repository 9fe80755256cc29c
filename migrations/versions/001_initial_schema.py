"""Initial schema: whoop_accounts, whoop_events, whoop_resources, whoop_sleeps

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    # Ensure pgcrypto is available for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # --- whoop_accounts (OAuth credentials, one per Whoop user) ---
    op.create_table(
        "whoop_accounts",
        _id_column(),
        sa.Column("whoop_user_id", sa.BigInteger, nullable=False),
        sa.Column("wallet_address", sa.Text, nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("access_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.UniqueConstraint("whoop_user_id", name="uq_whoop_accounts_whoop_user_id"),
        sa.UniqueConstraint("wallet_address", name="uq_whoop_accounts_wallet_address"),
    )

    # updated_at trigger
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_whoop_accounts_updated_at
            BEFORE UPDATE ON whoop_accounts
            FOR EACH ROW
            EXECUTE FUNCTION update_updated_at_column();
    """)

    # --- whoop_events (append-only webhook audit log) ---
    op.create_table(
        "whoop_events",
        _id_column(),
        sa.Column("whoop_user_id", sa.BigInteger, nullable=False),
        sa.Column("resource_id", sa.Text, nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("trace_id", sa.Text, nullable=True),
        sa.Column("raw_body", sa.Text, nullable=False),
        _timestamp_column("received_at"),
    )
    op.create_index(
        "idx_whoop_events_user_resource", "whoop_events", ["whoop_user_id", "resource_id"]
    )
    op.create_index("idx_whoop_events_received_at", "whoop_events", [sa.text("received_at DESC")])

    # --- whoop_resources (latest-known revision ledger) ---
    # updated_at is set explicitly by the upsert with clock_timestamp() so two
    # touches inside one transaction still advance it; no trigger here.
    op.create_table(
        "whoop_resources",
        _id_column(),
        sa.Column("whoop_user_id", sa.BigInteger, nullable=False),
        sa.Column("resource_id", sa.Text, nullable=False),
        sa.Column("domain", sa.String(64), nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.UniqueConstraint(
            "whoop_user_id",
            "resource_id",
            "domain",
            name="uq_whoop_resources_user_resource_domain",
        ),
    )

    # --- whoop_sleeps (canonical fetched sleep bodies) ---
    op.create_table(
        "whoop_sleeps",
        _id_column(),
        sa.Column("sleep_id", sa.Text, nullable=False),
        sa.Column("whoop_user_id", sa.BigInteger, nullable=False),
        sa.Column("start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.UniqueConstraint("sleep_id", name="uq_whoop_sleeps_sleep_id"),
        sa.CheckConstraint(
            '"end" IS NULL OR start IS NULL OR "end" >= start',
            name="chk_whoop_sleeps_end_after_start",
        ),
    )
    op.create_index(
        "idx_whoop_sleeps_user_start", "whoop_sleeps", ["whoop_user_id", sa.text("start DESC")]
    )
    op.execute("""
        CREATE TRIGGER trg_whoop_sleeps_updated_at
            BEFORE UPDATE ON whoop_sleeps
            FOR EACH ROW
            EXECUTE FUNCTION update_updated_at_column();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_whoop_sleeps_updated_at ON whoop_sleeps")
    op.execute("DROP TRIGGER IF EXISTS trg_whoop_accounts_updated_at ON whoop_accounts")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column")
    op.drop_table("whoop_sleeps")
    op.drop_table("whoop_resources")
    op.drop_table("whoop_events")
    op.drop_table("whoop_accounts")
