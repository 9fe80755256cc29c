"""Whoop repository: all DB access for webhook ingestion.

Encapsulates credential upserts and token rotation, the append-only event
log, the resource ledger, and sleep record upserts. Every write that can race
with a concurrent delivery is a single INSERT ... ON CONFLICT statement, so
the last statement to commit wins without application-level locking.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from whoop.domain.orm import (
    WhoopAccountModel,
    WhoopEventModel,
    WhoopResourceModel,
    WhoopSleepModel,
)


class WhoopRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    # --- Credentials ---

    async def upsert_account(self, record: dict[str, Any]) -> dict[str, Any]:
        """Insert or replace the credential for a Whoop user id.

        Token fields and the wallet link are replaced; the row identity is kept.
        Raises IntegrityError if the wallet belongs to another Whoop user.
        """
        stmt = pg_insert(WhoopAccountModel).values(record)
        stmt = stmt.on_conflict_do_update(
            index_elements=["whoop_user_id"],
            set_={
                "wallet_address": stmt.excluded.wallet_address,
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "access_token_expires_at": stmt.excluded.access_token_expires_at,
                "updated_at": func.now(),
            },
        ).returning(WhoopAccountModel.id, text("(xmax = 0) AS was_inserted"))
        result = await self.session.execute(stmt)
        row = result.one()
        return {"id": row[0], "was_inserted": row[1]}

    async def get_account(self, whoop_user_id: int) -> WhoopAccountModel | None:
        result = await self.session.execute(
            select(WhoopAccountModel).where(WhoopAccountModel.whoop_user_id == whoop_user_id)
        )
        return result.scalar_one_or_none()

    async def get_account_by_wallet(self, wallet_address: str) -> WhoopAccountModel | None:
        result = await self.session.execute(
            select(WhoopAccountModel).where(WhoopAccountModel.wallet_address == wallet_address)
        )
        return result.scalar_one_or_none()

    async def update_tokens(
        self,
        whoop_user_id: int,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> WhoopAccountModel | None:
        """Persist a refreshed token set. Last write wins across racing refreshes."""
        stmt = (
            update(WhoopAccountModel)
            .where(WhoopAccountModel.whoop_user_id == whoop_user_id)
            .values(
                access_token=access_token,
                refresh_token=refresh_token,
                access_token_expires_at=expires_at,
                updated_at=func.now(),
            )
            .returning(WhoopAccountModel)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_wallet_addresses(self, limit: int) -> list[str]:
        result = await self.session.execute(
            select(WhoopAccountModel.wallet_address)
            .order_by(WhoopAccountModel.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # --- Event log ---

    async def record_event(self, record: dict[str, Any]) -> UUID:
        """Append a webhook to the audit log. Insert-only."""
        stmt = pg_insert(WhoopEventModel).values(record).returning(WhoopEventModel.id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    # --- Resource ledger ---

    async def touch_resource(self, whoop_user_id: int, resource_id: str, domain: str) -> None:
        """Create the ledger entry, or advance updated_at if it already exists."""
        stmt = pg_insert(WhoopResourceModel).values(
            whoop_user_id=whoop_user_id, resource_id=resource_id, domain=domain
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_whoop_resources_user_resource_domain",
            set_={"updated_at": func.clock_timestamp()},
        )
        await self.session.execute(stmt)

    async def delete_resource(self, whoop_user_id: int, resource_id: str, domain: str) -> int:
        result = await self.session.execute(
            delete(WhoopResourceModel).where(
                WhoopResourceModel.whoop_user_id == whoop_user_id,
                WhoopResourceModel.resource_id == resource_id,
                WhoopResourceModel.domain == domain,
            )
        )
        return result.rowcount

    async def get_resource(
        self, whoop_user_id: int, resource_id: str, domain: str
    ) -> WhoopResourceModel | None:
        result = await self.session.execute(
            select(WhoopResourceModel).where(
                WhoopResourceModel.whoop_user_id == whoop_user_id,
                WhoopResourceModel.resource_id == resource_id,
                WhoopResourceModel.domain == domain,
            )
        )
        return result.scalar_one_or_none()

    # --- Sleep records ---

    async def upsert_sleep(self, record: dict[str, Any]) -> dict[str, Any]:
        """Insert or overwrite a sleep record by sleep_id. Returns was_inserted flag.

        A fetch without start/end keeps previously stored values for those columns.
        """
        stmt = pg_insert(WhoopSleepModel).values(record)
        stmt = stmt.on_conflict_do_update(
            index_elements=["sleep_id"],
            set_={
                "whoop_user_id": stmt.excluded.whoop_user_id,
                "start": func.coalesce(stmt.excluded["start"], WhoopSleepModel.start),
                "end": func.coalesce(stmt.excluded["end"], WhoopSleepModel.end),
                "raw_payload": stmt.excluded.raw_payload,
                "updated_at": func.now(),
            },
        ).returning(WhoopSleepModel.id, text("(xmax = 0) AS was_inserted"))
        result = await self.session.execute(stmt)
        row = result.one()
        return {"id": row[0], "was_inserted": row[1]}

    async def get_latest_sleep(self, whoop_user_id: int) -> WhoopSleepModel | None:
        """Most recent sleep record for a user by start time."""
        result = await self.session.execute(
            select(WhoopSleepModel)
            .where(WhoopSleepModel.whoop_user_id == whoop_user_id)
            .order_by(WhoopSleepModel.start.desc().nulls_last())
            .limit(1)
        )
        return result.scalar_one_or_none()
