"""
Assignment Store
================
Durable tier assignments keyed on (shop, customer_id).

Every operation is idempotent: repeating a call with the same arguments
changes nothing after the first effective call. Webhook redelivery and
overlapping sweeps rely on this.

The "one row per customer" invariant is enforced by the
uq_assignment_shop_customer constraint plus a single conditional
INSERT ... ON CONFLICT DO UPDATE ... WHERE tier_id <> excluded.tier_id,
so concurrent writers for the same customer converge without a
check-then-write race.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tierbridge.exceptions import AssignmentConsistencyError
from tierbridge.models import CustomerTierAssignment
from tierbridge.models.base import new_uuid

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class AssignmentStore:

    def __init__(self, session: AsyncSession):
        self.session = session

    def _dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    async def find(self, shop: str, customer_id: str) -> Optional[CustomerTierAssignment]:
        """
        Current assignment with its tier loaded, or None.

        Raises AssignmentConsistencyError when more than one row exists;
        picking one would hide an upstream bug.
        """
        result = await self.session.execute(
            select(CustomerTierAssignment)
            .options(selectinload(CustomerTierAssignment.tier))
            .where(
                CustomerTierAssignment.shop == shop,
                CustomerTierAssignment.customer_id == customer_id,
            )
            .execution_options(populate_existing=True)
        )
        rows = result.scalars().all()

        if len(rows) > 1:
            logger.error(f"[TierAssignment] {len(rows)} assignment rows for {customer_id} in {shop}")
            raise AssignmentConsistencyError(shop, customer_id, len(rows))
        return rows[0] if rows else None

    async def upsert(self, shop: str, customer_id: str, tier_id: str) -> UpsertOutcome:
        """
        Insert, replace or leave alone the customer's assignment.

        assigned_at is only refreshed when the tier actually changes.
        """
        existing = await self.find(shop, customer_id)
        if existing is not None and existing.tier_id == tier_id:
            logger.info(f"[TierAssignment] Customer {customer_id} already has tier {tier_id}, no change needed")
            return UpsertOutcome.UNCHANGED

        previous_tier_id = existing.tier_id if existing is not None else None
        now = datetime.utcnow()
        insert_fn = _UPSERT_DIALECTS.get(self._dialect_name())

        if insert_fn is not None:
            stmt = insert_fn(CustomerTierAssignment).values(
                id=new_uuid(),
                shop=shop,
                customer_id=customer_id,
                tier_id=tier_id,
                assigned_at=now,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["shop", "customer_id"],
                set_={
                    "tier_id": stmt.excluded.tier_id,
                    "assigned_at": stmt.excluded.assigned_at,
                    "updated_at": stmt.excluded.updated_at,
                },
                where=CustomerTierAssignment.tier_id != stmt.excluded.tier_id,
            )
            await self.session.execute(stmt)
        elif existing is None:
            # No native upsert; the unique constraint still rejects a duplicate insert
            self.session.add(CustomerTierAssignment(
                shop=shop,
                customer_id=customer_id,
                tier_id=tier_id,
                assigned_at=now,
            ))
        else:
            existing.tier_id = tier_id
            existing.assigned_at = now

        await self.session.commit()

        if existing is None:
            logger.info(f"[TierAssignment] Assigned tier {tier_id} to customer {customer_id}")
            return UpsertOutcome.CREATED

        logger.info(
            f"[TierAssignment] Updated customer {customer_id} from tier {previous_tier_id} to {tier_id}"
        )
        return UpsertOutcome.UPDATED

    async def clear(self, shop: str, customer_id: str) -> bool:
        """Delete the customer's assignment. Returns True if a row was removed."""
        result = await self.session.execute(
            delete(CustomerTierAssignment).where(
                CustomerTierAssignment.shop == shop,
                CustomerTierAssignment.customer_id == customer_id,
            )
        )
        await self.session.commit()

        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info(f"[TierAssignment] Removed tier for customer {customer_id}")
        return removed

    async def list_for_shop(self, shop: str) -> List[CustomerTierAssignment]:
        result = await self.session.execute(
            select(CustomerTierAssignment)
            .options(selectinload(CustomerTierAssignment.tier))
            .where(CustomerTierAssignment.shop == shop)
            .order_by(CustomerTierAssignment.customer_id)
        )
        return list(result.scalars().all())

    async def count_for_shop(self, shop: str) -> int:
        result = await self.session.execute(
            select(func.count(CustomerTierAssignment.id)).where(CustomerTierAssignment.shop == shop)
        )
        return result.scalar() or 0
