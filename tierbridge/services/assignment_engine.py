"""
Assignment Engine
=================
Recomputes one customer's tier: fetch stats -> match -> persist.

Per-customer state machine:

    NoAssignment --match--> Assigned(tier) --new match--> Assigned(tier')
         ^                        |
         +------- no match -------+

The engine never pushes tags; callers run LabelProjector afterwards so
matching and persistence stay testable without the platform. Errors
propagate: the store is only touched once a tier id is fully computed.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tierbridge.adapters.base import BasePlatformAdapter, CustomerStats
from tierbridge.services.assignment_store import AssignmentStore, UpsertOutcome
from tierbridge.services.tier_catalog import TierCatalog
from tierbridge.services.tier_matcher import match_tier

logger = logging.getLogger(__name__)


class AssignmentOutcome(str, Enum):
    ASSIGNED = "assigned"        # first tier for this customer
    CHANGED = "changed"          # moved to a different tier
    UNCHANGED = "unchanged"      # kept the same tier
    REMOVED = "removed"          # lost their tier
    UNASSIGNED = "unassigned"    # had none, still has none


_UPSERT_OUTCOMES = {
    UpsertOutcome.CREATED: AssignmentOutcome.ASSIGNED,
    UpsertOutcome.UPDATED: AssignmentOutcome.CHANGED,
    UpsertOutcome.UNCHANGED: AssignmentOutcome.UNCHANGED,
}


@dataclass
class AssignmentResult:
    customer_id: str
    tier_id: Optional[str]
    outcome: AssignmentOutcome
    stats: CustomerStats

    @property
    def has_tier(self) -> bool:
        return self.tier_id is not None

    @property
    def message(self) -> str:
        if self.tier_id:
            return f"Customer assigned to tier {self.tier_id}"
        return "Customer removed from all tiers (doesn't meet requirements)"


class AssignmentEngine:

    def __init__(self, session: AsyncSession, adapter: BasePlatformAdapter):
        self.session = session
        self.adapter = adapter
        self.catalog = TierCatalog(session)
        self.store = AssignmentStore(session)

    async def process_customer(self, shop: str, customer_id: str) -> AssignmentResult:
        """Entry point for webhooks and sweeps."""
        stats = await self.adapter.fetch_customer_stats(customer_id)
        logger.info(
            f"[TierAssignment] Customer {customer_id} stats: "
            f"spent={stats.total_spent} orders={stats.total_orders}"
        )
        return await self.apply_stats(shop, customer_id, stats)

    async def apply_stats(self, shop: str, customer_id: str, stats: CustomerStats) -> AssignmentResult:
        tiers = await self.catalog.load_active_tiers(shop)
        tier_id = match_tier(stats, tiers)
        logger.info(f"[TierAssignment] Calculated tier for customer {customer_id}: {tier_id}")

        if tier_id is None:
            removed = await self.store.clear(shop, customer_id)
            outcome = AssignmentOutcome.REMOVED if removed else AssignmentOutcome.UNASSIGNED
        else:
            outcome = _UPSERT_OUTCOMES[await self.store.upsert(shop, customer_id, tier_id)]

        return AssignmentResult(
            customer_id=customer_id,
            tier_id=tier_id,
            outcome=outcome,
            stats=stats,
        )
