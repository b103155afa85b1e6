"""
Recalculation Sweep
===================
Re-runs the AssignmentEngine for every customer of a shop.

Useful for the initial sync or after tier criteria change. This is a
long-running, partially-failable batch: there is no atomicity across
customers, and one customer's failure never stops the sweep. Pagination
stops only when the platform reports no next page.

Each customer gets its own database session, so units share no mutable
state and may run concurrently (bounded by `concurrency`).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tierbridge.adapters.base import BasePlatformAdapter
from tierbridge.config import get_settings
from tierbridge.services.assignment_engine import AssignmentEngine
from tierbridge.services.label_projection import LabelProjector
from tierbridge.services.tier_catalog import TierCatalog

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    updated: int = 0
    errors: int = 0
    synced: int = 0
    sync_errors: int = 0
    pages: int = 0
    cancelled: bool = False


@dataclass
class _UnitOutcome:
    ok: bool = False
    has_tier: bool = False
    synced: bool = False
    sync_failed: bool = False


class RecalculationSweep:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapter: BasePlatformAdapter,
        page_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        sync_labels: bool = False,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.adapter = adapter
        self.page_size = page_size or settings.SWEEP_PAGE_SIZE
        self.concurrency = max(1, concurrency or settings.SWEEP_CONCURRENCY)
        self.sync_labels = sync_labels

    async def recalculate_all(self, shop: str, cancel_event: Optional[asyncio.Event] = None) -> SweepResult:
        """
        Sweep every customer of `shop`.

        Setting `cancel_event` stops the sweep before the next page is
        requested; customers already in flight run to completion.

        Raises StoreNotFoundError before enumerating if the shop is unknown.
        Enumeration failures propagate since the sweep cannot continue
        without the next page.
        """
        async with self.session_factory() as session:
            tiers = await TierCatalog(session).load_active_tiers(shop)
        logger.info(f"[Sweep] Starting recalculation for {shop} with {len(tiers)} active tiers")

        result = SweepResult()
        semaphore = asyncio.Semaphore(self.concurrency)
        cursor = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"[Sweep] Recalculation for {shop} cancelled after {result.pages} pages")
                result.cancelled = True
                break

            page = await self.adapter.list_customers(cursor=cursor, first=self.page_size)
            result.pages += 1

            if self.concurrency == 1:
                outcomes = [await self._run_unit(shop, customer_id, semaphore) for customer_id in page.customer_ids]
            else:
                outcomes = await asyncio.gather(
                    *(self._run_unit(shop, customer_id, semaphore) for customer_id in page.customer_ids),
                    return_exceptions=True,
                )

            for outcome in outcomes:
                result.processed += 1
                if isinstance(outcome, BaseException) or not outcome.ok:
                    result.errors += 1
                    continue
                if outcome.has_tier:
                    result.updated += 1
                if outcome.synced:
                    result.synced += 1
                if outcome.sync_failed:
                    result.sync_errors += 1

            if not page.has_next_page:
                break
            cursor = page.next_cursor

        logger.info(
            f"[Sweep] Recalculation complete for {shop}: {result.processed} processed, "
            f"{result.updated} updated, {result.errors} errors"
        )
        return result

    async def _run_unit(self, shop: str, customer_id: str, semaphore: asyncio.Semaphore) -> _UnitOutcome:
        """One customer, start to finish. Never raises."""
        outcome = _UnitOutcome()

        async with semaphore:
            try:
                await self._process(shop, customer_id, outcome)
            except Exception:
                # Opening or closing the session failed
                logger.exception(f"[Sweep] Session error for customer {customer_id}")
                outcome.ok = False

        return outcome

    async def _process(self, shop: str, customer_id: str, outcome: _UnitOutcome):
        async with self.session_factory() as session:
            try:
                assignment = await AssignmentEngine(session, self.adapter).process_customer(shop, customer_id)
            except Exception:
                logger.exception(f"[Sweep] Error processing customer {customer_id}")
                try:
                    await session.rollback()
                except Exception:
                    logger.exception(f"[Sweep] Rollback failed for customer {customer_id}")
                return

            outcome.ok = True
            outcome.has_tier = assignment.has_tier

            if self.sync_labels:
                try:
                    projection = await LabelProjector(session, self.adapter).project(shop, customer_id)
                    outcome.synced = projection.changed
                except Exception:
                    logger.exception(f"[Sweep] Assignment succeeded but tag sync failed for {customer_id}")
                    outcome.sync_failed = True
