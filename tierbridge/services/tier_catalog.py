"""
Tier Catalog
============
Read-only access to a shop's active tier definitions, in evaluation order.
"""

import logging
from typing import List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tierbridge.exceptions import StoreNotFoundError
from tierbridge.models import Shop, CustomerTier

logger = logging.getLogger(__name__)


class TierCatalog:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _ensure_shop(self, shop: str):
        result = await self.session.execute(select(Shop.id).where(Shop.domain == shop))
        if result.scalar_one_or_none() is None:
            raise StoreNotFoundError(shop)

    async def load_active_tiers(self, shop: str) -> List[CustomerTier]:
        """
        Active tiers for the shop, highest priority first.

        Equal priorities are ordered by creation time, then id, so the
        evaluation order is stable across calls. A shop without active
        tiers yields an empty list.
        """
        await self._ensure_shop(shop)

        result = await self.session.execute(
            select(CustomerTier)
            .where(CustomerTier.shop == shop, CustomerTier.active == True)
            .order_by(
                CustomerTier.priority.desc(),
                CustomerTier.created_at.asc(),
                CustomerTier.id.asc(),
            )
        )
        return list(result.scalars().all())

    async def count_active_tiers(self, shop: str) -> int:
        await self._ensure_shop(shop)
        result = await self.session.execute(
            select(func.count(CustomerTier.id)).where(
                CustomerTier.shop == shop,
                CustomerTier.active == True,
            )
        )
        return result.scalar() or 0
