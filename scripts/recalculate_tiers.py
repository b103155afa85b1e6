"""
Recalculate every customer's tier for one shop from the command line.

    python scripts/recalculate_tiers.py example.myshopify.com --sync-labels
"""

import argparse
import asyncio
import sys

import httpx
from sqlalchemy import select

from tierbridge.adapters.registry import AdapterRegistry
from tierbridge.config import get_settings
from tierbridge.database import async_session_maker
from tierbridge.models import Shop
from tierbridge.services.recalculation import RecalculationSweep


async def recalculate(shop_domain: str, sync_labels: bool, concurrency: int | None) -> int:
    settings = get_settings()

    async with async_session_maker() as session:
        result = await session.execute(select(Shop).where(Shop.domain == shop_domain))
        shop = result.scalar_one_or_none()

    if shop is None:
        print(f"❌ Shop {shop_domain} not found")
        return 1

    async with httpx.AsyncClient(timeout=settings.SHOPIFY_TIMEOUT_SECONDS) as client:
        adapter = AdapterRegistry.for_shop(shop, client=client)

        print(f"🔄 Recalculating tiers for {shop_domain}...")
        sweep = RecalculationSweep(async_session_maker, adapter, concurrency=concurrency, sync_labels=sync_labels)
        summary = await sweep.recalculate_all(shop_domain)
        print(
            f"✅ {summary.processed} processed, {summary.updated} with a tier, "
            f"{summary.errors} errors ({summary.pages} pages)"
        )

        if sync_labels:
            print(f"🏷️  {summary.synced} customers retagged, {summary.sync_errors} tag sync errors")

    return 0 if summary.errors == 0 else 2


def main():
    parser = argparse.ArgumentParser(description="Recalculate customer tiers for a shop")
    parser.add_argument("shop", help="Shop domain, e.g. example.myshopify.com")
    parser.add_argument("--sync-labels", action="store_true", help="Push each result to customer tags")
    parser.add_argument("--concurrency", type=int, default=None, help="Customers processed in parallel per page")
    args = parser.parse_args()

    sys.exit(asyncio.run(recalculate(args.shop, args.sync_labels, args.concurrency)))


if __name__ == "__main__":
    main()
