"""
Label Projection
================
Mirrors a customer's assignment onto their platform tags as `tier:<name>`.

The tag set is a derived, eventually-consistent view of the assignment
table, never the source of truth. Reconciliation is split in two:

- reconcile_tags(): pure diff, desired tags from observed tags + tier name
- LabelProjector:   reads assignment and tags, writes only when they differ

Write failures are raised to the caller and never retried here.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tierbridge.adapters.base import BasePlatformAdapter
from tierbridge.config import get_settings
from tierbridge.services.assignment_store import AssignmentStore

logger = logging.getLogger(__name__)

DEFAULT_TAG_PREFIX = "tier:"
_WHITESPACE = re.compile(r"\s+")


def tier_tag(tier_name: str, prefix: str = DEFAULT_TAG_PREFIX) -> str:
    """'Gold VIP' -> 'tier:gold-vip'"""
    return f"{prefix}{_WHITESPACE.sub('-', tier_name.strip().lower())}"


def parse_tier_tag(tag: str, prefix: str = DEFAULT_TAG_PREFIX) -> Optional[str]:
    """Slug of the tier a tag denotes, or None for non-tier tags."""
    if not tag.startswith(prefix):
        return None
    return tag[len(prefix):]


def reconcile_tags(
    current_tags: Iterable[str],
    tier_name: Optional[str],
    prefix: str = DEFAULT_TAG_PREFIX,
) -> List[str]:
    """
    Desired tag list: every non-tier tag in its original order, plus the
    tag for `tier_name` when the customer holds a tier.
    """
    desired: List[str] = []
    for tag in current_tags:
        if tag.startswith(prefix) or tag in desired:
            continue
        desired.append(tag)

    if tier_name:
        desired.append(tier_tag(tier_name, prefix))
    return desired


def tags_differ(current_tags: Iterable[str], desired_tags: Iterable[str]) -> bool:
    # Platform tags are an unordered set
    return set(current_tags) != set(desired_tags)


@dataclass
class ProjectionResult:
    customer_id: str
    tier_name: Optional[str]
    tags: List[str]
    changed: bool


@dataclass
class LabelSyncSummary:
    synced: int = 0
    unchanged: int = 0
    errors: int = 0
    failed_customers: List[str] = field(default_factory=list)


class LabelProjector:

    def __init__(self, session: AsyncSession, adapter: BasePlatformAdapter, prefix: Optional[str] = None):
        self.session = session
        self.adapter = adapter
        self.store = AssignmentStore(session)
        self.prefix = prefix or get_settings().TIER_TAG_PREFIX

    async def project(self, shop: str, customer_id: str) -> ProjectionResult:
        """
        Push the customer's current tier to their tags.

        A customer without an assignment just has tier tags stripped.
        """
        assignment = await self.store.find(shop, customer_id)
        tier_name = assignment.tier.name if assignment is not None and assignment.tier else None

        current_tags = await self.adapter.get_customer_tags(customer_id)
        desired_tags = reconcile_tags(current_tags, tier_name, self.prefix)

        if not tags_differ(current_tags, desired_tags):
            logger.debug(f"[LabelSync] Customer {customer_id} tags already reflect tier {tier_name or 'None'}")
            return ProjectionResult(customer_id, tier_name, list(current_tags), changed=False)

        stored_tags = await self.adapter.update_customer_tags(customer_id, desired_tags)
        logger.info(f"[LabelSync] Updated customer {customer_id} with tier: {tier_name or 'None'}")
        return ProjectionResult(customer_id, tier_name, stored_tags, changed=True)

    async def sync_all(self, shop: str) -> LabelSyncSummary:
        """
        Project every customer that currently holds a tier in the shop.

        Per-customer failures are counted and skipped.
        """
        summary = LabelSyncSummary()
        assignments = await self.store.list_for_shop(shop)
        customer_ids = [a.customer_id for a in assignments]

        logger.info(f"[LabelSync] Starting sync for {len(customer_ids)} customers in {shop}")

        for customer_id in customer_ids:
            try:
                result = await self.project(shop, customer_id)
            except Exception:
                logger.exception(f"[LabelSync] Error syncing customer {customer_id}")
                summary.errors += 1
                summary.failed_customers.append(customer_id)
                continue

            if result.changed:
                summary.synced += 1
            else:
                summary.unchanged += 1

        logger.info(
            f"[LabelSync] Sync complete for {shop}: {summary.synced} synced, "
            f"{summary.unchanged} unchanged, {summary.errors} errors"
        )
        return summary
