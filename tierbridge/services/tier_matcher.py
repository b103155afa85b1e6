"""
Tier matching: the first qualifying tier in priority order wins.
"""

from typing import Optional, Protocol, Sequence
from decimal import Decimal

from tierbridge.adapters.base import CustomerStats


class TierThresholds(Protocol):
    id: str
    min_spent: Decimal
    min_orders: int


def qualifies(stats: CustomerStats, tier: TierThresholds) -> bool:
    # Inclusive: sitting exactly on a boundary earns the tier
    return stats.total_spent >= tier.min_spent and stats.total_orders >= tier.min_orders


def match_tier(stats: CustomerStats, ordered_tiers: Sequence[TierThresholds]) -> Optional[str]:
    """
    Return the id of the first tier the stats qualify for, or None.

    `ordered_tiers` must already be in evaluation order (see
    TierCatalog.load_active_tiers).
    """
    for tier in ordered_tiers:
        if qualifies(stats, tier):
            return tier.id
    return None
