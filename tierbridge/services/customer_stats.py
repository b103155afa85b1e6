"""
Customer Stats Aggregation
==========================
The single authoritative rule for turning raw orders into CustomerStats.

We deliberately recompute from orders instead of trusting the platform's
pre-aggregated customer fields (Shopify's amountSpent / numberOfOrders):
those exclude test orders and disagree with this rule for stores with
non-standard order statuses.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from tierbridge.adapters.base import CustomerStats, OrderSnapshot

QUALIFYING_FINANCIAL_STATUSES = frozenset({
    "PAID",
    "PARTIALLY_PAID",
    "PARTIALLY_REFUNDED",
})


def is_qualifying_order(order: OrderSnapshot) -> bool:
    """Not cancelled, and money has actually been captured."""
    if order.cancelled:
        return False
    return (order.financial_status or "").upper() in QUALIFYING_FINANCIAL_STATUSES


def parse_amount(raw: Optional[str]) -> Decimal:
    """Parse a money string from the platform. Missing or garbage counts as zero."""
    if raw is None or raw == "":
        return Decimal("0")
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return Decimal("0")


def aggregate_customer_stats(orders: Iterable[OrderSnapshot]) -> CustomerStats:
    total_spent = Decimal("0")
    total_orders = 0

    for order in orders:
        if not is_qualifying_order(order):
            continue
        total_orders += 1
        total_spent += order.total_price

    return CustomerStats(total_spent=total_spent, total_orders=total_orders)
