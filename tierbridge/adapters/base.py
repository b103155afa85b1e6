"""
BasePlatformAdapter: The interface the tier engine consumes from a commerce platform.

The engine (AssignmentEngine, LabelProjector, RecalculationSweep) never
imports a platform-specific module. It is handed an adapter and calls the
methods below. One adapter plays three collaborator roles:

- customer stats source   (fetch_customer_stats)
- customer enumerator     (list_customers)
- external label store    (get_customer_tags / update_customer_tags)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional


# ---------------------------------------------------------------------------
# Standardized data models, platform-neutral
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrderSnapshot:
    """The fields of one order that the qualifying-order rule looks at."""
    order_id: str
    total_price: Decimal
    financial_status: Optional[str]   # PAID, PARTIALLY_PAID, PENDING, ...
    cancelled: bool


@dataclass(frozen=True)
class CustomerStats:
    """Aggregate purchase history for one customer. Never persisted."""
    total_spent: Decimal = Decimal("0")
    total_orders: int = 0


@dataclass
class CustomerPage:
    """One page of customer ids from the platform's enumeration."""
    customer_ids: List[str] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def has_next_page(self) -> bool:
        return self.next_cursor is not None


class BasePlatformAdapter(ABC):
    """
    Abstract base class for platform adapters.

    Errors:
        CustomerNotFoundError   the customer does not exist on the platform
        PlatformTransientError  throttling, 5xx or network failure
        LabelSyncError          the platform rejected a tag write
    """

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Unique identifier: 'shopify', ..."""
        pass

    @abstractmethod
    async def fetch_customer_stats(self, customer_id: str) -> CustomerStats:
        """
        Compute a customer's stats from their raw orders.

        Implementations must page through ALL of the customer's orders and
        aggregate them with tierbridge.services.customer_stats so every
        platform applies the same qualifying-order rule.
        """
        pass

    @abstractmethod
    async def list_customers(self, cursor: Optional[str] = None, first: int = 50) -> CustomerPage:
        """
        Return one page of customer ids, starting after `cursor`.

        `next_cursor` is None on the last page. Pages must be stable; a
        duplicate across pages is tolerated, a skipped customer is not.
        """
        pass

    @abstractmethod
    async def get_customer_tags(self, customer_id: str) -> List[str]:
        """Read the customer's current tag set."""
        pass

    @abstractmethod
    async def update_customer_tags(self, customer_id: str, tags: List[str]) -> List[str]:
        """
        Replace the customer's tag set. Returns the tags the platform stored.
        Raises LabelSyncError when the platform rejects the update.
        """
        pass
