"""
Error taxonomy for the tier engine.

Per-customer errors (NotFoundError, PlatformTransientError, LabelSyncError)
are counted and skipped by bulk jobs. AssignmentConsistencyError means the
one-row-per-customer invariant was broken upstream and must never be
silently resolved.
"""


class TierBridgeError(Exception):
    """Base class for all engine errors."""
    pass


class NotFoundError(TierBridgeError):
    """A store or customer is unknown to a collaborator."""
    pass


class StoreNotFoundError(NotFoundError):
    """Raised when a shop domain has no registered Shop record."""

    def __init__(self, shop: str):
        self.shop = shop
        super().__init__(f"Shop {shop} is not registered")


class CustomerNotFoundError(NotFoundError):
    """Raised when the platform has no customer with the given id."""

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer {customer_id} not found")


class TierValidationError(TierBridgeError):
    """Invalid tier definition. Definitions reach the engine pre-validated."""
    pass


class PlatformTransientError(TierBridgeError):
    """
    Network or platform failure that may succeed on redelivery.
    Never retried inside the engine.
    """

    def __init__(self, message: str, status_code: int | None = None, retry_after: float | None = None):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class AssignmentConsistencyError(TierBridgeError):
    """More than one assignment row exists for a (shop, customer) pair."""

    def __init__(self, shop: str, customer_id: str, row_count: int):
        self.shop = shop
        self.customer_id = customer_id
        self.row_count = row_count
        super().__init__(
            f"Found {row_count} tier assignments for customer {customer_id} in {shop}; expected at most one"
        )


class LabelSyncError(TierBridgeError):
    """The platform rejected a customer tag update."""

    def __init__(self, customer_id: str, messages: list[str]):
        self.customer_id = customer_id
        self.messages = messages
        super().__init__(f"Failed to update tags for {customer_id}: {', '.join(messages)}")
