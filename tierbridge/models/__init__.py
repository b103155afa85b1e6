"""
SQLAlchemy Models for TierBridge.

This package is organized by domain:
- base.py: Base class and mixins
- shop.py: Connected Shopify stores
- tier.py: Tier definitions and customer assignments
"""

# Base
from tierbridge.models.base import Base, UUIDMixin, TimestampMixin

# Domain models
from tierbridge.models.shop import Shop
from tierbridge.models.tier import CustomerTier, CustomerTierAssignment


__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",

    # Domain
    "Shop",
    "CustomerTier",
    "CustomerTierAssignment",
]
