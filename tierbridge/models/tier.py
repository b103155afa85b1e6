"""
Tier models - eligibility rules and the per-customer assignment they produce.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, Text, Boolean, Integer, DateTime, Numeric, ForeignKey, Index,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tierbridge.models.base import Base, UUIDMixin, TimestampMixin


class CustomerTier(Base, UUIDMixin, TimestampMixin):
    """
    One eligibility rule for a shop.

    A customer qualifies when both thresholds are met (inclusive).
    Higher priority tiers are evaluated first; equal priorities fall back
    to creation order, then id.
    """
    __tablename__ = "customer_tiers"

    shop: Mapped[str] = mapped_column(ForeignKey("shops.domain", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    # Thresholds
    min_spent: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    min_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0.00"), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    shop_record: Mapped["Shop"] = relationship("Shop", back_populates="tiers")
    assignments: Mapped[List["CustomerTierAssignment"]] = relationship(
        "CustomerTierAssignment", back_populates="tier", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("min_spent >= 0", name="ck_tier_min_spent"),
        CheckConstraint("min_orders >= 0", name="ck_tier_min_orders"),
        CheckConstraint("discount_percentage >= 0 AND discount_percentage <= 100", name="ck_tier_discount"),
        CheckConstraint("priority >= 0", name="ck_tier_priority"),
        Index("idx_tier_shop_active_priority", "shop", "active", "priority"),
    )


class CustomerTierAssignment(Base, UUIDMixin, TimestampMixin):
    """
    The tier a customer currently holds in a shop.
    At most one row exists per (shop, customer_id).
    """
    __tablename__ = "customer_tier_assignments"

    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)  # gid://shopify/Customer/<id>
    tier_id: Mapped[str] = mapped_column(ForeignKey("customer_tiers.id", ondelete="CASCADE"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    tier: Mapped["CustomerTier"] = relationship("CustomerTier", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("shop", "customer_id", name="uq_assignment_shop_customer"),
        Index("idx_assignment_tier", "tier_id"),
    )
