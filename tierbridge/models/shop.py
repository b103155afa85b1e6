"""
Shop model - represents a Shopify store connected to TierBridge.
"""

from typing import List

from sqlalchemy import String, Text, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tierbridge.models.base import Base, UUIDMixin, TimestampMixin


class Shop(Base, UUIDMixin, TimestampMixin):
    """
    A store the tier engine is keyed on.
    Rows are written by the install flow; the engine only reads them.
    """
    __tablename__ = "shops"

    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)  # example.myshopify.com
    access_token: Mapped[str] = mapped_column(Text, nullable=False)  # Encrypted in production
    platform: Mapped[str] = mapped_column(String(50), default="shopify")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships
    tiers: Mapped[List["CustomerTier"]] = relationship("CustomerTier", back_populates="shop_record", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_shop_domain", "domain"),
    )
