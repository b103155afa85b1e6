"""
Router Dependencies
====================

Shared FastAPI dependencies. Authentication happens upstream: the gateway
in front of this service resolves the session and forwards the shop
domain in X-Shop-Domain.
"""

from typing import Callable

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tierbridge.adapters.base import BasePlatformAdapter
from tierbridge.adapters.registry import AdapterRegistry
from tierbridge.database import async_session_maker, get_db
from tierbridge.models import Shop


async def require_shop(
    x_shop_domain: str = Header(..., alias="X-Shop-Domain"),
    db: AsyncSession = Depends(get_db),
) -> Shop:
    """
    Dependency that returns the Shop record for the forwarded domain.

    Raises:
        HTTPException(404): If the shop is not registered.
        HTTPException(403): If the shop has been deactivated.
    """
    result = await db.execute(select(Shop).where(Shop.domain == x_shop_domain))
    shop = result.scalar_one_or_none()

    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")

    if not shop.is_active:
        raise HTTPException(status_code=403, detail="Shop is inactive")

    return shop


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that opens one session per customer."""
    return async_session_maker


def get_adapter_resolver() -> Callable[..., BasePlatformAdapter]:
    """Callable (shop, client=None) -> adapter bound to the shop's credentials."""
    return AdapterRegistry.for_shop
