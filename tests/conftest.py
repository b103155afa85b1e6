"""
Shared fixtures: an in-memory SQLite database and a registered test shop.
"""

import os

# Settings are read at import time; set them before tierbridge is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-webhook-secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tierbridge.models import Base, CustomerTier, Shop

TEST_SHOP = "test-shop.myshopify.com"


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def shop(db_session):
    shop = Shop(domain=TEST_SHOP, access_token="shpat_test_token")
    db_session.add(shop)
    await db_session.commit()
    return shop


@pytest.fixture
def make_tier(db_session, shop):
    """Factory for tiers; creation times increase with each call."""
    base_time = datetime(2025, 1, 1)
    counter = {"n": 0}

    async def _make_tier(name, min_spent="0", min_orders=0, priority=0, active=True, discount="5"):
        counter["n"] += 1
        tier = CustomerTier(
            shop=shop.domain,
            name=name,
            min_spent=Decimal(min_spent),
            min_orders=min_orders,
            priority=priority,
            active=active,
            discount_percentage=Decimal(discount),
            created_at=base_time + timedelta(minutes=counter["n"]),
        )
        db_session.add(tier)
        await db_session.commit()
        return tier

    return _make_tier
