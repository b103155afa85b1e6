"""
Tests for the shop-wide recalculation sweep.

Covers pagination, per-customer error isolation and cancellation.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tierbridge.adapters.base import CustomerPage, CustomerStats
from tierbridge.exceptions import CustomerNotFoundError, LabelSyncError, PlatformTransientError, StoreNotFoundError
from tierbridge.services.assignment_engine import AssignmentOutcome, AssignmentResult
from tierbridge.services.assignment_store import AssignmentStore
from tierbridge.services.recalculation import RecalculationSweep

TEST_SHOP = "test-shop.myshopify.com"


def gid(n):
    return f"gid://shopify/Customer/{n}"


def paged_adapter(pages, stats_by_customer=None, failing=()):
    """
    Adapter serving `pages` (lists of numeric ids) through cursors 'c1', 'c2', ...
    """
    adapter = MagicMock()

    async def list_customers(cursor=None, first=50):
        index = 0 if cursor is None else int(cursor[1:])
        next_cursor = f"c{index + 1}" if index + 1 < len(pages) else None
        return CustomerPage(customer_ids=[gid(n) for n in pages[index]], next_cursor=next_cursor)

    async def fetch_customer_stats(customer_id):
        if customer_id in failing:
            raise PlatformTransientError("Shopify API error: 503", status_code=503)
        spent, orders = (stats_by_customer or {}).get(customer_id, ("0", 0))
        return CustomerStats(total_spent=Decimal(spent), total_orders=orders)

    adapter.list_customers = AsyncMock(side_effect=list_customers)
    adapter.fetch_customer_stats = AsyncMock(side_effect=fetch_customer_stats)
    adapter.get_customer_tags = AsyncMock(return_value=[])
    adapter.update_customer_tags = AsyncMock(side_effect=lambda cid, tags: tags)
    return adapter


class FakeSession:
    """Stands in for both the sessionmaker and the session it yields."""

    def __call__(self):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def rollback(self):
        pass


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_sweep(session_factory, make_tier):
    await make_tier("Bronze", min_spent="0", min_orders=1, priority=1)
    adapter = paged_adapter(
        [[1, 2, 3, 4]],
        stats_by_customer={gid(1): ("20", 1), gid(2): ("20", 1), gid(4): ("0", 0)},
        failing={gid(3)},
    )

    result = await RecalculationSweep(session_factory, adapter).recalculate_all(TEST_SHOP)

    assert result.processed == 4
    assert result.errors == 1
    assert result.updated == 2
    assert result.pages == 1
    assert not result.cancelled


@pytest.mark.asyncio
async def test_follows_cursor_until_last_page(session_factory, make_tier):
    await make_tier("Bronze", priority=1)
    adapter = paged_adapter([[1, 2], [3, 4], [5]])

    result = await RecalculationSweep(session_factory, adapter, page_size=2).recalculate_all(TEST_SHOP)

    assert result.pages == 3
    assert result.processed == 5
    assert result.updated == 5
    cursors = [c.kwargs["cursor"] for c in adapter.list_customers.await_args_list]
    assert cursors == [None, "c1", "c2"]
    assert all(c.kwargs["first"] == 2 for c in adapter.list_customers.await_args_list)


@pytest.mark.asyncio
async def test_empty_page_with_next_cursor_keeps_going(session_factory, make_tier):
    await make_tier("Bronze", priority=1)
    adapter = paged_adapter([[], [1]])

    result = await RecalculationSweep(session_factory, adapter).recalculate_all(TEST_SHOP)

    assert result.pages == 2
    assert result.processed == 1


@pytest.mark.asyncio
async def test_sweep_writes_assignments(session_factory, db_session, make_tier):
    bronze = await make_tier("Bronze", priority=1)
    gold = await make_tier("Gold", min_spent="500", min_orders=5, priority=10)
    adapter = paged_adapter([[1, 2]], stats_by_customer={gid(1): ("750", 8), gid(2): ("5", 1)})

    await RecalculationSweep(session_factory, adapter).recalculate_all(TEST_SHOP)

    store = AssignmentStore(db_session)
    assert (await store.find(TEST_SHOP, gid(1))).tier_id == gold.id
    assert (await store.find(TEST_SHOP, gid(2))).tier_id == bronze.id


@pytest.mark.asyncio
async def test_unknown_shop_fails_before_enumerating(session_factory, shop):
    adapter = paged_adapter([[1]])

    with pytest.raises(StoreNotFoundError):
        await RecalculationSweep(session_factory, adapter).recalculate_all("missing.myshopify.com")

    adapter.list_customers.assert_not_awaited()


@pytest.mark.asyncio
async def test_enumeration_failure_propagates(session_factory, make_tier):
    await make_tier("Bronze", priority=1)
    adapter = paged_adapter([[1]])
    adapter.list_customers = AsyncMock(side_effect=PlatformTransientError("Rate limited", status_code=429))

    with pytest.raises(PlatformTransientError):
        await RecalculationSweep(session_factory, adapter).recalculate_all(TEST_SHOP)


@pytest.mark.asyncio
async def test_cancel_stops_before_next_page(session_factory, make_tier):
    await make_tier("Bronze", priority=1)
    adapter = paged_adapter([[1], [2], [3]])
    cancel = asyncio.Event()
    original = adapter.list_customers.side_effect

    async def list_then_cancel(cursor=None, first=50):
        page = await original(cursor=cursor, first=first)
        cancel.set()
        return page

    adapter.list_customers = AsyncMock(side_effect=list_then_cancel)

    result = await RecalculationSweep(session_factory, adapter).recalculate_all(TEST_SHOP, cancel_event=cancel)

    assert result.cancelled is True
    assert result.pages == 1
    assert result.processed == 1


@pytest.mark.asyncio
async def test_sync_labels_counts_tag_writes_and_failures(session_factory, make_tier):
    await make_tier("Bronze", priority=1)
    adapter = paged_adapter([[1, 2]])

    async def update_tags(customer_id, tags):
        if customer_id == gid(2):
            raise LabelSyncError(customer_id, ["Tags is invalid"])
        return tags

    adapter.update_customer_tags = AsyncMock(side_effect=update_tags)

    result = await RecalculationSweep(session_factory, adapter, sync_labels=True).recalculate_all(TEST_SHOP)

    assert result.processed == 2
    assert result.errors == 0
    assert result.updated == 2
    assert result.synced == 1
    assert result.sync_errors == 1


@pytest.mark.asyncio
async def test_concurrent_units_are_bounded():
    adapter = paged_adapter([list(range(1, 13))])
    in_flight = {"now": 0, "peak": 0}

    async def process_customer(shop, customer_id):
        in_flight["now"] += 1
        in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        await asyncio.sleep(0.01)
        in_flight["now"] -= 1
        if customer_id == gid(5):
            raise CustomerNotFoundError(customer_id)
        return AssignmentResult(customer_id, "tier-1", AssignmentOutcome.ASSIGNED, CustomerStats())

    engine = MagicMock()
    engine.process_customer = AsyncMock(side_effect=process_customer)
    catalog = MagicMock()
    catalog.load_active_tiers = AsyncMock(return_value=[])

    with patch("tierbridge.services.recalculation.AssignmentEngine", return_value=engine), \
         patch("tierbridge.services.recalculation.TierCatalog", return_value=catalog):
        sweep = RecalculationSweep(FakeSession(), adapter, concurrency=3)
        result = await sweep.recalculate_all(TEST_SHOP)

    assert result.processed == 12
    assert result.errors == 1
    assert result.updated == 11
    assert 1 < in_flight["peak"] <= 3


class BrokenRollbackSession(FakeSession):

    async def rollback(self):
        raise ConnectionResetError("connection lost during rollback")


class FlakySessionFactory:
    """Fails to open the sessions whose 1-based open count is in `failing_opens`."""

    def __init__(self, failing_opens):
        self.failing_opens = set(failing_opens)
        self.opens = 0

    def __call__(self):
        self.opens += 1
        if self.opens in self.failing_opens:
            return _UnopenableSession()
        return FakeSession()


class _UnopenableSession(FakeSession):

    async def __aenter__(self):
        raise ConnectionRefusedError("database unavailable")


def patched_engine(failing=()):
    async def process_customer(shop, customer_id):
        await asyncio.sleep(0)
        if customer_id in failing:
            raise PlatformTransientError("Shopify returned 503", status_code=503)
        return AssignmentResult(customer_id, "tier-1", AssignmentOutcome.ASSIGNED, CustomerStats())

    engine = MagicMock()
    engine.process_customer = AsyncMock(side_effect=process_customer)
    catalog = MagicMock()
    catalog.load_active_tiers = AsyncMock(return_value=[])
    return engine, catalog


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [1, 3])
async def test_failed_rollback_is_counted_not_raised(concurrency):
    adapter = paged_adapter([[1, 2, 3, 4, 5, 6]])
    engine, catalog = patched_engine(failing={gid(2), gid(5)})

    with patch("tierbridge.services.recalculation.AssignmentEngine", return_value=engine), \
         patch("tierbridge.services.recalculation.TierCatalog", return_value=catalog):
        sweep = RecalculationSweep(BrokenRollbackSession(), adapter, concurrency=concurrency)
        result = await sweep.recalculate_all(TEST_SHOP)

    assert result.processed == 6
    assert result.errors == 2
    assert result.updated == 4


@pytest.mark.asyncio
async def test_session_open_failure_is_counted_not_raised():
    adapter = paged_adapter([[1, 2, 3, 4]])
    engine, catalog = patched_engine()
    # Open 1 is the catalog pre-check; opens 2 and 4 are customer units
    factory = FlakySessionFactory(failing_opens={2, 4})

    with patch("tierbridge.services.recalculation.AssignmentEngine", return_value=engine), \
         patch("tierbridge.services.recalculation.TierCatalog", return_value=catalog):
        result = await RecalculationSweep(factory, adapter, concurrency=2).recalculate_all(TEST_SHOP)

    assert result.processed == 4
    assert result.errors == 2
    assert result.updated == 2
