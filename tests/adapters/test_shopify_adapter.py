"""
Tests for the Shopify adapter against a mocked Admin GraphQL endpoint.
"""

import base64
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from tierbridge.adapters.shopify import ShopifyPlatformAdapter, to_customer_gid, verify_shopify_hmac
from tierbridge.exceptions import CustomerNotFoundError, LabelSyncError, PlatformTransientError, TierBridgeError

SHOP = "test-shop.myshopify.com"
CUSTOMER = "gid://shopify/Customer/42"


def order_node(n, amount, status, cancelled_at=None):
    return {
        "node": {
            "id": f"gid://shopify/Order/{n}",
            "totalPriceSet": {"shopMoney": {"amount": amount}},
            "displayFinancialStatus": status,
            "cancelledAt": cancelled_at,
        }
    }


def make_adapter(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ShopifyPlatformAdapter(SHOP, "shpat_test_token", client=client)


@pytest.mark.asyncio
async def test_fetch_customer_stats_pages_through_orders():
    seen_cursors = []

    def handler(request):
        variables = json.loads(request.content)["variables"]
        seen_cursors.append(variables["cursor"])
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test_token"

        if variables["cursor"] is None:
            edges = [order_node(1, "100.00", "PAID"), order_node(2, "80.00", "PENDING")]
            page_info = {"hasNextPage": True, "endCursor": "page-2"}
        else:
            edges = [
                order_node(3, "50.00", "PARTIALLY_REFUNDED"),
                order_node(4, "70.00", "PAID", cancelled_at="2025-03-01T00:00:00Z"),
            ]
            page_info = {"hasNextPage": False, "endCursor": "page-2-end"}

        return httpx.Response(200, json={
            "data": {"customer": {"id": CUSTOMER, "orders": {"edges": edges, "pageInfo": page_info}}}
        })

    stats = await make_adapter(handler).fetch_customer_stats(CUSTOMER)

    assert seen_cursors == [None, "page-2"]
    assert stats.total_orders == 2
    assert stats.total_spent == Decimal("150.00")


@pytest.mark.asyncio
async def test_missing_customer_raises_not_found():
    def handler(request):
        return httpx.Response(200, json={"data": {"customer": None}})

    with pytest.raises(CustomerNotFoundError):
        await make_adapter(handler).fetch_customer_stats(CUSTOMER)


@pytest.mark.asyncio
async def test_rate_limit_is_transient():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "4"}, json={})

    with pytest.raises(PlatformTransientError) as exc_info:
        await make_adapter(handler).fetch_customer_stats(CUSTOMER)

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 4.0


@pytest.mark.asyncio
async def test_server_error_is_transient():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(PlatformTransientError):
        await make_adapter(handler).get_customer_tags(CUSTOMER)


@pytest.mark.asyncio
async def test_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(PlatformTransientError):
        await make_adapter(handler).list_customers()


@pytest.mark.asyncio
async def test_throttled_graphql_error_is_transient():
    def handler(request):
        return httpx.Response(200, json={
            "errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]
        })

    with pytest.raises(PlatformTransientError):
        await make_adapter(handler).list_customers()


@pytest.mark.asyncio
async def test_other_graphql_error_is_permanent():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Field 'foo' doesn't exist"}]})

    with pytest.raises(TierBridgeError) as exc_info:
        await make_adapter(handler).list_customers()

    assert not isinstance(exc_info.value, PlatformTransientError)


@pytest.mark.asyncio
async def test_list_customers_returns_cursor_only_when_more_pages():
    responses = iter([
        {"hasNextPage": True, "endCursor": "abc"},
        {"hasNextPage": False, "endCursor": "xyz"},
    ])

    def handler(request):
        variables = json.loads(request.content)["variables"]
        assert variables["first"] == 2
        return httpx.Response(200, json={"data": {"customers": {
            "edges": [{"node": {"id": "gid://shopify/Customer/1"}}, {"node": {"id": "gid://shopify/Customer/2"}}],
            "pageInfo": next(responses),
        }}})

    adapter = make_adapter(handler)
    first = await adapter.list_customers(first=2)
    last = await adapter.list_customers(cursor=first.next_cursor, first=2)

    assert first.customer_ids == ["gid://shopify/Customer/1", "gid://shopify/Customer/2"]
    assert first.next_cursor == "abc"
    assert last.next_cursor is None
    assert not last.has_next_page


@pytest.mark.asyncio
async def test_update_tags_user_errors_raise():
    def handler(request):
        return httpx.Response(200, json={"data": {"customerUpdate": {
            "customer": None,
            "userErrors": [{"field": ["tags"], "message": "Tags is too long"}],
        }}})

    with pytest.raises(LabelSyncError) as exc_info:
        await make_adapter(handler).update_customer_tags(CUSTOMER, ["tier:gold"])

    assert exc_info.value.messages == ["Tags is too long"]


@pytest.mark.asyncio
async def test_update_tags_sends_full_tag_set():
    sent = {}

    def handler(request):
        sent.update(json.loads(request.content)["variables"])
        return httpx.Response(200, json={"data": {"customerUpdate": {
            "customer": {"id": CUSTOMER, "tags": ["newsletter", "tier:gold"]},
            "userErrors": [],
        }}})

    stored = await make_adapter(handler).update_customer_tags(CUSTOMER, ["newsletter", "tier:gold"])

    assert sent["input"] == {"id": CUSTOMER, "tags": ["newsletter", "tier:gold"]}
    assert stored == ["newsletter", "tier:gold"]


def test_to_customer_gid():
    assert to_customer_gid(42) == "gid://shopify/Customer/42"
    assert to_customer_gid("42") == "gid://shopify/Customer/42"
    assert to_customer_gid(CUSTOMER) == CUSTOMER


def test_verify_shopify_hmac():
    body = b'{"id": 1}'
    signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()

    assert verify_shopify_hmac(body, signature, "secret")
    assert not verify_shopify_hmac(body + b" ", signature, "secret")
    assert not verify_shopify_hmac(body, signature, "other-secret")
    assert not verify_shopify_hmac(body, "", "secret")
    assert not verify_shopify_hmac(body, signature, "")


@pytest.mark.asyncio
async def test_malformed_retry_after_still_maps_to_rate_limit():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "soon"}, json={})

    with pytest.raises(PlatformTransientError) as exc_info:
        await make_adapter(handler).list_customers()

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 2.0


@pytest.mark.asyncio
async def test_non_json_body_is_transient():
    def handler(request):
        return httpx.Response(200, text="<html>Shopify is down for maintenance</html>")

    with pytest.raises(PlatformTransientError):
        await make_adapter(handler).get_customer_tags(CUSTOMER)
