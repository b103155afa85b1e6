"""
ShopifyPlatformAdapter: Shopify implementation of BasePlatformAdapter.

All Shopify-specific code lives here:
  - Admin GraphQL transport and error mapping
  - Order history for customer stats
  - Customer enumeration (cursor pagination)
  - Customer tag read/write
  - Webhook HMAC verification

The engine never imports this file directly; it is handed an adapter.
"""

import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional

import httpx

from tierbridge.adapters.base import (
    BasePlatformAdapter,
    CustomerPage,
    CustomerStats,
    OrderSnapshot,
)
from tierbridge.config import get_settings
from tierbridge.exceptions import (
    CustomerNotFoundError,
    LabelSyncError,
    PlatformTransientError,
    TierBridgeError,
)
from tierbridge.services.customer_stats import aggregate_customer_stats, parse_amount

logger = logging.getLogger(__name__)

CUSTOMER_GID_PREFIX = "gid://shopify/Customer/"

CUSTOMER_ORDERS_QUERY = """
query getCustomerOrders($id: ID!, $cursor: String) {
  customer(id: $id) {
    id
    orders(first: 250, after: $cursor) {
      edges {
        node {
          id
          totalPriceSet { shopMoney { amount } }
          displayFinancialStatus
          cancelledAt
        }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

CUSTOMERS_PAGE_QUERY = """
query getCustomers($first: Int!, $cursor: String) {
  customers(first: $first, after: $cursor) {
    edges { node { id } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CUSTOMER_TAGS_QUERY = """
query getCustomerTags($id: ID!) {
  customer(id: $id) {
    id
    tags
  }
}
"""

UPDATE_CUSTOMER_TAGS_MUTATION = """
mutation updateCustomerTags($input: CustomerInput!) {
  customerUpdate(input: $input) {
    customer { id tags }
    userErrors { field message }
  }
}
"""


def to_customer_gid(customer_id: Any) -> str:
    """Webhooks send numeric ids; GraphQL wants GIDs."""
    raw = str(customer_id)
    if raw.startswith("gid://"):
        return raw
    return f"{CUSTOMER_GID_PREFIX}{raw}"


class ShopifyPlatformAdapter(BasePlatformAdapter):
    """
    Admin GraphQL client for one shop.

    Pass `client` to share a connection pool across calls (the sweep does);
    otherwise a short-lived client is opened per request.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = settings.SHOPIFY_API_VERSION
        self.timeout = settings.SHOPIFY_TIMEOUT_SECONDS
        self._client = client

    @property
    def platform_name(self) -> str:
        return "shopify"

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    # --- Transport ---

    async def _post(self, payload: Dict) -> httpx.Response:
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return await self._client.post(self.graphql_url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.graphql_url, json=payload, headers=headers)

    async def _graphql(self, query: str, variables: Optional[Dict] = None) -> Dict:
        """
        Execute a GraphQL operation and return its `data` object.

        429, 5xx, network errors, non-JSON bodies and THROTTLED GraphQL
        errors map to PlatformTransientError. No retry happens here.
        """
        try:
            response = await self._post({"query": query, "variables": variables or {}})
        except httpx.HTTPError as e:
            raise PlatformTransientError(f"Shopify request failed for {self.shop_domain}: {e}") from e

        if response.status_code == 429:
            try:
                retry_after = float(response.headers.get("Retry-After", "2.0"))
            except ValueError:
                retry_after = 2.0
            raise PlatformTransientError(
                f"Shopify rate limit hit for {self.shop_domain}",
                status_code=429,
                retry_after=retry_after,
            )
        if response.status_code >= 500:
            raise PlatformTransientError(
                f"Shopify returned {response.status_code} for {self.shop_domain}",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise TierBridgeError(f"Shopify returned {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise PlatformTransientError(
                f"Shopify returned a non-JSON body for {self.shop_domain}",
                status_code=response.status_code,
            ) from e

        errors = body.get("errors")
        if errors:
            logger.error(f"[Shopify] GraphQL errors for {self.shop_domain}: {errors}")
            if any((e.get("extensions") or {}).get("code") == "THROTTLED" for e in errors):
                raise PlatformTransientError(f"Shopify throttled {self.shop_domain}", status_code=429)
            raise TierBridgeError(f"GraphQL Error: {errors[0].get('message', 'Unknown error')}")

        return body.get("data") or {}

    # --- Customer stats ---

    async def fetch_customer_stats(self, customer_id: str) -> CustomerStats:
        """
        Page through every order of the customer and aggregate them.

        Test orders are included on purpose: Shopify leaves them out of
        amountSpent/numberOfOrders, but they count toward tiers.
        """
        orders: List[OrderSnapshot] = []
        cursor = None

        while True:
            data = await self._graphql(CUSTOMER_ORDERS_QUERY, {"id": customer_id, "cursor": cursor})
            customer = data.get("customer")
            if not customer:
                raise CustomerNotFoundError(customer_id)

            connection = customer.get("orders") or {}
            for edge in connection.get("edges", []):
                node = edge["node"]
                amount = ((node.get("totalPriceSet") or {}).get("shopMoney") or {}).get("amount")
                orders.append(OrderSnapshot(
                    order_id=node["id"],
                    total_price=parse_amount(amount),
                    financial_status=node.get("displayFinancialStatus"),
                    cancelled=node.get("cancelledAt") is not None,
                ))

            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not cursor:
                break

        stats = aggregate_customer_stats(orders)
        logger.debug(
            f"[Shopify] Found {len(orders)} orders for {customer_id}, "
            f"{stats.total_orders} qualifying (including test orders)"
        )
        return stats

    # --- Enumeration ---

    async def list_customers(self, cursor: Optional[str] = None, first: int = 50) -> CustomerPage:
        data = await self._graphql(CUSTOMERS_PAGE_QUERY, {"first": first, "cursor": cursor})
        connection = data.get("customers") or {}

        customer_ids = [edge["node"]["id"] for edge in connection.get("edges", [])]
        page_info = connection.get("pageInfo") or {}

        next_cursor = None
        if page_info.get("hasNextPage"):
            next_cursor = page_info.get("endCursor")
            if not next_cursor:
                logger.warning(f"[Shopify] hasNextPage without endCursor for {self.shop_domain}; stopping")

        return CustomerPage(customer_ids=customer_ids, next_cursor=next_cursor)

    # --- Tags ---

    async def get_customer_tags(self, customer_id: str) -> List[str]:
        data = await self._graphql(CUSTOMER_TAGS_QUERY, {"id": customer_id})
        customer = data.get("customer")
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return list(customer.get("tags") or [])

    async def update_customer_tags(self, customer_id: str, tags: List[str]) -> List[str]:
        data = await self._graphql(
            UPDATE_CUSTOMER_TAGS_MUTATION,
            {"input": {"id": customer_id, "tags": tags}},
        )
        result = data.get("customerUpdate") or {}

        user_errors = result.get("userErrors") or []
        if user_errors:
            logger.error(f"[Shopify] Errors updating customer {customer_id}: {user_errors}")
            raise LabelSyncError(customer_id, [e.get("message", "unknown error") for e in user_errors])

        customer = result.get("customer") or {}
        return list(customer.get("tags") or tags)


def verify_shopify_hmac(body: bytes, signature: str, secret: str) -> bool:
    """
    Shopify signs the raw body with HMAC-SHA256 and sends it base64
    encoded in X-Shopify-Hmac-Sha256.
    """
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    computed = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(computed, signature)
