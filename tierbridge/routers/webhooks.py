"""
Shopify Order Webhooks.

POST /api/webhooks/shopify/orders/{event}

Every order event for a customer re-runs their tier assignment and then
pushes the result to their tags:

1. Verify the HMAC signature (401 on failure, the only non-200 reply)
2. Resolve the shop and the customer GID
3. Claim the webhook id (skip redeliveries)
4. AssignmentEngine -> LabelProjector

Processing failures are logged and acknowledged with 200. Returning an
error would make Shopify redeliver and amplify load on a struggling
backend. A failed run releases its claim so the id is not recorded as
processed; Shopify does not resend after a 200, but a manual resend of the
same delivery from the admin is processed again.
"""

import json
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tierbridge.adapters.base import BasePlatformAdapter
from tierbridge.adapters.shopify import to_customer_gid, verify_shopify_hmac
from tierbridge.config import get_settings
from tierbridge.middleware.idempotency import WebhookIdempotencyGuard, get_idempotency_guard
from tierbridge.models import Shop
from tierbridge.routers.dependencies import get_adapter_resolver, get_session_factory
from tierbridge.services.assignment_engine import AssignmentEngine
from tierbridge.services.label_projection import LabelProjector

router = APIRouter()
logger = logging.getLogger(__name__)

# Order events that can change a customer's qualifying totals
HANDLED_TOPICS = {
    "orders/create",
    "orders/paid",
    "orders/updated",
    "orders/cancelled",
}


class WebhookAck(BaseModel):
    """Always returned with HTTP 200."""
    status: str
    customer_id: Optional[str] = None
    tier_id: Optional[str] = None
    outcome: Optional[str] = None
    tags_changed: Optional[bool] = None
    detail: Optional[str] = None


def normalize_topic(topic: str) -> str:
    """'ORDERS_CREATE' and 'orders/create' both become 'orders/create'."""
    return topic.strip().lower().replace("_", "/")


async def get_shop(session: AsyncSession, domain: str) -> Shop | None:
    result = await session.execute(
        select(Shop).where(Shop.domain == domain, Shop.is_active == True)
    )
    return result.scalar_one_or_none()


@router.post("/shopify/orders/{event}", response_model=WebhookAck)
async def handle_order_webhook(
    request: Request,
    event: str,
    x_shopify_topic: str = Header("", alias="X-Shopify-Topic"),
    x_shopify_shop_domain: str = Header("", alias="X-Shopify-Shop-Domain"),
    x_shopify_hmac_sha256: str = Header("", alias="X-Shopify-Hmac-Sha256"),
    x_shopify_webhook_id: Optional[str] = Header(None, alias="X-Shopify-Webhook-Id"),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    resolve_adapter: Callable[..., BasePlatformAdapter] = Depends(get_adapter_resolver),
    guard: WebhookIdempotencyGuard = Depends(get_idempotency_guard),
):
    body = await request.body()

    if not verify_shopify_hmac(body, x_shopify_hmac_sha256, get_settings().SHOPIFY_API_SECRET):
        logger.warning(f"[Webhook] Invalid signature for {x_shopify_shop_domain}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    topic = normalize_topic(x_shopify_topic or f"orders/{event}")
    shop_domain = x_shopify_shop_domain
    logger.info(f"[Webhook] Received {topic} for shop {shop_domain}")

    if topic not in HANDLED_TOPICS:
        logger.warning(f"[Webhook] Unexpected topic: {topic}")
        return WebhookAck(status="ignored_topic", detail=topic)

    try:
        payload = json.loads(body)
        customer = payload.get("customer") or {}
        raw_customer_id = customer.get("id")

        if not raw_customer_id:
            logger.info("[Webhook] Order has no customer, skipping tier assignment")
            return WebhookAck(status="no_customer")

        customer_gid = to_customer_gid(raw_customer_id)

        async with session_factory() as session:
            shop = await get_shop(session, shop_domain)
            if shop is None:
                logger.warning(f"[Webhook] Shop {shop_domain} not registered or inactive")
                return WebhookAck(status="shop_not_found", customer_id=customer_gid)

            if not guard.claim(shop_domain, x_shopify_webhook_id):
                return WebhookAck(status="duplicate", customer_id=customer_gid)

            adapter = resolve_adapter(shop)
            logger.info(f"[Webhook] Processing order {payload.get('id')} for customer {customer_gid}")

            # 1. Recompute the tier
            try:
                assignment = await AssignmentEngine(session, adapter).process_customer(shop_domain, customer_gid)
            except Exception as e:
                logger.exception(f"[Webhook] Tier assignment failed for {customer_gid}")
                await session.rollback()
                guard.release(shop_domain, x_shopify_webhook_id)
                return WebhookAck(status="assignment_failed", customer_id=customer_gid, detail=str(e))

            # 2. Push it to the customer's tags
            try:
                projection = await LabelProjector(session, adapter).project(shop_domain, customer_gid)
            except Exception as e:
                logger.exception(f"[Webhook] Assignment succeeded but tag sync failed for {customer_gid}")
                guard.release(shop_domain, x_shopify_webhook_id)
                return WebhookAck(
                    status="sync_failed",
                    customer_id=customer_gid,
                    tier_id=assignment.tier_id,
                    outcome=assignment.outcome.value,
                    detail=str(e),
                )

        return WebhookAck(
            status="processed",
            customer_id=customer_gid,
            tier_id=assignment.tier_id,
            outcome=assignment.outcome.value,
            tags_changed=projection.changed,
        )

    except Exception as e:
        # Never let the transport see a failure
        logger.exception("[Webhook] Error processing webhook")
        return WebhookAck(status="received_with_errors", detail=str(e))
