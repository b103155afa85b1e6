# tierbridge/middleware/idempotency.py
"""
Webhook de-duplication.

Shopify redelivers a webhook (same X-Shopify-Webhook-Id) whenever it
thinks delivery failed. Tier assignment is idempotent, so a redelivery is
harmless, but each one costs several Admin API calls. This guard claims
the webhook id in Redis and lets the handler skip repeats.

Usage:
    guard = get_idempotency_guard()
    if not guard.claim(shop, webhook_id):
        return {"status": "duplicate"}
    try:
        ...
    except Exception:
        guard.release(shop, webhook_id)   # failed runs are not recorded as done
"""

import logging

from redis.exceptions import RedisError

from tierbridge.redis import get_redis_client
from tierbridge.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class WebhookIdempotencyGuard:
    """
    Redis-backed claim on webhook ids.

    Features:
    - SET NX EX claim, one winner per webhook id
    - Per-shop scoping
    - Fails open when Redis is down (processing twice is safe)
    """

    KEY_PREFIX = "webhook"

    def __init__(self, ttl_seconds: int | None = None):
        self.redis = get_redis_client()
        self.ttl = ttl_seconds or settings.WEBHOOK_DEDUP_TTL_SECONDS

    def _build_key(self, shop: str, webhook_id: str) -> str:
        """Format: webhook:{shop}:{webhook_id}"""
        return f"{self.KEY_PREFIX}:{shop}:{webhook_id}"

    def claim(self, shop: str, webhook_id: str | None) -> bool:
        """
        Returns True if this caller should process the webhook.
        Webhooks without an id cannot be de-duplicated and are always processed.
        """
        if not webhook_id:
            return True

        try:
            claimed = self.redis.set(self._build_key(shop, webhook_id), "1", nx=True, ex=self.ttl)
        except RedisError as e:
            logger.error(f"[Webhook] Idempotency check unavailable, processing anyway: {e}")
            return True

        if not claimed:
            logger.info(f"[Webhook] Duplicate delivery {webhook_id[:8]}... for {shop}, skipping")
        return bool(claimed)

    def release(self, shop: str, webhook_id: str | None) -> bool:
        """Drop a claim so a later delivery with the same id is processed."""
        if not webhook_id:
            return False
        try:
            return self.redis.delete(self._build_key(shop, webhook_id)) > 0
        except RedisError as e:
            logger.error(f"[Webhook] Failed to release webhook claim {webhook_id[:8]}...: {e}")
            return False


# Singleton instance
_idempotency_guard = None


def get_idempotency_guard() -> WebhookIdempotencyGuard:
    """Get or create the webhook idempotency guard singleton."""
    global _idempotency_guard
    if _idempotency_guard is None:
        _idempotency_guard = WebhookIdempotencyGuard()
    return _idempotency_guard
