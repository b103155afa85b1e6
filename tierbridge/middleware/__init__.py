# tierbridge/middleware/__init__.py
"""Middleware package for FastAPI."""

from .idempotency import WebhookIdempotencyGuard, get_idempotency_guard

__all__ = ["WebhookIdempotencyGuard", "get_idempotency_guard"]
