"""
Sync API Router.

Operator actions for a shop:
- GET  /status       active tier and assignment counts
- POST /recalculate  re-run tier assignment for every customer
- POST /labels       push every current assignment to customer tags
"""

import logging
from typing import Callable

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tierbridge.adapters.base import BasePlatformAdapter
from tierbridge.config import get_settings
from tierbridge.database import get_db
from tierbridge.exceptions import StoreNotFoundError
from tierbridge.models import Shop
from tierbridge.routers.dependencies import get_adapter_resolver, get_session_factory, require_shop
from tierbridge.services.assignment_store import AssignmentStore
from tierbridge.services.label_projection import LabelProjector
from tierbridge.services.recalculation import RecalculationSweep
from tierbridge.services.tier_catalog import TierCatalog

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncStatusResponse(BaseModel):
    active_tiers: int
    assignments: int


class RecalculationResponse(BaseModel):
    """Counts from a full sweep. Nonzero errors do not fail the request."""
    processed: int
    updated: int
    errors: int
    synced: int = 0
    sync_errors: int = 0
    message: str


class LabelSyncResponse(BaseModel):
    synced: int
    unchanged: int
    errors: int
    message: str


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    shop: Shop = Depends(require_shop),
    db: AsyncSession = Depends(get_db),
):
    active_tiers = await TierCatalog(db).count_active_tiers(shop.domain)
    assignments = await AssignmentStore(db).count_for_shop(shop.domain)
    return SyncStatusResponse(active_tiers=active_tiers, assignments=assignments)


@router.post("/recalculate", response_model=RecalculationResponse)
async def recalculate_tiers(
    sync_labels: bool = Query(False, description="Also push each result to customer tags"),
    shop: Shop = Depends(require_shop),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    resolve_adapter: Callable[..., BasePlatformAdapter] = Depends(get_adapter_resolver),
):
    """
    Recalculate tiers for ALL customers of the shop.
    Can take several minutes for large stores.
    """
    settings = get_settings()

    try:
        async with httpx.AsyncClient(timeout=settings.SHOPIFY_TIMEOUT_SECONDS) as client:
            sweep = RecalculationSweep(session_factory, resolve_adapter(shop, client), sync_labels=sync_labels)
            result = await sweep.recalculate_all(shop.domain)
    except StoreNotFoundError:
        raise HTTPException(status_code=404, detail="Shop not found")

    return RecalculationResponse(
        processed=result.processed,
        updated=result.updated,
        errors=result.errors,
        synced=result.synced,
        sync_errors=result.sync_errors,
        message=(
            f"Recalculation complete: {result.processed} customers processed, "
            f"{result.updated} with a tier, {result.errors} errors"
        ),
    )


@router.post("/labels", response_model=LabelSyncResponse)
async def sync_customer_labels(
    shop: Shop = Depends(require_shop),
    db: AsyncSession = Depends(get_db),
    resolve_adapter: Callable[..., BasePlatformAdapter] = Depends(get_adapter_resolver),
):
    """Push every customer's assigned tier to their Shopify tags."""
    settings = get_settings()

    async with httpx.AsyncClient(timeout=settings.SHOPIFY_TIMEOUT_SECONDS) as client:
        summary = await LabelProjector(db, resolve_adapter(shop, client)).sync_all(shop.domain)

    return LabelSyncResponse(
        synced=summary.synced,
        unchanged=summary.unchanged,
        errors=summary.errors,
        message=f"Sync complete: {summary.synced} customers synced, {summary.errors} errors",
    )
