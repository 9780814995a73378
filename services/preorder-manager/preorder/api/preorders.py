"""
PreOrder Manager — Pre-order API

Flow (create):
  1. Vendor + customer tier lookup
  2. Admission window check (skipped with override_admission)
  3. Wait estimate from the vendor's live queue
  4. Order insert + queue increment in one transaction
  5. Change-feed snapshot after commit
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.clock import ensure_utc, format_duration, utcnow
from preorder.db.database import get_db
from preorder.db.directory import get_tier, get_vendor
from preorder.db.preorder_ops import create_preorder, get_preorder, list_preorders, transition_preorder
from preorder.db.queue_ops import get_queue_state
from preorder.models.preorder import PreOrderStatus
from preorder.schemas.preorder import (
    EarliestPickupOut,
    PreOrderCreate,
    PreOrderOut,
    StatusUpdate,
    WaitEstimateOut,
    WaitEstimateRequest,
)
from preorder.services.admission import advance_minutes, earliest_pickup
from preorder.services.change_feed import ChangeFeed, get_feed
from preorder.services.filters import PreOrderFilter
from preorder.services.notifier import NotificationSender, get_notifier
from preorder.services.wait_time import estimate_wait_minutes, matching_peak_window

router = APIRouter(prefix="/preorders", tags=["preorders"])


@router.post("", response_model=PreOrderOut, status_code=status.HTTP_201_CREATED)
async def create(
    payload: PreOrderCreate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    """Admit a pre-order. 409 with ``earliest_pickup`` when booked too late."""
    return await create_preorder(db, payload, feed=feed)


@router.get("", response_model=list[PreOrderOut])
async def list_all(
    date_range: str = Query("all", pattern="^(today|tomorrow|week|all)$"),
    status_: PreOrderStatus | None = Query(None, alias="status"),
    vendor_id: str | None = None,
    recurring: bool | None = None,
    search: str | None = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    flt = PreOrderFilter(
        date_range=date_range, status=status_, vendor_id=vendor_id, recurring=recurring, search=search,
    )
    return await list_preorders(db, flt)


@router.post("/estimate", response_model=WaitEstimateOut)
async def estimate(payload: WaitEstimateRequest, db: AsyncSession = Depends(get_db)):
    """Preview the wait a new order would be quoted right now."""
    vendor = await get_vendor(db, payload.vendor_id)
    queue_state = await get_queue_state(db, vendor.id)
    items = [item.model_dump() for item in payload.items]
    minutes = estimate_wait_minutes(queue_state, payload.pickup_time, items, vendor)
    window = matching_peak_window(payload.pickup_time)
    return WaitEstimateOut(
        vendor_id=vendor.id,
        estimated_wait_minutes=minutes,
        display=format_duration(minutes),
        peak_window=window.name if window else None,
    )


@router.get("/earliest-pickup", response_model=EarliestPickupOut)
async def earliest(
    customer_id: str,
    at: datetime | None = None,
    db: AsyncSession = Depends(get_db),
):
    tier = await get_tier(db, customer_id)
    now = ensure_utc(at) if at else utcnow()
    return EarliestPickupOut(
        customer_id=customer_id,
        tier=tier,
        advance_minutes=advance_minutes(tier),
        earliest_pickup=earliest_pickup(tier, now),
    )


@router.get("/{order_id}", response_model=PreOrderOut)
async def get_one(order_id: str, db: AsyncSession = Depends(get_db)):
    return await get_preorder(db, order_id)


@router.post("/{order_id}/status", response_model=PreOrderOut)
async def change_status(
    order_id: str,
    payload: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
    feed: ChangeFeed = Depends(get_feed),
):
    """Advance, cancel or mark no-show. 409 if the status already moved on."""
    return await transition_preorder(db, order_id, payload.status, notifier=notifier, feed=feed)
