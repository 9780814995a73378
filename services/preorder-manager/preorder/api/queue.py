"""
PreOrder Manager — Vendor queue API

Counts are read-only here: only admissions and terminal transitions move
them. Operators may tune the average prep time used for the queue delay.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.clock import utcnow
from preorder.core.config import get_settings
from preorder.db.database import get_db
from preorder.db.directory import get_vendor
from preorder.db.queue_ops import get_queue_state, list_queue_states, set_average_prep
from preorder.models.directory import Vendor
from preorder.models.preorder import VendorQueueState
from preorder.schemas.preorder import AveragePrepUpdate, QueueStateOut
from preorder.services.change_feed import ChangeFeed, get_feed
from preorder.services.wait_time import estimate_wait_minutes

settings = get_settings()
router = APIRouter(prefix="/queue", tags=["queue"])


def _out(vendor_id: str, state: VendorQueueState | None, vendor: Vendor | None) -> QueueStateOut:
    # wait a customer ordering right now with an unspecified basket would be quoted
    wait = estimate_wait_minutes(state, utcnow(), [], vendor)
    if state is None:
        return QueueStateOut(
            vendor_id=vendor_id,
            active_order_count=0,
            average_prep_minutes=settings.DEFAULT_PREP_MINUTES,
            last_updated=None,
            current_wait_minutes=wait,
        )
    out = QueueStateOut.model_validate(state)
    out.current_wait_minutes = wait
    return out


@router.get("", response_model=list[QueueStateOut])
async def list_all(db: AsyncSession = Depends(get_db)):
    states = await list_queue_states(db)
    vendors = {}
    for state in states:
        vendors[state.vendor_id] = await db.get(Vendor, state.vendor_id)
    return [_out(state.vendor_id, state, vendors[state.vendor_id]) for state in states]


@router.get("/{vendor_id}", response_model=QueueStateOut)
async def get_one(vendor_id: str, db: AsyncSession = Depends(get_db)):
    vendor = await get_vendor(db, vendor_id, require_active=False)
    return _out(vendor_id, await get_queue_state(db, vendor_id), vendor)


@router.put("/{vendor_id}/average-prep", response_model=QueueStateOut)
async def update_average_prep(
    vendor_id: str,
    payload: AveragePrepUpdate,
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_feed),
):
    vendor = await get_vendor(db, vendor_id, require_active=False)
    state = await set_average_prep(db, vendor_id, payload.average_prep_minutes, utcnow())
    await feed.publish_queue_state(state)
    return _out(vendor_id, state, vendor)
