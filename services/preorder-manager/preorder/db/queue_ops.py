"""
PreOrder Manager — Vendor queue counters with optimistic locking

The active-order counter is only ever moved by the admission pipeline, in the
same transaction as the order write that justifies it:
  - READ:  fetch current count + version_id
  - WRITE: UPDATE WHERE vendor_id = :vendor AND version_id = <read_version>
  - If another transaction for the same vendor committed first → StaleDataError
    and the caller's whole unit of work is replayed (see with_optimistic_retry)
"""
import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from preorder.core.config import get_settings
from preorder.core.errors import QueueCounterUnderflow
from preorder.core.optimistic_lock import StaleDataError, with_optimistic_retry
from preorder.models.preorder import VendorQueueState

settings = get_settings()
logger = logging.getLogger(__name__)


async def get_queue_state(db: AsyncSession, vendor_id: str) -> VendorQueueState | None:
    result = await db.execute(
        select(VendorQueueState)
        .where(VendorQueueState.vendor_id == vendor_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_queue_states(db: AsyncSession) -> list[VendorQueueState]:
    result = await db.execute(select(VendorQueueState).order_by(VendorQueueState.vendor_id))
    return list(result.scalars().all())


def _clamped(vendor_id: str, current: int, delta: int) -> int:
    new_count = current + delta
    if new_count < 0:
        logger.warning("%s", QueueCounterUnderflow(vendor_id, current, delta))
        return 0
    return new_count


async def _create_state(db: AsyncSession, vendor_id: str, now: datetime, **values) -> VendorQueueState:
    state = VendorQueueState(
        vendor_id=vendor_id,
        active_order_count=values.get("active_order_count", 0),
        average_prep_minutes=values.get("average_prep_minutes", float(settings.DEFAULT_PREP_MINUTES)),
        version_id=1,
        last_updated=now,
    )
    db.add(state)
    try:
        await db.flush()
    except IntegrityError:
        raise StaleDataError(f"Queue state for vendor '{vendor_id}' was created concurrently.")
    return state


async def _compare_and_set(db: AsyncSession, state: VendorQueueState, now: datetime, **values) -> None:
    vendor_id, current_version = state.vendor_id, state.version_id
    values.update(version_id=current_version + 1, last_updated=now)
    result = await db.execute(
        update(VendorQueueState)
        .where(
            VendorQueueState.vendor_id == vendor_id,
            VendorQueueState.version_id == current_version,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleDataError(f"Queue state for vendor '{vendor_id}' changed concurrently (version {current_version}).")
    for key, value in values.items():
        set_committed_value(state, key, value)


async def adjust_active_count(db: AsyncSession, vendor_id: str, delta: int, now: datetime) -> VendorQueueState:
    """Move a vendor's active count by ``delta`` inside the caller's transaction.

    Does not commit. Raises :class:`StaleDataError` when a concurrent writer
    got there first; the caller's retry wrapper rolls back and replays. A
    count that would go negative is clamped to zero and logged.
    """
    state = await get_queue_state(db, vendor_id)
    if state is None:
        return await _create_state(db, vendor_id, now, active_order_count=_clamped(vendor_id, 0, delta))
    await _compare_and_set(
        db, state, now, active_order_count=_clamped(vendor_id, state.active_order_count, delta),
    )
    return state


@with_optimistic_retry()
async def set_average_prep(
    db: AsyncSession, vendor_id: str, average_prep_minutes: float, now: datetime,
) -> VendorQueueState:
    """Operator-maintained prep average used for the queue delay; the count is left alone."""
    state = await get_queue_state(db, vendor_id)
    if state is None:
        state = await _create_state(db, vendor_id, now, average_prep_minutes=average_prep_minutes)
    else:
        await _compare_and_set(db, state, now, average_prep_minutes=average_prep_minutes)
    await db.commit()
    return state
