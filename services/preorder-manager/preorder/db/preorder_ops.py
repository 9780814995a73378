"""
PreOrder Manager — Order admission and status pipeline

Every write here is one unit of work that either commits completely or not
at all:
  - admission: order insert + queue increment (+ spawned template)
  - transition: conditional status UPDATE + queue decrement on terminal states

Both are replayed from the top by ``with_optimistic_retry`` when a concurrent
writer for the same vendor or order commits first. Notifications and change
feed events go out only after the commit.
"""
import logging
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from preorder.core.clock import ensure_utc, minutes_between, to_local, utcnow
from preorder.core.errors import InvalidArgument, InvalidTransition, OrderNotFound
from preorder.core.optimistic_lock import StaleDataError, with_optimistic_retry
from preorder.db.directory import get_customer, get_vendor
from preorder.db.queue_ops import adjust_active_count, get_queue_state
from preorder.models.directory import CustomerTier
from preorder.models.preorder import (
    TERMINAL_STATUSES,
    PreOrder,
    PreOrderStatus,
    RecurringTemplate,
    VendorQueueState,
    can_transition,
)
from preorder.schemas.preorder import PreOrderCreate
from preorder.services.admission import validate_pickup_time
from preorder.services.change_feed import ChangeFeed
from preorder.services.filters import PreOrderFilter, filter_preorders
from preorder.services.notifier import NotificationSender, get_notifier
from preorder.services.recurring import build_template
from preorder.services.wait_time import estimate_wait_minutes

logger = logging.getLogger(__name__)

# Statuses that notify the customer; the rest are administrative
NOTIFY_ON: dict[PreOrderStatus, str] = {
    PreOrderStatus.PREPARING: "preparing",
    PreOrderStatus.READY: "ready",
}


# ── Reads ────────────────────────────────────────────────────

async def get_preorder(db: AsyncSession, order_id: str) -> PreOrder:
    result = await db.execute(
        select(PreOrder)
        .where(PreOrder.id == order_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def list_preorders(db: AsyncSession, flt: PreOrderFilter, now: datetime | None = None) -> list[PreOrder]:
    """Orders matching the console filters, soonest pickup first."""
    query = select(PreOrder).order_by(PreOrder.pickup_time, PreOrder.id)
    if flt.vendor_id:
        query = query.where(PreOrder.vendor_id == flt.vendor_id)
    if flt.status is not None:
        query = query.where(PreOrder.status == flt.status)
    if flt.recurring is not None:
        query = query.where(PreOrder.is_recurring == flt.recurring)
    result = await db.execute(query)
    return filter_preorders(result.scalars().all(), flt, ensure_utc(now or utcnow()))


# ── Admission ────────────────────────────────────────────────

@with_optimistic_retry()
async def _admit(
    db: AsyncSession,
    request: PreOrderCreate,
    *,
    order_id: str,
    template_id: str,
    recurring_template_id: str | None,
    validate: bool,
    now: datetime,
) -> tuple[PreOrder, VendorQueueState, RecurringTemplate | None]:
    vendor = await get_vendor(db, request.vendor_id)
    customer = await get_customer(db, request.customer_id)
    tier = CustomerTier(customer.tier) if customer else CustomerTier.STANDARD
    pickup_time = ensure_utc(request.pickup_time)

    if validate:
        validate_pickup_time(pickup_time, tier, now)

    items = [item.model_dump() for item in request.items]

    # Spawned template is validated before anything is written
    template = None
    if request.is_recurring and recurring_template_id is None:
        template = build_template(
            customer_id=request.customer_id,
            vendor_id=vendor.id,
            items=items,
            pickup_time_of_day=to_local(pickup_time).strftime("%H:%M"),
            days_of_week=request.days_of_week,
            total_weeks=request.total_weeks,
            now=now,
            notes=request.notes,
            total_amount=request.total_amount,
            source_preorder_id=order_id,
            template_id=template_id,
        )

    queue_state = await get_queue_state(db, vendor.id)
    estimate = estimate_wait_minutes(queue_state, pickup_time, items, vendor)

    order = PreOrder(
        id=order_id,
        customer_id=request.customer_id,
        customer_name=customer.name if customer else None,
        vendor_id=vendor.id,
        vendor_name=vendor.name,
        items=items,
        pickup_time=pickup_time,
        status=PreOrderStatus.PENDING,
        estimated_wait_minutes=estimate,
        is_recurring=template is not None or recurring_template_id is not None,
        recurring_template_id=template.id if template is not None else recurring_template_id,
        notes=request.notes,
        total_amount=request.total_amount,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    if template is not None:
        db.add(template)

    queue_state = await adjust_active_count(db, vendor.id, 1, now)
    await db.commit()
    return order, queue_state, template


async def create_preorder(
    db: AsyncSession,
    request: PreOrderCreate,
    *,
    now: datetime | None = None,
    validate: bool = True,
    recurring_template_id: str | None = None,
    feed: ChangeFeed | None = None,
) -> PreOrder:
    """
    Admit a pre-order: admission window check, wait estimate, persist as
    ``pending`` and bump the vendor's active count in one transaction.

    ``validate=False`` (or ``request.override_admission``) skips the
    admission window for operator scheduling. ``recurring_template_id`` links
    an order materialized from an existing template; otherwise a recurring
    request spawns its own template.

    Raises VendorNotFound, PickupTooSoon or InvalidArgument before any write.
    """
    now = ensure_utc(now or utcnow())
    order, queue_state, template = await _admit(
        db,
        request,
        order_id=str(uuid.uuid4()),
        template_id=str(uuid.uuid4()),
        recurring_template_id=recurring_template_id,
        validate=validate and not request.override_admission,
        now=now,
    )
    logger.info(
        "Pre-order %s admitted for vendor %s (pickup %s, estimate %d min)",
        order.id, order.vendor_id, order.pickup_time.isoformat(), order.estimated_wait_minutes,
    )
    if template is not None:
        logger.info("Recurring template %s created from pre-order %s", template.id, order.id)

    if feed is not None:
        await feed.publish_preorder(order)
        await feed.publish_queue_state(queue_state)
        if template is not None:
            await feed.publish_template(template)
    return order


# ── Status transitions ───────────────────────────────────────

@with_optimistic_retry()
async def _apply_transition(
    db: AsyncSession, order_id: str, new_status: PreOrderStatus, now: datetime,
) -> tuple[PreOrder, VendorQueueState | None]:
    order = await get_preorder(db, order_id)
    current = PreOrderStatus(order.status)
    if not can_transition(current, new_status):
        raise InvalidTransition(order_id, current.value, new_status.value)

    values: dict = {"status": new_status, "updated_at": now}
    if new_status is PreOrderStatus.DELIVERED:
        values["actual_wait_minutes"] = minutes_between(order.created_at, now)

    # WHERE status = <read status>: a concurrent transition makes this match nothing
    result = await db.execute(
        update(PreOrder)
        .where(PreOrder.id == order_id, PreOrder.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleDataError(f"Pre-order '{order_id}' changed status concurrently.")
    for key, value in values.items():
        set_committed_value(order, key, value)

    queue_state = None
    if new_status in TERMINAL_STATUSES:
        queue_state = await adjust_active_count(db, order.vendor_id, -1, now)

    await db.commit()
    return order, queue_state


async def _notify(notifier: NotificationSender, order: PreOrder, kind: str) -> None:
    payload = {
        "order_id": order.id,
        "vendor_id": order.vendor_id,
        "vendor_name": order.vendor_name,
        "pickup_time": ensure_utc(order.pickup_time).isoformat(),
    }
    try:
        await notifier.send(order.customer_id, kind, payload)
    except Exception as exc:
        # the transition is committed; delivery is the sender's problem
        logger.warning("Failed to send %s notification for pre-order %s: %s", kind, order.id, exc)


async def transition_preorder(
    db: AsyncSession,
    order_id: str,
    new_status: PreOrderStatus | str,
    *,
    now: datetime | None = None,
    notifier: NotificationSender | None = None,
    feed: ChangeFeed | None = None,
) -> PreOrder:
    """
    Move a pre-order along its lifecycle.

    Raises OrderNotFound, or InvalidTransition with the order left unchanged.
    Delivery records the actual wait; terminal statuses release the vendor's
    queue slot; ``preparing`` and ``ready`` notify the customer.
    """
    try:
        new_status = PreOrderStatus(new_status)
    except ValueError:
        raise InvalidArgument(f"Unknown pre-order status: {new_status!r}") from None

    now = ensure_utc(now or utcnow())
    order, queue_state = await _apply_transition(db, order_id, new_status, now)
    logger.info("Pre-order %s → %s", order.id, new_status.value)

    if feed is not None:
        await feed.publish_preorder(order)
        if queue_state is not None:
            await feed.publish_queue_state(queue_state)

    kind = NOTIFY_ON.get(new_status)
    if kind:
        await _notify(notifier or get_notifier(), order, kind)
    return order
