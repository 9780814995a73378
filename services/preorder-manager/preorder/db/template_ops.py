"""
PreOrder Manager — Recurring templates and daily materialization

Templates are operator-managed config data. ``materialize_due_templates`` is
driven once a day by Celery beat (or the manual API trigger) and funnels every
due template through the normal admission pipeline. By itself it does not
guard against being run twice on the same day; the Celery task passes
``skip_materialized`` so its retries only pick up templates still missing
that day's order.
"""
import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from preorder.core.clock import ensure_utc, to_local, utcnow
from preorder.core.errors import PreOrderError, TemplateNotFound
from preorder.db.directory import get_vendor
from preorder.db.preorder_ops import create_preorder
from preorder.models.preorder import PreOrder, RecurringTemplate
from preorder.schemas.preorder import PreOrderCreate, TemplateCreate, TemplateUpdate
from preorder.services.change_feed import ChangeFeed
from preorder.services.recurring import (
    build_template,
    compute_next_execution,
    is_due,
    is_exhausted,
    normalize_days,
    normalize_time_of_day,
    pickup_for,
    validate_total_weeks,
)

logger = logging.getLogger(__name__)


async def get_template(db: AsyncSession, template_id: str) -> RecurringTemplate:
    result = await db.execute(
        select(RecurringTemplate)
        .where(RecurringTemplate.id == template_id)
        .execution_options(populate_existing=True)
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise TemplateNotFound(template_id)
    return template


async def list_templates(
    db: AsyncSession, vendor_id: str | None = None, active: bool | None = None,
) -> list[RecurringTemplate]:
    query = (
        select(RecurringTemplate)
        .order_by(RecurringTemplate.created_at, RecurringTemplate.id)
        .execution_options(populate_existing=True)
    )
    if vendor_id:
        query = query.where(RecurringTemplate.vendor_id == vendor_id)
    if active is not None:
        query = query.where(RecurringTemplate.active == active)
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_template(
    db: AsyncSession,
    request: TemplateCreate,
    *,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> RecurringTemplate:
    """Validate and store a template; raises InvalidArgument or VendorNotFound."""
    now = ensure_utc(now or utcnow())
    vendor = await get_vendor(db, request.vendor_id)
    template = build_template(
        customer_id=request.customer_id,
        vendor_id=vendor.id,
        items=[item.model_dump() for item in request.items],
        pickup_time_of_day=request.pickup_time_of_day,
        days_of_week=request.days_of_week,
        total_weeks=request.total_weeks,
        now=now,
        notes=request.notes,
        total_amount=request.total_amount,
        active=request.active,
    )
    db.add(template)
    await db.commit()
    logger.info("Recurring template %s created for vendor %s (%s)", template.id, vendor.id, template.days_of_week)

    if feed is not None:
        await feed.publish_template(template)
    return template


async def toggle_active(
    db: AsyncSession,
    template_id: str,
    active: bool,
    *,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> RecurringTemplate:
    """Flip the active flag only. ``next_execution`` is left as is."""
    template = await get_template(db, template_id)
    template.active = active
    template.updated_at = ensure_utc(now or utcnow())
    await db.commit()
    logger.info("Recurring template %s %s", template_id, "activated" if active else "paused")

    if feed is not None:
        await feed.publish_template(template)
    return template


async def update_template(
    db: AsyncSession,
    template_id: str,
    changes: TemplateUpdate,
    *,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
) -> RecurringTemplate:
    now = ensure_utc(now or utcnow())
    template = await get_template(db, template_id)
    fields = changes.model_dump(exclude_unset=True)

    # validate everything before touching the row
    days = normalize_days(fields["days_of_week"]) if fields.get("days_of_week") else template.days_of_week
    at = (
        normalize_time_of_day(fields["pickup_time_of_day"])
        if fields.get("pickup_time_of_day") else template.pickup_time_of_day
    )
    weeks = validate_total_weeks(fields["total_weeks"]) if fields.get("total_weeks") else template.total_weeks

    if fields.get("items"):
        template.items = [item.model_dump() for item in changes.items]
    if "notes" in fields:
        template.notes = fields["notes"]
    if fields.get("total_amount") is not None:
        template.total_amount = fields["total_amount"]
    template.days_of_week = days
    template.pickup_time_of_day = at
    template.total_weeks = weeks
    template.next_execution = compute_next_execution(days, at, template.starts_on, weeks, after=now)
    template.updated_at = now
    await db.commit()
    logger.info("Recurring template %s updated", template_id)

    if feed is not None:
        await feed.publish_template(template)
    return template


def _snapshot(template: RecurringTemplate) -> dict:
    return {
        "id": template.id,
        "customer_id": template.customer_id,
        "vendor_id": template.vendor_id,
        "items": list(template.items),
        "notes": template.notes,
        "total_amount": template.total_amount,
        "days_of_week": list(template.days_of_week),
        "pickup_time_of_day": template.pickup_time_of_day,
        "starts_on": template.starts_on,
        "total_weeks": template.total_weeks,
    }


async def materialize_due_templates(
    db: AsyncSession,
    today: date | None = None,
    *,
    now: datetime | None = None,
    feed: ChangeFeed | None = None,
    skip_materialized: bool = False,
) -> list[PreOrder]:
    """
    Create today's pre-orders from every active, non-exhausted template whose
    weekdays include ``today``.

    A template that cannot be admitted (pickup inside the admission window,
    vendor gone) is logged and skipped; the others still run. With
    ``skip_materialized`` a template whose ``last_materialized_on`` is already
    ``today`` is left alone.
    """
    now = ensure_utc(now or utcnow())
    today = today or to_local(now).date()

    result = await db.execute(
        select(RecurringTemplate)
        .where(RecurringTemplate.active.is_(True))
        .order_by(RecurringTemplate.created_at, RecurringTemplate.id)
        .execution_options(populate_existing=True)
    )
    templates = list(result.scalars().all())

    exhausted = [t.id for t in templates if is_exhausted(t, today) and t.next_execution is not None]
    if exhausted:
        await db.execute(
            update(RecurringTemplate)
            .where(RecurringTemplate.id.in_(exhausted))
            .values(next_execution=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("Recurring templates exhausted: %s", exhausted)

    due_templates = [t for t in templates if is_due(t, today)]
    if skip_materialized:
        done = [t.id for t in due_templates if t.last_materialized_on == today]
        if done:
            logger.info("Recurring templates already materialized for %s: %s", today.isoformat(), done)
        due_templates = [t for t in due_templates if t.last_materialized_on != today]
    # plain values: a replayed admission rolls back and expires loaded rows
    due = [(_snapshot(t), pickup_for(t, today)) for t in due_templates]

    created_ids: list[str] = []
    for snap, pickup in due:
        request = PreOrderCreate(
            customer_id=snap["customer_id"],
            vendor_id=snap["vendor_id"],
            items=snap["items"],
            pickup_time=pickup,
            notes=snap["notes"],
            total_amount=snap["total_amount"],
        )
        materialized = False
        try:
            order = await create_preorder(db, request, now=now, recurring_template_id=snap["id"], feed=feed)
            created_ids.append(order.id)
            materialized = True
        except PreOrderError as exc:
            # raised before the admission wrote anything
            logger.warning("Skipping recurring template %s for %s: %s", snap["id"], today.isoformat(), exc)

        values: dict = {
            "next_execution": compute_next_execution(
                snap["days_of_week"], snap["pickup_time_of_day"], snap["starts_on"], snap["total_weeks"],
                after=pickup,
            ),
            "updated_at": now,
        }
        if materialized:
            values["last_materialized_on"] = today
        await db.execute(
            update(RecurringTemplate)
            .where(RecurringTemplate.id == snap["id"])
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        if feed is not None:
            await feed.publish_template(await get_template(db, snap["id"]))

    logger.info(
        "Materialized %d of %d due recurring templates for %s", len(created_ids), len(due), today.isoformat(),
    )
    if not created_ids:
        return []
    result = await db.execute(
        select(PreOrder)
        .where(PreOrder.id.in_(created_ids))
        .order_by(PreOrder.created_at, PreOrder.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
