"""
PreOrder Manager — Recurring template rules

Pure validation and scheduling helpers shared by the admission pipeline
(templates spawned from a recurring pre-order) and the recurring engine.
"""
import uuid
from datetime import date, datetime, timedelta

from preorder.core.clock import (
    WEEKDAYS,
    combine_local,
    ensure_utc,
    next_execution,
    normalize_weekday,
    parse_time_of_day,
    to_local,
    weekday_name,
)
from preorder.core.config import Settings, get_settings
from preorder.core.errors import InvalidArgument
from preorder.models.preorder import RecurringTemplate


def normalize_days(days: list[str]) -> list[str]:
    """Validate weekday names; return them de-duplicated in week order."""
    if not days:
        raise InvalidArgument("A recurring order needs at least one weekday.")
    wanted = {normalize_weekday(day) for day in days}
    return [day for day in WEEKDAYS if day in wanted]


def validate_total_weeks(total_weeks: int, settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    if not 1 <= total_weeks <= settings.MAX_RECURRING_WEEKS:
        raise InvalidArgument(
            f"total_weeks must be between 1 and {settings.MAX_RECURRING_WEEKS}, got {total_weeks}."
        )
    return total_weeks


def normalize_time_of_day(value: str) -> str:
    return parse_time_of_day(value).strftime("%H:%M")


def expires_on(starts_on: date, total_weeks: int) -> date:
    """First calendar day on which the template no longer materializes."""
    return starts_on + timedelta(weeks=total_weeks)


def is_exhausted(template: RecurringTemplate, on: date) -> bool:
    return on >= expires_on(template.starts_on, template.total_weeks)


def is_due(template: RecurringTemplate, today: date) -> bool:
    return (
        template.active
        and not is_exhausted(template, today)
        and weekday_name(today) in template.days_of_week
    )


def compute_next_execution(
    days: list[str], pickup_time_of_day: str, starts_on: date, total_weeks: int, after: datetime,
) -> datetime | None:
    """Next matching pickup strictly after ``after``, or ``None`` once the template is exhausted."""
    candidate = next_execution(days, parse_time_of_day(pickup_time_of_day), after)
    if to_local(candidate).date() >= expires_on(starts_on, total_weeks):
        return None
    return candidate


def build_template(
    *,
    customer_id: str,
    vendor_id: str,
    items: list[dict],
    pickup_time_of_day: str,
    days_of_week: list[str],
    total_weeks: int,
    now: datetime,
    notes: str | None = None,
    total_amount: float = 0.0,
    active: bool = True,
    source_preorder_id: str | None = None,
    template_id: str | None = None,
) -> RecurringTemplate:
    """Validate the inputs and return an unsaved :class:`RecurringTemplate`."""
    days = normalize_days(days_of_week)
    weeks = validate_total_weeks(total_weeks)
    at = normalize_time_of_day(pickup_time_of_day)
    now = ensure_utc(now)
    starts_on = to_local(now).date()
    template = RecurringTemplate(
        id=template_id or str(uuid.uuid4()),
        customer_id=customer_id,
        vendor_id=vendor_id,
        items=items,
        pickup_time_of_day=at,
        days_of_week=days,
        notes=notes,
        total_amount=total_amount,
        active=active,
        total_weeks=weeks,
        starts_on=starts_on,
        next_execution=compute_next_execution(days, at, starts_on, weeks, after=now),
        source_preorder_id=source_preorder_id,
        created_at=now,
        updated_at=now,
    )
    return template


def pickup_for(template: RecurringTemplate, today: date) -> datetime:
    return combine_local(today, parse_time_of_day(template.pickup_time_of_day))
