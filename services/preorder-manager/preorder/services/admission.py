"""
PreOrder Manager — Admission window

Customers must book ahead: standard customers at least
``STANDARD_ADVANCE_MINUTES`` before pickup, premium customers
``PREMIUM_ADVANCE_MINUTES``. Vendor opening hours and capacity are not
checked here.
"""
from datetime import datetime, timedelta

from preorder.core.clock import ensure_utc
from preorder.core.config import Settings, get_settings
from preorder.core.errors import InvalidArgument, PickupTooSoon
from preorder.models.directory import CustomerTier


def _tier(tier: CustomerTier | str) -> CustomerTier:
    try:
        return CustomerTier(tier)
    except ValueError:
        raise InvalidArgument(f"Unknown customer tier: {tier!r}") from None


def advance_minutes(tier: CustomerTier | str, settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    if _tier(tier) is CustomerTier.PREMIUM:
        return settings.PREMIUM_ADVANCE_MINUTES
    return settings.STANDARD_ADVANCE_MINUTES


def earliest_pickup(tier: CustomerTier | str, now: datetime, settings: Settings | None = None) -> datetime:
    return ensure_utc(now) + timedelta(minutes=advance_minutes(tier, settings))


def validate_pickup_time(
    requested: datetime,
    tier: CustomerTier | str,
    now: datetime,
    settings: Settings | None = None,
) -> datetime:
    """Return the admission floor, or raise :class:`PickupTooSoon` if ``requested`` is before it."""
    floor = earliest_pickup(tier, now, settings)
    requested = ensure_utc(requested)
    if requested < floor:
        raise PickupTooSoon(requested, floor, advance_minutes(tier, settings))
    return floor
