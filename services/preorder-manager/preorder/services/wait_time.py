"""
PreOrder Manager — Wait-time estimation

    wait = ceil(queue_delay + base_prep * peak_multiplier + buffer)

queue_delay is the vendor's active orders times its average prep time,
base_prep the per-category prep cost of the basket, and the multiplier comes
from the configured peak windows. A vendor that opted into a fixed prep time
gets ``custom + buffer`` instead. The figure is advisory (display and
analytics), never a capacity limit.
"""
import math
from collections.abc import Iterable, Mapping
from datetime import datetime

from preorder.core.clock import local_zone, minute_of_day, parse_time_of_day
from preorder.core.config import PeakWindow, Settings, get_settings


def item_prep_minutes(category: str | None, settings: Settings | None = None) -> float:
    settings = settings or get_settings()
    key = (category or "").strip().lower()
    return settings.CATEGORY_PREP_MINUTES.get(key, settings.UNKNOWN_CATEGORY_PREP_MINUTES)


def base_prep_minutes(items: Iterable[Mapping], settings: Settings | None = None) -> float:
    settings = settings or get_settings()
    total = sum(
        item_prep_minutes(item.get("category"), settings) * int(item.get("quantity", 1))
        for item in items
    )
    if total <= 0:
        return float(settings.DEFAULT_PREP_MINUTES)
    return float(total)


def _window_bounds(window: PeakWindow) -> tuple[int, int]:
    start = parse_time_of_day(window.start)
    end = parse_time_of_day(window.end)
    return start.hour * 60 + start.minute, end.hour * 60 + end.minute


def matching_peak_window(pickup_time: datetime, settings: Settings | None = None) -> PeakWindow | None:
    """Peak window covering the pickup's local time of day.

    When windows overlap the highest multiplier wins; equal multipliers keep
    the first configured window.
    """
    settings = settings or get_settings()
    minute = minute_of_day(pickup_time, local_zone(settings))
    best: PeakWindow | None = None
    for window in settings.PEAK_WINDOWS:
        start, end = _window_bounds(window)
        if start <= minute <= end and (best is None or window.multiplier > best.multiplier):
            best = window
    return best


def peak_multiplier(pickup_time: datetime, settings: Settings | None = None) -> float:
    window = matching_peak_window(pickup_time, settings)
    return window.multiplier if window else 1.0


def estimate_wait_minutes(
    queue_state,
    pickup_time: datetime,
    items: Iterable[Mapping],
    vendor=None,
    settings: Settings | None = None,
) -> int:
    """Estimated minutes until the order is ready for hand-off.

    ``queue_state`` is the vendor's :class:`VendorQueueState` (or ``None``
    before its first order), ``vendor`` the directory :class:`Vendor` if known.
    """
    settings = settings or get_settings()
    buffer = settings.BUFFER_MINUTES

    if vendor is not None and vendor.use_custom_prep and vendor.custom_prep_minutes:
        return max(0, math.ceil(vendor.custom_prep_minutes + buffer))

    if queue_state is None:
        active, average = 0, settings.DEFAULT_PREP_MINUTES
    else:
        active, average = queue_state.active_order_count, queue_state.average_prep_minutes
    queue_delay = max(0, active) * max(0.0, average)

    total_prep = base_prep_minutes(list(items), settings) * peak_multiplier(pickup_time, settings)
    return max(0, math.ceil(queue_delay + total_prep + buffer))
