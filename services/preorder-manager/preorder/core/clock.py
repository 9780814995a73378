"""
PreOrder Manager — Clock / time utilities

Pure helpers shared by the estimator, admission checks, recurring engine and
analytics. Stored timestamps are UTC; anything calendar- or time-of-day-based
is evaluated in the vendor-local zone (``Settings.TIMEZONE``).
"""
import math
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import NamedTuple
from zoneinfo import ZoneInfo

from preorder.core.config import Settings, get_settings
from preorder.core.errors import InvalidArgument

WEEKDAYS: tuple[str, ...] = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)
DATE_PRESETS: tuple[str, ...] = ("today", "tomorrow", "week", "all")

_TIME_OF_DAY = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class DateRange(NamedTuple):
    """Half-open ``[start, end)`` range; ``None`` means unbounded on that side."""

    start: datetime | None
    end: datetime | None

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment >= self.end:
            return False
        return True


def local_zone(settings: Settings | None = None) -> tzinfo:
    name = (settings or get_settings()).TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime) -> datetime:
    """Attach UTC to naive values (as read back from storage) and normalise aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_local(moment: datetime, tz: tzinfo | None = None) -> datetime:
    return ensure_utc(moment).astimezone(tz or local_zone())


def normalize_weekday(day: str) -> str:
    name = (day or "").strip().lower()
    if name not in WEEKDAYS:
        raise InvalidArgument(f"Unknown weekday name: {day!r}")
    return name


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (24h) into a :class:`datetime.time`."""
    match = _TIME_OF_DAY.match((value or "").strip())
    if not match:
        raise InvalidArgument(f"Invalid time of day: {value!r} (expected HH:MM)")
    return time(int(match.group(1)), int(match.group(2)))


def minute_of_day(moment: datetime, tz: tzinfo | None = None) -> int:
    local = to_local(moment, tz)
    return local.hour * 60 + local.minute


def combine_local(day: date, at: time, tz: tzinfo | None = None) -> datetime:
    """Local wall-clock ``day`` + ``at`` as an aware UTC timestamp."""
    return ensure_utc(datetime.combine(day, at, tzinfo=tz or local_zone()))


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, rounded half up."""
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return math.floor(seconds / 60 + 0.5)


def date_range_for_preset(preset: str, now: datetime, tz: tzinfo | None = None) -> DateRange:
    """Resolve a console date filter into a UTC range.

    ``today`` and ``tomorrow`` are whole local calendar days, ``week`` is the
    trailing seven days from ``now`` onward, ``all`` is unbounded.
    """
    tz = tz or local_zone()
    if preset not in DATE_PRESETS:
        raise InvalidArgument(f"Unknown date-range preset: {preset!r}")
    if preset == "all":
        return DateRange(None, None)
    if preset == "week":
        return DateRange(ensure_utc(now) - timedelta(days=7), None)

    today = to_local(now, tz).date()
    day = today if preset == "today" else today + timedelta(days=1)
    return DateRange(
        combine_local(day, time.min, tz),
        combine_local(day + timedelta(days=1), time.min, tz),
    )


def next_occurrence_of_weekday(day: str, now: datetime, tz: tzinfo | None = None) -> date:
    """Next calendar date falling on ``day``, strictly after ``now``'s local date."""
    target = WEEKDAYS.index(normalize_weekday(day))
    today = to_local(now, tz).date()
    days_until = target - today.weekday()
    if days_until <= 0:
        days_until += 7
    return today + timedelta(days=days_until)


def next_execution(
    days: list[str], at: time, after: datetime, tz: tzinfo | None = None,
) -> datetime:
    """Soonest timestamp strictly after ``after`` on one of ``days`` at local ``at``."""
    tz = tz or local_zone()
    wanted = {normalize_weekday(d) for d in days}
    if not wanted:
        raise InvalidArgument("At least one weekday is required.")
    after = ensure_utc(after)
    start = to_local(after, tz).date()
    for offset in range(8):
        candidate_day = start + timedelta(days=offset)
        if weekday_name(candidate_day) not in wanted:
            continue
        candidate = combine_local(candidate_day, at, tz)
        if candidate > after:
            return candidate
    # unreachable: offset 7 repeats the starting weekday one week later
    raise InvalidArgument("Could not resolve next execution.")


def format_duration(minutes: int | float) -> str:
    total = max(0, math.ceil(minutes))
    if total < 60:
        return f"{total} min"
    hours, rest = divmod(total, 60)
    return f"{hours} h {rest:02d} min"
