"""
PreOrder Manager — Console list filters

Same predicate for the list endpoint (over ORM rows) and the change feed
(over JSON snapshots), so a dashboard sees identical results either way.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from preorder.core.clock import DateRange, date_range_for_preset
from preorder.models.preorder import PreOrderStatus


@dataclass(frozen=True)
class PreOrderFilter:
    date_range: str = "all"
    status: PreOrderStatus | None = None
    vendor_id: str | None = None
    recurring: bool | None = None
    search: str | None = None

    def window(self, now: datetime) -> DateRange:
        return date_range_for_preset(self.date_range, now)


def _field(record, name: str):
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def matches_search(term: str | None, customer_name: str | None, vendor_name: str | None, items) -> bool:
    """Case-insensitive match on customer, vendor or any item name."""
    if not term:
        return True
    needle = term.lower()
    haystack = [customer_name or "", vendor_name or ""]
    haystack.extend(item.get("name") or "" for item in items or [])
    return any(needle in value.lower() for value in haystack)


def matches(record, flt: PreOrderFilter, window: DateRange) -> bool:
    """Apply ``flt`` to a pre-order row or a change-feed snapshot."""
    status = _field(record, "status")
    if flt.status is not None and PreOrderStatus(status) is not flt.status:
        return False
    if flt.vendor_id is not None and _field(record, "vendor_id") != flt.vendor_id:
        return False
    if flt.recurring is not None and bool(_field(record, "is_recurring")) != flt.recurring:
        return False
    pickup = _field(record, "pickup_time")
    if isinstance(pickup, str):
        pickup = datetime.fromisoformat(pickup)
    if pickup is not None and not window.contains(pickup):
        return False
    return matches_search(
        flt.search, _field(record, "customer_name"), _field(record, "vendor_name"), _field(record, "items"),
    )


def filter_preorders(orders: Iterable, flt: PreOrderFilter, now: datetime) -> list:
    window = flt.window(now)
    return [order for order in orders if matches(order, flt, window)]
