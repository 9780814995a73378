"""
PreOrder Manager — Analytics aggregation

Read-side reducer over pre-order records. It never writes, so it can run
against a live table while the pipeline keeps admitting and transitioning
orders. Call it on demand (API) or on a timer.
"""
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime

from preorder.core.clock import DateRange, to_local
from preorder.models.directory import CustomerTier
from preorder.models.preorder import ACTIVE_STATUSES, PreOrder, PreOrderStatus
from preorder.services.wait_time import matching_peak_window

POPULAR_ITEMS_LIMIT = 10

# Dashboard day parts by local pickup hour, [start, end)
TIME_SLOTS: tuple[tuple[str, int, int], ...] = (
    ("morning", 8, 11),
    ("lunch", 11, 14),
    ("afternoon", 14, 17),
    ("dinner", 17, 21),
)


@dataclass
class PreOrderAnalytics:
    total_preorders: int = 0
    active_preorders: int = 0
    recurring_orders: int = 0
    completion_rate: float = 0.0
    no_show_rate: float = 0.0
    average_wait_minutes: float = 0.0
    peak_time_orders: int = 0
    popular_items: dict[str, int] = field(default_factory=dict)
    popular_time_slots: dict[str, int] = field(default_factory=dict)
    status_counts: dict[str, int] = field(default_factory=dict)
    tier_breakdown: dict[str, int] = field(default_factory=dict)
    revenue_impact: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


def time_slot_for(pickup_time: datetime) -> str | None:
    hour = to_local(pickup_time).hour
    for slot, start, end in TIME_SLOTS:
        if start <= hour < end:
            return slot
    return None


def _tier_lookup(tiers: Mapping[str, str] | Callable[[str], str | None]) -> Callable[[str], str]:
    def lookup(customer_id: str) -> str:
        tier = tiers(customer_id) if callable(tiers) else tiers.get(customer_id)
        return CustomerTier(tier).value if tier else CustomerTier.STANDARD.value
    return lookup


def aggregate(
    orders: Iterable[PreOrder],
    tiers: Mapping[str, str] | Callable[[str], str | None],
    window: DateRange | None = None,
) -> PreOrderAnalytics:
    """Reduce ``orders`` into dashboard statistics.

    ``tiers`` resolves a customer id to its current tier (mapping or callable);
    unknown customers count as standard. ``window`` restricts the orders by
    pickup time.
    """
    tier_of = _tier_lookup(tiers)
    stats = PreOrderAnalytics(
        status_counts={status.value: 0 for status in PreOrderStatus},
        tier_breakdown={tier.value: 0 for tier in CustomerTier},
    )
    item_counts: Counter[str] = Counter()
    slot_counts: Counter[str] = Counter()
    delivered_waits: list[int] = []

    for order in orders:
        if window is not None and not window.contains(order.pickup_time):
            continue
        status = PreOrderStatus(order.status)
        stats.total_preorders += 1
        stats.status_counts[status.value] += 1

        if status in ACTIVE_STATUSES:
            stats.active_preorders += 1
        if order.is_recurring:
            stats.recurring_orders += 1
        if status is PreOrderStatus.DELIVERED and order.actual_wait_minutes is not None:
            delivered_waits.append(order.actual_wait_minutes)

        # an order counts once even if peak windows overlap
        if matching_peak_window(order.pickup_time) is not None:
            stats.peak_time_orders += 1

        slot = time_slot_for(order.pickup_time)
        if slot:
            slot_counts[slot] += 1

        for item in order.items or []:
            item_counts[item["name"]] += int(item.get("quantity", 0))

        stats.tier_breakdown[tier_of(order.customer_id)] += 1
        stats.revenue_impact += order.total_amount or 0.0

    if stats.total_preorders:
        stats.completion_rate = stats.status_counts[PreOrderStatus.DELIVERED.value] / stats.total_preorders
        stats.no_show_rate = stats.status_counts[PreOrderStatus.NO_SHOW.value] / stats.total_preorders
    if delivered_waits:
        stats.average_wait_minutes = round(sum(delivered_waits) / len(delivered_waits), 1)

    # Counter keeps first-seen order and sorted() is stable, so ties keep it too
    ranked = sorted(item_counts.items(), key=lambda entry: entry[1], reverse=True)
    stats.popular_items = dict(ranked[:POPULAR_ITEMS_LIMIT])
    stats.popular_time_slots = {slot: slot_counts[slot] for slot, _, _ in TIME_SLOTS}
    stats.revenue_impact = round(stats.revenue_impact, 2)
    return stats
