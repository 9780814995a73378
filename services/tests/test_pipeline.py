"""
Order admission and status pipeline against an in-memory database.
"""
import pytest
from sqlalchemy import func, select, update
from sqlalchemy.orm.attributes import set_committed_value

from conftest import (
    BURGER_TRUCK,
    CLOSED_TRUCK,
    CUSTOM_PREP_TRUCK,
    NOW,
    PREMIUM_CUSTOMER,
    FailingNotifier,
    burger_request,
    minutes,
    wait_for_event,
)
from preorder.core.errors import (
    InvalidArgument,
    InvalidTransition,
    OrderNotFound,
    PickupTooSoon,
    VendorNotFound,
)
from preorder.core.optimistic_lock import StaleDataError
from preorder.db import preorder_ops, queue_ops
from preorder.db.preorder_ops import create_preorder, get_preorder, list_preorders, transition_preorder
from preorder.db.queue_ops import get_queue_state
from preorder.models.preorder import PreOrder, PreOrderStatus, RecurringTemplate, VendorQueueState
from preorder.services.filters import PreOrderFilter


async def active_count(db, vendor_id=BURGER_TRUCK) -> int:
    state = await get_queue_state(db, vendor_id)
    return state.active_order_count if state else 0


async def order_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(PreOrder))).scalar_one()


# ─── Admission ─────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_persists_pending_order_and_bumps_queue(db):
    order = await create_preorder(db, burger_request(notes="no pickles"), now=NOW)

    assert order.status is PreOrderStatus.PENDING
    assert order.customer_name == "Ana Lopez"
    assert order.vendor_name == "Burger Bros"
    assert order.estimated_wait_minutes == 17
    assert order.actual_wait_minutes is None
    assert order.is_recurring is False
    assert order.notes == "no pickles"
    assert await active_count(db) == 1


@pytest.mark.asyncio
async def test_estimate_reflects_existing_queue(db):
    await create_preorder(db, burger_request(), now=NOW)
    second = await create_preorder(db, burger_request(), now=NOW)
    # 1 × 15 + 12 + 5
    assert second.estimated_wait_minutes == 32
    assert await active_count(db) == 2


@pytest.mark.asyncio
async def test_custom_prep_vendor_estimate(db):
    order = await create_preorder(db, burger_request(vendor_id=CUSTOM_PREP_TRUCK), now=NOW)
    assert order.estimated_wait_minutes == 25


@pytest.mark.asyncio
async def test_pickup_too_soon_writes_nothing(db):
    with pytest.raises(PickupTooSoon) as exc_info:
        await create_preorder(db, burger_request(pickup_time=NOW + minutes(30)), now=NOW)

    assert exc_info.value.earliest_pickup == NOW + minutes(60)
    assert await order_count(db) == 0
    assert await get_queue_state(db, BURGER_TRUCK) is None


@pytest.mark.asyncio
async def test_premium_customer_uses_longer_window(db):
    request = burger_request(customer_id=PREMIUM_CUSTOMER, pickup_time=NOW + minutes(90))
    with pytest.raises(PickupTooSoon):
        await create_preorder(db, request, now=NOW)


@pytest.mark.asyncio
async def test_unknown_customer_books_as_standard(db):
    order = await create_preorder(db, burger_request(customer_id="walk-in", pickup_time=NOW + minutes(60)), now=NOW)
    assert order.customer_name is None


@pytest.mark.asyncio
async def test_explicit_override_skips_admission(db):
    soon = NOW + minutes(10)
    order = await create_preorder(db, burger_request(pickup_time=soon), now=NOW, validate=False)
    assert order.pickup_time == soon

    flagged = await create_preorder(db, burger_request(pickup_time=soon, override_admission=True), now=NOW)
    assert flagged.status is PreOrderStatus.PENDING
    assert await active_count(db) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("vendor_id", ["v-missing", CLOSED_TRUCK])
async def test_unknown_or_inactive_vendor(db, vendor_id):
    with pytest.raises(VendorNotFound):
        await create_preorder(db, burger_request(vendor_id=vendor_id), now=NOW)
    assert await order_count(db) == 0


@pytest.mark.asyncio
async def test_recurring_request_spawns_linked_template(db):
    request = burger_request(
        pickup_time=NOW.replace(hour=12, minute=15),
        is_recurring=True,
        days_of_week=["Thursday", "monday"],
        total_weeks=4,
    )
    order = await create_preorder(db, request, now=NOW)

    assert order.is_recurring is True
    template = (await db.execute(select(RecurringTemplate))).scalar_one()
    assert order.recurring_template_id == template.id
    assert template.source_preorder_id == order.id
    assert template.days_of_week == ["monday", "thursday"]
    assert template.pickup_time_of_day == "12:15"
    assert template.total_weeks == 4


@pytest.mark.asyncio
async def test_invalid_recurring_request_writes_nothing(db):
    request = burger_request(is_recurring=True, days_of_week=["monday"], total_weeks=13)
    with pytest.raises(InvalidArgument):
        await create_preorder(db, request, now=NOW)

    assert await order_count(db) == 0
    assert await get_queue_state(db, BURGER_TRUCK) is None


# ─── Transitions ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_happy_path_decrements_once_on_delivery(db, notifier):
    order = await create_preorder(db, burger_request(), now=NOW)

    await transition_preorder(db, order.id, PreOrderStatus.PREPARING, now=NOW + minutes(20), notifier=notifier)
    assert await active_count(db) == 1
    await transition_preorder(db, order.id, PreOrderStatus.READY, now=NOW + minutes(40), notifier=notifier)
    assert await active_count(db) == 1

    delivered = await transition_preorder(
        db, order.id, PreOrderStatus.DELIVERED, now=NOW + minutes(50), notifier=notifier,
    )
    assert delivered.status is PreOrderStatus.DELIVERED
    assert delivered.actual_wait_minutes == 50
    assert await active_count(db) == 0
    assert notifier.kinds == ["preparing", "ready"]


@pytest.mark.asyncio
async def test_no_transition_out_of_delivered(db, notifier):
    order = await create_preorder(db, burger_request(), now=NOW)
    await transition_preorder(db, order.id, "delivered", now=NOW + minutes(5), notifier=notifier)

    with pytest.raises(InvalidTransition) as exc_info:
        await transition_preorder(db, order.id, PreOrderStatus.PREPARING, now=NOW + minutes(6), notifier=notifier)

    assert exc_info.value.current == "delivered"
    assert (await get_preorder(db, order.id)).status is PreOrderStatus.DELIVERED
    assert await active_count(db) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, illegal",
    [
        (["confirmed"], "pending"),
        (["confirmed"], "confirmed"),
        (["ready"], "preparing"),
        (["cancelled"], "noShow"),
    ],
)
async def test_backward_and_self_transitions_are_illegal(db, notifier, path, illegal):
    order = await create_preorder(db, burger_request(), now=NOW)
    for status in path:
        await transition_preorder(db, order.id, status, now=NOW, notifier=notifier)

    with pytest.raises(InvalidTransition):
        await transition_preorder(db, order.id, illegal, now=NOW, notifier=notifier)
    assert (await get_preorder(db, order.id)).status.value == path[-1]


@pytest.mark.asyncio
@pytest.mark.parametrize("start", [[], ["confirmed"], ["preparing"], ["ready"]])
async def test_cancel_and_no_show_from_any_open_state(db, notifier, start):
    order = await create_preorder(db, burger_request(), now=NOW)
    other = await create_preorder(db, burger_request(), now=NOW)
    for status in start:
        await transition_preorder(db, order.id, status, now=NOW, notifier=notifier)
        await transition_preorder(db, other.id, status, now=NOW, notifier=notifier)

    await transition_preorder(db, order.id, PreOrderStatus.CANCELLED, now=NOW, notifier=notifier)
    await transition_preorder(db, other.id, PreOrderStatus.NO_SHOW, now=NOW, notifier=notifier)

    assert await active_count(db) == 0
    assert (await get_preorder(db, other.id)).actual_wait_minutes is None


@pytest.mark.asyncio
async def test_counter_tracks_creations_minus_terminal_transitions(db, notifier):
    orders = [await create_preorder(db, burger_request(), now=NOW) for _ in range(5)]

    await transition_preorder(db, orders[0].id, "delivered", now=NOW, notifier=notifier)
    await transition_preorder(db, orders[1].id, "cancelled", now=NOW, notifier=notifier)
    await transition_preorder(db, orders[2].id, "preparing", now=NOW, notifier=notifier)
    await transition_preorder(db, orders[3].id, "noShow", now=NOW, notifier=notifier)

    assert await active_count(db) == 2


@pytest.mark.asyncio
async def test_counter_underflow_is_clamped(db, notifier, caplog):
    order = await create_preorder(db, burger_request(), now=NOW)
    # drift the counter behind the pipeline's back
    await db.execute(update(VendorQueueState).values(active_order_count=0))
    await db.commit()

    cancelled = await transition_preorder(db, order.id, "cancelled", now=NOW, notifier=notifier)

    assert cancelled.status is PreOrderStatus.CANCELLED
    assert await active_count(db) == 0
    assert "underflow" in caplog.text


@pytest.mark.asyncio
async def test_failing_notifier_does_not_undo_transition(db):
    failing = FailingNotifier()
    order = await create_preorder(db, burger_request(), now=NOW)

    moved = await transition_preorder(db, order.id, PreOrderStatus.PREPARING, now=NOW, notifier=failing)

    assert failing.attempts == 1
    assert moved.status is PreOrderStatus.PREPARING
    assert (await get_preorder(db, order.id)).status is PreOrderStatus.PREPARING


@pytest.mark.asyncio
async def test_notification_payload(db, notifier):
    order = await create_preorder(db, burger_request(), now=NOW)
    await transition_preorder(db, order.id, "ready", now=NOW, notifier=notifier)

    customer_id, kind, payload = notifier.sent[0]
    assert (customer_id, kind) == ("c-standard", "ready")
    assert payload["order_id"] == order.id
    assert payload["vendor_name"] == "Burger Bros"


@pytest.mark.asyncio
async def test_unknown_order_and_status(db, notifier):
    with pytest.raises(OrderNotFound):
        await transition_preorder(db, "missing", "confirmed", notifier=notifier)

    order = await create_preorder(db, burger_request(), now=NOW)
    with pytest.raises(InvalidArgument):
        await transition_preorder(db, order.id, "eaten", notifier=notifier)


# ─── Change feed + listing ─────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_commits_are_published_in_order(db, feed, notifier):
    async with feed.subscribe("preorder", BURGER_TRUCK) as subscription:
        order = await create_preorder(db, burger_request(), now=NOW, feed=feed)
        await transition_preorder(db, order.id, "confirmed", now=NOW, notifier=notifier, feed=feed)

        first = await wait_for_event(subscription)
        second = await wait_for_event(subscription)

    assert first["data"]["status"] == "pending"
    assert second["data"]["status"] == "confirmed"
    assert second["data"]["id"] == order.id


@pytest.mark.asyncio
async def test_list_preorders_filters(db, notifier):
    await create_preorder(db, burger_request(), now=NOW)
    tomorrow = await create_preorder(db, burger_request(pickup_time=NOW + minutes(24 * 60)), now=NOW)
    premium = await create_preorder(
        db, burger_request(customer_id=PREMIUM_CUSTOMER, pickup_time=NOW + minutes(180)), now=NOW,
    )
    await transition_preorder(db, premium.id, "cancelled", now=NOW, notifier=notifier)

    assert len(await list_preorders(db, PreOrderFilter(), NOW)) == 3
    assert [o.id for o in await list_preorders(db, PreOrderFilter(date_range="tomorrow"), NOW)] == [tomorrow.id]
    assert len(await list_preorders(db, PreOrderFilter(date_range="today"), NOW)) == 2
    assert [o.id for o in await list_preorders(db, PreOrderFilter(search="OKAFOR"), NOW)] == [premium.id]
    assert len(await list_preorders(db, PreOrderFilter(search="cheese"), NOW)) == 3
    assert [o.id for o in await list_preorders(db, PreOrderFilter(status=PreOrderStatus.CANCELLED), NOW)] == [
        premium.id
    ]
    assert await list_preorders(db, PreOrderFilter(recurring=True), NOW) == []


# ─── Lost compare-and-set races ────────────────────────────────────────────────
def behind_one_version(state: VendorQueueState) -> None:
    set_committed_value(state, "version_id", state.version_id - 1)


def stale_on_first_read(monkeypatch, module, name, make_stale) -> list[str]:
    """The first read returns what the row looked like before another writer committed."""
    real = getattr(module, name)
    reads = []

    async def read(db, key):
        row = await real(db, key)
        reads.append(key)
        if len(reads) == 1 and row is not None:
            make_stale(row)
        return row

    monkeypatch.setattr(module, name, read)
    return reads


@pytest.mark.asyncio
async def test_admission_replays_after_losing_the_queue_race(db, monkeypatch):
    await create_preorder(db, burger_request(), now=NOW)
    reads = stale_on_first_read(monkeypatch, queue_ops, "get_queue_state", behind_one_version)

    second = await create_preorder(db, burger_request(), now=NOW)
    second_id = second.id

    assert reads == [BURGER_TRUCK, BURGER_TRUCK]
    assert second.estimated_wait_minutes == 32
    assert await order_count(db) == 2
    assert await active_count(db) == 2
    assert (await get_preorder(db, second_id)).status is PreOrderStatus.PENDING


@pytest.mark.asyncio
async def test_terminal_transition_replays_after_losing_the_queue_race(db, notifier, monkeypatch):
    order = await create_preorder(db, burger_request(), now=NOW)
    order_id = order.id
    reads = stale_on_first_read(monkeypatch, queue_ops, "get_queue_state", behind_one_version)

    cancelled = await transition_preorder(db, order_id, "cancelled", now=NOW, notifier=notifier)

    assert reads == [BURGER_TRUCK, BURGER_TRUCK]
    assert cancelled.status is PreOrderStatus.CANCELLED
    assert await active_count(db) == 0


@pytest.mark.asyncio
async def test_unresolved_queue_conflict_writes_nothing(db, monkeypatch):
    await create_preorder(db, burger_request(), now=NOW)
    real = queue_ops.get_queue_state

    async def always_stale(db, vendor_id):
        state = await real(db, vendor_id)
        behind_one_version(state)
        return state

    monkeypatch.setattr(queue_ops, "get_queue_state", always_stale)

    with pytest.raises(StaleDataError):
        await create_preorder(db, burger_request(), now=NOW)

    assert await order_count(db) == 1
    assert await active_count(db) == 1


@pytest.mark.asyncio
async def test_status_race_loser_rereads_and_rejects(db, notifier, monkeypatch):
    order = await create_preorder(db, burger_request(), now=NOW)
    order_id = order.id
    await transition_preorder(db, order_id, "preparing", now=NOW, notifier=notifier)
    # the first read still shows pending although the order is already preparing
    reads = stale_on_first_read(
        monkeypatch, preorder_ops, "get_preorder",
        lambda row: set_committed_value(row, "status", PreOrderStatus.PENDING),
    )

    with pytest.raises(InvalidTransition) as excinfo:
        await transition_preorder(db, order_id, "confirmed", now=NOW, notifier=notifier)

    assert reads == [order_id, order_id]
    assert excinfo.value.current == "preparing"
    assert (await get_preorder(db, order_id)).status is PreOrderStatus.PREPARING
    assert await active_count(db) == 1
    assert notifier.kinds == ["preparing"]
