"""
PreOrder Manager — PreOrder, template and queue-state models

[TRANSACTIONAL DATA] preorders, vendor_queue_state
[CONFIG DATA]        recurring_templates — operator-managed
"""
import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from preorder.db.database import Base


class PreOrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    NO_SHOW = "noShow"


HAPPY_PATH: tuple[PreOrderStatus, ...] = (
    PreOrderStatus.PENDING,
    PreOrderStatus.CONFIRMED,
    PreOrderStatus.PREPARING,
    PreOrderStatus.READY,
    PreOrderStatus.DELIVERED,
)
TERMINAL_STATUSES = frozenset({PreOrderStatus.DELIVERED, PreOrderStatus.CANCELLED, PreOrderStatus.NO_SHOW})
ACTIVE_STATUSES = frozenset({PreOrderStatus.PENDING, PreOrderStatus.CONFIRMED, PreOrderStatus.PREPARING})


def _build_transitions() -> dict[PreOrderStatus, frozenset[PreOrderStatus]]:
    table: dict[PreOrderStatus, frozenset[PreOrderStatus]] = {}
    for index, status in enumerate(HAPPY_PATH):
        if status in TERMINAL_STATUSES:
            continue
        # forward along the happy path (skips allowed), or abandon
        table[status] = frozenset(HAPPY_PATH[index + 1:]) | {PreOrderStatus.CANCELLED, PreOrderStatus.NO_SHOW}
    for status in TERMINAL_STATUSES:
        table[status] = frozenset()
    return table


TRANSITIONS: dict[PreOrderStatus, frozenset[PreOrderStatus]] = _build_transitions()


def can_transition(src: PreOrderStatus, dst: PreOrderStatus) -> bool:
    """Return ``True`` if a pre-order may move from ``src`` to ``dst``."""
    return dst in TRANSITIONS.get(src, frozenset())


def _status_enum() -> Enum:
    # persist the values ("noShow"), not the member names ("NO_SHOW")
    return Enum(
        PreOrderStatus,
        name="preorder_status",
        values_callable=lambda members: [m.value for m in members],
    )


class PreOrder(Base):
    """
    [TRANSACTIONAL DATA] — A single scheduled pickup order.
    ``estimated_wait_minutes`` is fixed at admission; ``actual_wait_minutes``
    is only written on delivery.
    """
    __tablename__ = "preorders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    items: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    pickup_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
    status: Mapped[PreOrderStatus] = mapped_column(
        _status_enum(), default=PreOrderStatus.PENDING, index=True, nullable=False
    )
    estimated_wait_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_wait_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_template_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<PreOrder id={self.id} vendor={self.vendor_id} status={self.status}>"


class RecurringTemplate(Base):
    """
    [CONFIG DATA] — Weekly repeating order definition.
    Eligible from ``starts_on`` for ``total_weeks`` weeks; afterwards inert but kept.
    """
    __tablename__ = "recurring_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    items: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    pickup_time_of_day: Mapped[str] = mapped_column(String(5), nullable=False)
    days_of_week: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_weeks: Mapped[int] = mapped_column(Integer, nullable=False)
    starts_on: Mapped[date] = mapped_column(Date, nullable=False)
    next_execution: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_materialized_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    source_preorder_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<RecurringTemplate id={self.id} days={self.days_of_week} active={self.active}>"


class VendorQueueState(Base):
    """
    [TRANSACTIONAL DATA] — Live count of a vendor's non-terminal pre-orders.
    version_id is the optimistic locking column — incremented on every update.
    """
    __tablename__ = "vendor_queue_state"

    vendor_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    active_order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_prep_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=15.0)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
