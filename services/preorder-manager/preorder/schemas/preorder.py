"""
PreOrder Manager — Pydantic Schemas
"""
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from preorder.core.clock import ensure_utc
from preorder.models.directory import CustomerTier
from preorder.models.preorder import PreOrderStatus


class OrderItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Cheeseburger"])
    category: str = Field("", max_length=64, examples=["burger"])
    quantity: int = Field(..., ge=1, le=50)


class PreOrderCreate(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=64)
    vendor_id: str = Field(..., min_length=1, max_length=36)
    items: list[OrderItem] = Field(..., min_length=1, max_length=50)
    pickup_time: datetime
    notes: str | None = Field(None, max_length=500)
    total_amount: float = Field(0.0, ge=0)
    # operator-only: schedule inside the admission window
    override_admission: bool = False
    is_recurring: bool = False
    days_of_week: list[str] = Field(default_factory=list, max_length=7)
    total_weeks: int = Field(4, ge=1)

    @model_validator(mode="after")
    def _recurring_needs_days(self):
        if self.is_recurring and not self.days_of_week:
            raise ValueError("days_of_week is required for recurring pre-orders")
        return self


class StatusUpdate(BaseModel):
    status: PreOrderStatus


class PreOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    customer_name: str | None
    vendor_id: str
    vendor_name: str | None
    items: list[OrderItem]
    pickup_time: datetime
    status: PreOrderStatus
    estimated_wait_minutes: int
    actual_wait_minutes: int | None
    is_recurring: bool
    recurring_template_id: str | None
    notes: str | None
    total_amount: float
    created_at: datetime | None
    updated_at: datetime | None

    @field_validator("pickup_time", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value) if value is not None else value


class WaitEstimateRequest(BaseModel):
    vendor_id: str
    pickup_time: datetime
    # empty basket: manually scheduled order with unspecified contents
    items: list[OrderItem] = Field(default_factory=list, max_length=50)


class WaitEstimateOut(BaseModel):
    vendor_id: str
    estimated_wait_minutes: int
    display: str
    peak_window: str | None = None


class EarliestPickupOut(BaseModel):
    customer_id: str
    tier: CustomerTier
    advance_minutes: int
    earliest_pickup: datetime


class TemplateCreate(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=64)
    vendor_id: str = Field(..., min_length=1, max_length=36)
    items: list[OrderItem] = Field(..., min_length=1, max_length=50)
    pickup_time_of_day: str = Field(..., examples=["12:15"])
    days_of_week: list[str] = Field(..., min_length=1, max_length=7)
    total_weeks: int = 4
    notes: str | None = Field(None, max_length=500)
    total_amount: float = Field(0.0, ge=0)
    active: bool = True


class TemplateUpdate(BaseModel):
    items: list[OrderItem] | None = Field(None, min_length=1, max_length=50)
    pickup_time_of_day: str | None = None
    days_of_week: list[str] | None = Field(None, min_length=1, max_length=7)
    total_weeks: int | None = None
    notes: str | None = Field(None, max_length=500)
    total_amount: float | None = Field(None, ge=0)


class TemplateToggle(BaseModel):
    active: bool


class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    vendor_id: str
    items: list[OrderItem]
    pickup_time_of_day: str
    days_of_week: list[str]
    notes: str | None
    total_amount: float
    active: bool
    total_weeks: int
    starts_on: date
    next_execution: datetime | None
    last_materialized_on: date | None
    source_preorder_id: str | None

    @field_validator("next_execution")
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value) if value is not None else value


class MaterializeRequest(BaseModel):
    today: date | None = None


class MaterializeOut(BaseModel):
    run_date: date
    created: list[PreOrderOut]


class QueueStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vendor_id: str
    active_order_count: int
    average_prep_minutes: float
    last_updated: datetime | None
    current_wait_minutes: int | None = None

    @field_validator("last_updated")
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value) if value is not None else value


class AveragePrepUpdate(BaseModel):
    average_prep_minutes: float = Field(..., gt=0, le=240)


class AnalyticsOut(BaseModel):
    total_preorders: int
    active_preorders: int
    recurring_orders: int
    completion_rate: float
    no_show_rate: float
    average_wait_minutes: float
    peak_time_orders: int
    popular_items: dict[str, int]
    popular_time_slots: dict[str, int]
    status_counts: dict[str, int]
    tier_breakdown: dict[str, int]
    revenue_impact: float
