"""
PreOrder Manager — Error taxonomy

Validation failures (InvalidArgument, PickupTooSoon, InvalidTransition) are
raised before any write happens, so a failed operation never leaves a
partial order or a drifted queue counter behind.
"""
from datetime import datetime


class PreOrderError(Exception):
    """Base class for every error surfaced by the pre-order core."""


class InvalidArgument(PreOrderError, ValueError):
    """Malformed input: unknown weekday, preset, time-of-day, week count..."""


class PickupTooSoon(PreOrderError):
    """The requested pickup falls inside the customer's admission window."""

    def __init__(self, requested: datetime, earliest_pickup: datetime, advance_minutes: int):
        self.requested = requested
        self.earliest_pickup = earliest_pickup
        self.advance_minutes = advance_minutes
        super().__init__(
            f"Pickup must be at least {advance_minutes} minutes ahead "
            f"(earliest allowed: {earliest_pickup.isoformat()})."
        )


class InvalidTransition(PreOrderError):
    """Requested status change is not allowed from the order's current status."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move pre-order '{order_id}' from '{current}' to '{requested}'."
        )


class NotFoundError(PreOrderError, LookupError):
    entity = "record"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"{self.entity} '{key}' not found.")


class VendorNotFound(NotFoundError):
    entity = "Vendor"


class TemplateNotFound(NotFoundError):
    entity = "Recurring template"


class OrderNotFound(NotFoundError):
    entity = "Pre-order"


class QueueCounterUnderflow(PreOrderError):
    """A decrement would push a vendor's active count below zero.

    Never raised to callers: the counter is clamped and this is logged.
    """

    def __init__(self, vendor_id: str, current: int, delta: int):
        self.vendor_id = vendor_id
        self.current = current
        self.delta = delta
        super().__init__(
            f"Queue counter underflow for vendor '{vendor_id}': "
            f"current={current}, delta={delta}; clamped to 0."
        )
