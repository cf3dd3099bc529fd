from __future__ import annotations


class CapacityError(Exception):
    """Base class for capacity tracker failures surfaced to callers."""


class NotFoundError(CapacityError):
    """Raised when a pharmacy, slot, shift or override does not exist."""


class ValidationError(CapacityError):
    """Raised when a request is malformed; nothing has been written."""


class CapacityInsufficientError(CapacityError):
    """Raised when a slot's shortfall cannot be reassigned to later slots."""

    def __init__(self, unfulfilled_amount: int, available_capacity: int) -> None:
        super().__init__(
            "Cannot make slot unavailable: insufficient available capacity to reassign unfulfilled orders"
        )
        self.unfulfilled_amount = unfulfilled_amount
        self.available_capacity = available_capacity
