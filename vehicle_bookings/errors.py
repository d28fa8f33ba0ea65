from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .booking import Booking


class BookingError(Exception):
    """Base class for the expected outcomes of a booking operation."""

    kind = "error"
    retryable = False


class ValidationError(BookingError, ValueError):
    kind = "validation"


class ConflictError(BookingError):
    kind = "conflict"


class PermissionDeniedError(BookingError):
    kind = "permission"


class InvalidTransitionError(BookingError):
    kind = "invalid_transition"

    def __init__(self, current: str, target: str, detail: str | None = None) -> None:
        message = f"Invalid booking status transition: {current} -> {target}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.current = current
        self.target = target


class BusyError(BookingError):
    kind = "busy"
    retryable = True


class BookingNotFoundError(BookingError, LookupError):
    kind = "not_found"

    def __init__(self, booking_id: str) -> None:
        super().__init__(f"Booking not found: {booking_id}")
        self.booking_id = booking_id


class BookingStorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class BookingOutcome:
    booking: "Booking | None" = None
    error: BookingError | None = None
    affected: tuple["Booking", ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str:
        return "ok" if self.error is None else self.error.kind

    @property
    def message(self) -> str:
        return "" if self.error is None else str(self.error)

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable
