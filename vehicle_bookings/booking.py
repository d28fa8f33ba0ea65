from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable


class BookingStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    ALL = frozenset({PENDING, ACCEPTED, REJECTED, CANCELLED, COMPLETED})
    TERMINAL = frozenset({REJECTED, CANCELLED, COMPLETED})


BOOKING_DETAIL_FIELDS = (
    "pickup_time",
    "return_time",
    "pickup_location",
    "return_location",
    "delivery_requested",
    "delivery_address",
    "delivery_distance_km",
)
DETAIL_VALUE_TYPES = (str, bool, int, float)


@dataclass(frozen=True)
class StatusChange:
    from_status: str | None
    to_status: str
    actor_id: str
    at: datetime
    reason: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "at": self.at.isoformat(timespec="seconds"),
        }
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.message is not None:
            payload["message"] = self.message
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "StatusChange":
        return StatusChange(
            from_status=(str(data["from_status"]) if data.get("from_status") is not None else None),
            to_status=str(data["to_status"]),
            actor_id=str(data["actor_id"]),
            at=datetime.fromisoformat(str(data["at"])),
            reason=(str(data["reason"]) if data.get("reason") is not None else None),
            message=(str(data["message"]) if data.get("message") is not None else None),
        )


@dataclass(frozen=True)
class Booking:
    booking_id: str
    vehicle_id: str
    renter_id: str
    owner_id: str
    start_date: date
    end_date: date
    price_per_day: Decimal
    status: str
    created_at: datetime
    updated_at: datetime
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    history: tuple[StatusChange, ...] = ()

    def __post_init__(self) -> None:
        if self.start_date >= self.end_date:
            raise ValueError("Booking start_date must be earlier than end_date.")
        if self.price_per_day < 0:
            raise ValueError("price_per_day must not be negative.")
        if self.status not in BookingStatus.ALL:
            raise ValueError(f"Unknown booking status: {self.status}")

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days

    @property
    def total_price(self) -> Decimal:
        return self.price_per_day * self.total_days

    @property
    def is_terminal(self) -> bool:
        return self.status in BookingStatus.TERMINAL

    def overlaps(self, start: date, end: date) -> bool:
        return has_date_overlap(self.start_date, self.end_date, start, end)

    def with_status(self, change: StatusChange) -> "Booking":
        return replace(self, status=change.to_status, updated_at=change.at, history=self.history + (change,))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "booking_id": self.booking_id,
            "vehicle_id": self.vehicle_id,
            "renter_id": self.renter_id,
            "owner_id": self.owner_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "total_days": self.total_days,
            "price_per_day": str(self.price_per_day),
            "total_price": str(self.total_price),
            "status": self.status,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }
        if self.message is not None:
            payload["message"] = self.message
        for name in BOOKING_DETAIL_FIELDS:
            if name in self.details:
                payload[name] = self.details[name]
        payload["history"] = [change.to_dict() for change in self.history]
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Booking":
        return Booking(
            booking_id=str(data["booking_id"]),
            vehicle_id=str(data["vehicle_id"]),
            renter_id=str(data["renter_id"]),
            owner_id=str(data["owner_id"]),
            start_date=date.fromisoformat(str(data["start_date"])),
            end_date=date.fromisoformat(str(data["end_date"])),
            price_per_day=Decimal(str(data["price_per_day"])),
            status=str(data["status"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
            message=(str(data.get("message")) if data.get("message") is not None else None),
            details={name: data[name] for name in BOOKING_DETAIL_FIELDS if isinstance(data.get(name), DETAIL_VALUE_TYPES)},
            history=tuple(StatusChange.from_dict(row) for row in data.get("history") or [] if isinstance(row, dict)),
        )


def has_date_overlap(new_start: date, new_end: date, exist_start: date, exist_end: date) -> bool:
    """Return True when two date intervals share at least one day.

    Intervals are treated as half-open ranges: [start, end)
    so a booking ending on 06-05 and one starting on 06-05 do not overlap.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValueError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and new_end > exist_start


def find_overlapping(start: date, end: date, bookings: Iterable[Booking]) -> list[Booking]:
    """Return the bookings whose interval intersects [start, end)."""
    if start >= end:
        raise ValueError("start must be earlier than end.")

    return [booking for booking in bookings if booking.overlaps(start, end)]
