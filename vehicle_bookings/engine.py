from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from .arbiter import ConflictArbiter
from .booking import Booking, BookingStatus
from .calendar_index import CalendarIndex
from .config import DEFAULT_ADVANCE_WINDOW_DAYS, DEFAULT_MAX_BOOKING_DAYS
from .errors import ConflictError, ValidationError
from .notifier import EVENT_REQUESTED, Notifier, deliver
from .vehicles import Vehicle, VehicleDirectory
from .yaml_store import BookingYamlStore

logger = logging.getLogger(__name__)


class ReservationEngine:
    """Admits new booking requests.

    Only accepted bookings block a request. Overlapping pending requests from
    different renters are all admitted and settled when the owner accepts one.
    """

    def __init__(
        self,
        store: BookingYamlStore,
        calendar: CalendarIndex,
        arbiter: ConflictArbiter,
        vehicles: VehicleDirectory,
        notifier: Notifier | None = None,
        max_booking_days: int = DEFAULT_MAX_BOOKING_DAYS,
        advance_window_days: int = DEFAULT_ADVANCE_WINDOW_DAYS,
    ) -> None:
        self.store = store
        self.calendar = calendar
        self.arbiter = arbiter
        self.vehicles = vehicles
        self.notifier = notifier
        self.max_booking_days = max_booking_days
        self.advance_window_days = advance_window_days

    def request_booking(
        self,
        vehicle_id: str,
        renter_id: str,
        start: date,
        end: date,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Booking:
        effective_now = now or datetime.now()
        start, end = _as_date(start), _as_date(end)
        vehicle = self._validate_request(vehicle_id, renter_id, start, end, effective_now)

        with self.arbiter.hold(vehicle_id):
            self.calendar.sync_vehicle(vehicle_id, self.store.list_by_vehicle(vehicle_id, [BookingStatus.ACCEPTED]))
            if self.calendar.overlaps(vehicle_id, start, end):
                raise ConflictError(
                    f"Vehicle {vehicle_id} is not available from {start.isoformat()} to {end.isoformat()}."
                )

            booking = self.store.create(
                vehicle_id=vehicle_id,
                renter_id=renter_id,
                owner_id=vehicle.owner_id,
                start_date=start,
                end_date=end,
                price_per_day=vehicle.price_per_day,
                message=message,
                details=details,
                now=effective_now,
            )

        logger.info(
            "Booking %s requested by %s for vehicle %s (%s to %s)",
            booking.booking_id,
            renter_id,
            vehicle_id,
            start.isoformat(),
            end.isoformat(),
        )
        deliver(self.notifier, EVENT_REQUESTED, booking)
        return booking

    def check_availability(self, vehicle_id: str, start: date, end: date) -> bool:
        if start >= end:
            raise ValidationError("Booking start date must be earlier than end date.")
        with self.arbiter.hold(vehicle_id):
            self.calendar.sync_vehicle(vehicle_id, self.store.list_by_vehicle(vehicle_id, [BookingStatus.ACCEPTED]))
            return not self.calendar.overlaps(vehicle_id, start, end)

    def _validate_request(
        self,
        vehicle_id: str,
        renter_id: str,
        start: date,
        end: date,
        now: datetime,
    ) -> Vehicle:
        if not isinstance(start, date) or not isinstance(end, date):
            raise ValidationError("Booking dates must be calendar dates.")
        if start >= end:
            raise ValidationError("Booking start date must be earlier than end date.")
        if not renter_id:
            raise ValidationError("renter_id must not be empty.")

        vehicle = self.vehicles.get_vehicle(vehicle_id)
        if vehicle is None:
            raise ValidationError(f"Unknown vehicle: {vehicle_id}")
        if renter_id == vehicle.owner_id:
            raise ValidationError("Owners cannot book their own vehicle.")

        today = now.date()
        if start < today:
            raise ValidationError("Booking start date cannot be in the past.")
        if (end - start).days > self.max_booking_days:
            raise ValidationError(f"Bookings cannot be longer than {self.max_booking_days} days.")
        if start > today + timedelta(days=self.advance_window_days):
            raise ValidationError(f"Bookings must start within {self.advance_window_days} days from today.")

        if not vehicle.is_bookable:
            raise ConflictError(f"Vehicle {vehicle_id} is {vehicle.availability_status} and cannot be booked.")
        return vehicle


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value
