from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from .arbiter import ConflictArbiter
from .booking import Booking
from .calendar_index import CalendarIndex
from .config import BookingSettings
from .engine import ReservationEngine
from .errors import BookingError, BookingOutcome, PermissionDeniedError, ValidationError
from .lifecycle import ACCEPT, CANCEL, REJECT, LifecycleController
from .notifier import LoggingNotifier, Notifier
from .vehicles import VehicleDirectory, YamlVehicleDirectory
from .yaml_store import BookingYamlStore

logger = logging.getLogger(__name__)

DECISIONS = (ACCEPT, REJECT, CANCEL)

FILTER_BY_RENTER = "by_renter"
FILTER_BY_OWNER = "by_owner"
FILTER_PENDING_FOR_OWNER = "pending_for_owner"


@dataclass(frozen=True)
class BookingFilter:
    mode: str
    user_id: str

    def __post_init__(self) -> None:
        if self.mode not in (FILTER_BY_RENTER, FILTER_BY_OWNER, FILTER_PENDING_FOR_OWNER):
            raise ValueError(f"Unknown booking filter: {self.mode}")

    @classmethod
    def by_renter(cls, renter_id: str) -> "BookingFilter":
        return cls(FILTER_BY_RENTER, renter_id)

    @classmethod
    def by_owner(cls, owner_id: str) -> "BookingFilter":
        return cls(FILTER_BY_OWNER, owner_id)

    @classmethod
    def pending_for_owner(cls, owner_id: str) -> "BookingFilter":
        return cls(FILTER_PENDING_FOR_OWNER, owner_id)


class BookingService:
    """Entry point for the application layer.

    Expected failures come back as ``BookingOutcome`` values; storage failures
    (``BookingStorageError``) propagate.
    """

    def __init__(
        self,
        store: BookingYamlStore,
        calendar: CalendarIndex,
        engine: ReservationEngine,
        lifecycle: LifecycleController,
    ) -> None:
        self.store = store
        self.calendar = calendar
        self.engine = engine
        self.lifecycle = lifecycle

    def create_booking(
        self,
        vehicle_id: str,
        renter_id: str,
        start: date,
        end: date,
        message: str | None = None,
        now: datetime | None = None,
        **details: Any,
    ) -> BookingOutcome:
        try:
            booking = self.engine.request_booking(
                vehicle_id,
                renter_id,
                start,
                end,
                message=message,
                details=details or None,
                now=now,
            )
        except BookingError as error:
            logger.info("Booking request for vehicle %s by %s refused: %s", vehicle_id, renter_id, error)
            return BookingOutcome(error=error)
        return BookingOutcome(booking=booking)

    def respond_to_booking(
        self,
        booking_id: str,
        actor_id: str,
        decision: str,
        message: str | None = None,
        now: datetime | None = None,
    ) -> BookingOutcome:
        if decision not in DECISIONS:
            return BookingOutcome(error=ValidationError(f"Unknown decision: {decision}"))

        try:
            result = self.lifecycle.apply(booking_id, decision, actor_id, now=now, message=message)
        except BookingError as error:
            logger.info("%s on booking %s by %s refused: %s", decision, booking_id, actor_id, error)
            return BookingOutcome(error=error)
        return BookingOutcome(booking=result.booking, affected=result.auto_rejected)

    def get_booking(self, booking_id: str, actor_id: str | None = None) -> BookingOutcome:
        try:
            booking = self.store.get(booking_id)
        except BookingError as error:
            return BookingOutcome(error=error)

        if actor_id is not None and actor_id not in (booking.renter_id, booking.owner_id):
            return BookingOutcome(error=PermissionDeniedError(f"User {actor_id} may not view booking {booking_id}."))
        return BookingOutcome(booking=booking)

    def list_bookings(self, booking_filter: BookingFilter) -> list[Booking]:
        if booking_filter.mode == FILTER_BY_RENTER:
            return self.store.list_by_renter(booking_filter.user_id)
        if booking_filter.mode == FILTER_BY_OWNER:
            return self.store.list_by_owner(booking_filter.user_id)
        return self.store.list_pending_for_owner(booking_filter.user_id)

    def sweep_expired(self, now: datetime | None = None) -> int:
        return self.lifecycle.complete_expired(now)


def build_service(
    settings: BookingSettings | None = None,
    vehicles: VehicleDirectory | None = None,
    notifier: Notifier | None = None,
    data_dir: str | Path | None = None,
) -> BookingService:
    """Wire one service instance over a data directory and pass it around.

    Processes sharing the directory stay consistent: store writes hold a file
    lock and each vehicle's calendar is reloaded under its lock.
    """
    effective_settings = settings or BookingSettings()
    base_dir = Path(data_dir) if data_dir is not None else effective_settings.data_dir

    store = BookingYamlStore(base_dir, lock_timeout_seconds=effective_settings.lock_timeout_seconds)
    calendar = CalendarIndex()
    restored = calendar.rebuild(store.list_all())
    if restored:
        logger.info("Restored %d accepted interval(s) into the calendar index", restored)

    arbiter = ConflictArbiter(effective_settings.lock_timeout_seconds)
    effective_notifier = notifier if notifier is not None else LoggingNotifier()
    effective_vehicles = vehicles if vehicles is not None else YamlVehicleDirectory(base_dir / "vehicles.yaml")

    engine = ReservationEngine(
        store,
        calendar,
        arbiter,
        effective_vehicles,
        notifier=effective_notifier,
        max_booking_days=effective_settings.max_booking_days,
        advance_window_days=effective_settings.advance_window_days,
    )
    lifecycle = LifecycleController(store, calendar, arbiter, notifier=effective_notifier)
    return BookingService(store, calendar, engine, lifecycle)
