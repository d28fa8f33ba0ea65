from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .arbiter import ConflictArbiter
from .booking import Booking, BookingStatus, StatusChange
from .calendar_index import CalendarIndex
from .errors import BusyError, InvalidTransitionError, PermissionDeniedError
from .notifier import (
    EVENT_ACCEPTED,
    EVENT_AUTO_REJECTED,
    EVENT_CANCELLED,
    EVENT_COMPLETED,
    EVENT_REJECTED,
    Notifier,
    deliver,
)
from .yaml_store import AUTO_REJECTED, BookingYamlStore

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"
CANCEL = "cancel"
COMPLETE = "complete"

ROLE_OWNER = "owner"
ROLE_RENTER = "renter"
ROLE_SYSTEM = "system"

SYSTEM_ACTOR = "system"

# (from status, event) -> (to status, roles allowed to fire it)
TRANSITIONS: dict[tuple[str, str], tuple[str, frozenset[str]]] = {
    (BookingStatus.PENDING, ACCEPT): (BookingStatus.ACCEPTED, frozenset({ROLE_OWNER})),
    (BookingStatus.PENDING, REJECT): (BookingStatus.REJECTED, frozenset({ROLE_OWNER})),
    (BookingStatus.PENDING, CANCEL): (BookingStatus.CANCELLED, frozenset({ROLE_RENTER})),
    (BookingStatus.ACCEPTED, CANCEL): (BookingStatus.CANCELLED, frozenset({ROLE_RENTER, ROLE_OWNER})),
    (BookingStatus.ACCEPTED, COMPLETE): (BookingStatus.COMPLETED, frozenset({ROLE_SYSTEM})),
}

EVENT_FOR_STATUS = {
    BookingStatus.ACCEPTED: ACCEPT,
    BookingStatus.REJECTED: REJECT,
    BookingStatus.CANCELLED: CANCEL,
    BookingStatus.COMPLETED: COMPLETE,
}

_NOTIFY_EVENTS = {
    ACCEPT: EVENT_ACCEPTED,
    REJECT: EVENT_REJECTED,
    CANCEL: EVENT_CANCELLED,
    COMPLETE: EVENT_COMPLETED,
}


@dataclass(frozen=True)
class TransitionResult:
    booking: Booking
    auto_rejected: tuple[Booking, ...] = ()


def actor_roles(booking: Booking, actor_id: str) -> frozenset[str]:
    roles = set()
    if actor_id == booking.owner_id:
        roles.add(ROLE_OWNER)
    if actor_id == booking.renter_id:
        roles.add(ROLE_RENTER)
    if actor_id == SYSTEM_ACTOR:
        roles.add(ROLE_SYSTEM)
    return frozenset(roles)


class LifecycleController:
    """Booking state machine: who may move a booking where, and what follows.

    Every transition runs inside the vehicle's lock. Accepting a booking puts
    its dates into the calendar and rejects the overlapping pending requests
    for the same vehicle in the same store write.
    """

    def __init__(
        self,
        store: BookingYamlStore,
        calendar: CalendarIndex,
        arbiter: ConflictArbiter,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.calendar = calendar
        self.arbiter = arbiter
        self.notifier = notifier

    def authorize(self, booking: Booking, event: str, actor_id: str, now: datetime | None = None) -> str:
        """Return the status ``event`` leads to, or raise why ``actor_id`` may not fire it."""
        edge = TRANSITIONS.get((booking.status, event))
        if booking.is_terminal or edge is None:
            detail = "booking is already final" if booking.is_terminal else f"no '{event}' from this state"
            raise InvalidTransitionError(booking.status, _target_name(event), detail)

        target, allowed_roles = edge
        if not actor_roles(booking, actor_id) & allowed_roles:
            raise PermissionDeniedError(
                f"User {actor_id} may not {event} booking {booking.booking_id}; "
                f"allowed: {', '.join(sorted(allowed_roles))}."
            )

        if event == COMPLETE and now is not None and now.date() < booking.end_date:
            raise InvalidTransitionError(booking.status, target, "rental period has not ended")
        return target

    def authorize_status(self, booking: Booking, new_status: str, actor_id: str, now: datetime) -> str:
        event = EVENT_FOR_STATUS.get(new_status)
        if event is None:
            raise InvalidTransitionError(booking.status, new_status)
        return self.authorize(booking, event, actor_id, now)

    def is_allowed(self, booking: Booking, event: str, actor_id: str, now: datetime | None = None) -> bool:
        try:
            self.authorize(booking, event, actor_id, now)
        except (InvalidTransitionError, PermissionDeniedError):
            return False
        return True

    def allowed_events(self, booking: Booking, actor_id: str, now: datetime | None = None) -> list[str]:
        return [
            event
            for (status, event) in TRANSITIONS
            if status == booking.status and self.is_allowed(booking, event, actor_id, now)
        ]

    def apply(
        self,
        booking_id: str,
        event: str,
        actor_id: str,
        *,
        now: datetime | None = None,
        message: str | None = None,
    ) -> TransitionResult:
        effective_now = (now or datetime.now()).replace(microsecond=0)
        vehicle_id = self.store.get(booking_id).vehicle_id

        with self.arbiter.hold(vehicle_id):
            # Another process sharing the data directory may have changed this vehicle.
            self.calendar.sync_vehicle(vehicle_id, self.store.list_by_vehicle(vehicle_id, [BookingStatus.ACCEPTED]))
            current = self.store.get(booking_id)
            target = self.authorize(current, event, actor_id, effective_now)
            if event == ACCEPT:
                result = self._accept(current, actor_id, effective_now, message)
            else:
                updated = self.store.update_status(
                    booking_id,
                    target,
                    actor_id,
                    self,
                    now=effective_now,
                    message=message,
                )
                if current.status == BookingStatus.ACCEPTED:
                    self.calendar.remove(current.vehicle_id, current.start_date, current.end_date)
                result = TransitionResult(booking=updated)

        logger.info("Booking %s: %s -> %s by %s", booking_id, current.status, result.booking.status, actor_id)
        deliver(self.notifier, _NOTIFY_EVENTS[event], result.booking)
        for sibling in result.auto_rejected:
            deliver(self.notifier, EVENT_AUTO_REJECTED, sibling)
        return result

    def _accept(self, booking: Booking, actor_id: str, now: datetime, message: str | None) -> TransitionResult:
        self.calendar.insert(booking.vehicle_id, booking.start_date, booking.end_date, booking.booking_id)

        siblings = [
            other
            for other in self.store.list_by_vehicle(booking.vehicle_id, [BookingStatus.PENDING])
            if other.booking_id != booking.booking_id and other.overlaps(booking.start_date, booking.end_date)
        ]
        changes = [
            (
                booking.booking_id,
                StatusChange(BookingStatus.PENDING, BookingStatus.ACCEPTED, actor_id, now, message=message),
            )
        ]
        changes.extend(
            (
                other.booking_id,
                StatusChange(
                    BookingStatus.PENDING,
                    BookingStatus.REJECTED,
                    actor_id,
                    now,
                    reason=AUTO_REJECTED,
                    message=f"Dates were taken by booking {booking.booking_id}.",
                ),
            )
            for other in siblings
        )

        try:
            updated = self.store.commit_transitions(changes, now=now)
        except Exception:
            self.calendar.remove(booking.vehicle_id, booking.start_date, booking.end_date)
            raise

        if siblings:
            logger.info(
                "Accepting booking %s auto-rejected %d overlapping request(s) on vehicle %s",
                booking.booking_id,
                len(siblings),
                booking.vehicle_id,
            )
        return TransitionResult(booking=updated[0], auto_rejected=tuple(updated[1:]))

    def complete_expired(self, now: datetime | None = None) -> int:
        """Complete every accepted booking whose end date has been reached."""
        effective_now = (now or datetime.now()).replace(microsecond=0)
        due = [
            booking
            for booking in self.store.list_by_status(BookingStatus.ACCEPTED)
            if booking.end_date <= effective_now.date()
        ]

        completed = 0
        for booking in due:
            try:
                self.apply(booking.booking_id, COMPLETE, SYSTEM_ACTOR, now=effective_now)
            except BusyError:
                logger.warning("Vehicle %s busy, booking %s left for the next sweep", booking.vehicle_id, booking.booking_id)
                continue
            except InvalidTransitionError as error:
                logger.info("Booking %s changed before it could be completed: %s", booking.booking_id, error)
                continue
            completed += 1

        if due:
            logger.info("Sweep completed %d of %d expired booking(s)", completed, len(due))
        return completed


def _target_name(event: str) -> str:
    for (_, candidate), (target, _) in TRANSITIONS.items():
        if candidate == event:
            return target
    return event
