from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import Iterable

from .booking import Booking, BookingStatus
from .errors import ConflictError


@dataclass(frozen=True, order=True)
class CalendarEntry:
    start: date
    end: date
    booking_id: str = ""


class CalendarIndex:
    """Accepted date intervals per vehicle, kept sorted and non-overlapping."""

    def __init__(self) -> None:
        self._entries: dict[str, list[CalendarEntry]] = {}
        self._lock = Lock()

    def overlaps(self, vehicle_id: str, start: date, end: date) -> bool:
        return bool(self.find_overlaps(vehicle_id, start, end))

    def find_overlaps(self, vehicle_id: str, start: date, end: date) -> list[CalendarEntry]:
        if start >= end:
            raise ValueError("start must be earlier than end.")

        with self._lock:
            entries = self._entries.get(vehicle_id, [])
            return _scan(entries, start, end)

    def insert(self, vehicle_id: str, start: date, end: date, booking_id: str = "") -> CalendarEntry:
        if start >= end:
            raise ValueError("start must be earlier than end.")

        entry = CalendarEntry(start, end, booking_id)
        with self._lock:
            entries = self._entries.setdefault(vehicle_id, [])
            clashing = _scan(entries, start, end)
            if clashing:
                raise ConflictError(
                    f"Vehicle {vehicle_id} is already booked from {clashing[0].start.isoformat()} "
                    f"to {clashing[0].end.isoformat()}."
                )
            entries.insert(bisect_left(entries, entry), entry)
        return entry

    def remove(self, vehicle_id: str, start: date, end: date) -> bool:
        with self._lock:
            entries = self._entries.get(vehicle_id)
            if not entries:
                return False

            index = bisect_left(entries, CalendarEntry(start, end))
            while index < len(entries) and entries[index].start == start:
                if entries[index].end == end:
                    del entries[index]
                    if not entries:
                        del self._entries[vehicle_id]
                    return True
                index += 1
            return False

    def intervals(self, vehicle_id: str) -> list[CalendarEntry]:
        with self._lock:
            return list(self._entries.get(vehicle_id, []))

    def rebuild(self, bookings: Iterable[Booking]) -> int:
        rebuilt: dict[str, list[CalendarEntry]] = {}
        for booking in bookings:
            if booking.status == BookingStatus.ACCEPTED:
                _add_accepted(rebuilt.setdefault(booking.vehicle_id, []), booking)

        with self._lock:
            self._entries = rebuilt
        return sum(len(entries) for entries in rebuilt.values())

    def sync_vehicle(self, vehicle_id: str, bookings: Iterable[Booking]) -> bool:
        """Replace one vehicle's intervals with the accepted ``bookings``; True if anything changed."""
        entries: list[CalendarEntry] = []
        for booking in bookings:
            if booking.vehicle_id == vehicle_id and booking.status == BookingStatus.ACCEPTED:
                _add_accepted(entries, booking)

        with self._lock:
            previous = self._entries.get(vehicle_id, [])
            if entries:
                self._entries[vehicle_id] = entries
            else:
                self._entries.pop(vehicle_id, None)
        return previous != entries


def _add_accepted(entries: list[CalendarEntry], booking: Booking) -> None:
    entry = CalendarEntry(booking.start_date, booking.end_date, booking.booking_id)
    if _scan(entries, entry.start, entry.end):
        raise ConflictError(f"Accepted bookings overlap on vehicle {booking.vehicle_id}.")
    entries.insert(bisect_left(entries, entry), entry)


def _scan(entries: list[CalendarEntry], start: date, end: date) -> list[CalendarEntry]:
    # Entries never overlap each other, so at most one entry starting before
    # `start` can reach into the window; begin the scan there.
    index = bisect_left(entries, CalendarEntry(start, start))
    if index > 0:
        index -= 1

    found: list[CalendarEntry] = []
    while index < len(entries) and entries[index].start < end:
        entry = entries[index]
        if entry.end > start:
            found.append(entry)
        index += 1
    return found
