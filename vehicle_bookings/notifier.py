from __future__ import annotations

import logging
from typing import Protocol

from .booking import Booking

logger = logging.getLogger(__name__)

EVENT_REQUESTED = "booking_requested"
EVENT_ACCEPTED = "booking_accepted"
EVENT_REJECTED = "booking_rejected"
EVENT_AUTO_REJECTED = "booking_auto_rejected"
EVENT_CANCELLED = "booking_cancelled"
EVENT_COMPLETED = "booking_completed"


class Notifier(Protocol):
    def notify(self, event: str, booking: Booking) -> None: ...


class LoggingNotifier:
    """Default sink: writes lifecycle events to the application log."""

    def notify(self, event: str, booking: Booking) -> None:
        logger.info(
            "%s: booking=%s vehicle=%s renter=%s owner=%s status=%s",
            event,
            booking.booking_id,
            booking.vehicle_id,
            booking.renter_id,
            booking.owner_id,
            booking.status,
        )


def deliver(notifier: Notifier | None, event: str, booking: Booking) -> None:
    """Fire-and-forget delivery; a failing sink never affects the booking."""
    if notifier is None:
        return
    try:
        notifier.notify(event, booking)
    except Exception:
        logger.exception("Notifier failed for %s on booking %s", event, booking.booking_id)
