from __future__ import annotations

from datetime import date
from typing import Any

from mcp.server.fastmcp import FastMCP

from vehicle_bookings import BookingFilter, BookingOutcome, BookingSettings, build_service, configure_logging

mcp = FastMCP(
    "Vehicle Booking MCP Server",
    instructions="Request, answer and list vehicle rental bookings.",
    json_response=True,
)

SETTINGS = BookingSettings.from_env()
SERVICE = build_service(SETTINGS)


def _outcome_to_dict(outcome: BookingOutcome) -> dict[str, Any]:
    if not outcome.ok:
        return {"ok": False, "error": outcome.kind, "message": outcome.message, "retryable": outcome.retryable}
    return {
        "ok": True,
        "booking": outcome.booking.to_dict(),
        "auto_rejected": [booking.booking_id for booking in outcome.affected],
    }


@mcp.tool()
def create_booking(
    vehicle_id: str,
    renter_id: str,
    start_date: str,
    end_date: str,
    message: str | None = None,
) -> dict[str, Any]:
    """Request a vehicle for [start_date, end_date) using ISO dates."""
    try:
        start = date.fromisoformat(start_date)
        end = date.fromisoformat(end_date)
    except ValueError as error:
        return {"ok": False, "error": "validation", "message": str(error), "retryable": False}
    return _outcome_to_dict(SERVICE.create_booking(vehicle_id, renter_id, start, end, message=message))


@mcp.tool()
def respond_to_booking(booking_id: str, actor_id: str, decision: str, message: str | None = None) -> dict[str, Any]:
    """Accept, reject or cancel a booking as the given user."""
    return _outcome_to_dict(SERVICE.respond_to_booking(booking_id, actor_id, decision, message=message))


@mcp.tool()
def list_bookings(user_id: str, view: str = "by_renter") -> dict[str, Any]:
    """List bookings newest first; view is by_renter, by_owner or pending_for_owner."""
    try:
        booking_filter = BookingFilter(view, user_id)
    except ValueError as error:
        return {"ok": False, "error": "validation", "message": str(error), "retryable": False}
    return {"ok": True, "bookings": [booking.to_dict() for booking in SERVICE.list_bookings(booking_filter)]}


@mcp.tool()
def sweep_expired() -> dict[str, int]:
    """Complete accepted bookings whose rental period has ended."""
    return {"completed": SERVICE.sweep_expired()}


def main() -> None:
    configure_logging(SETTINGS)
    mcp.run()


if __name__ == "__main__":
    main()
