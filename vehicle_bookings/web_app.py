from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .booking import BOOKING_DETAIL_FIELDS, DETAIL_VALUE_TYPES, Booking
from .config import BookingSettings, configure_logging
from .errors import BookingOutcome
from .lifecycle import EVENT_FOR_STATUS, LifecycleController
from .notifier import Notifier
from .service import DECISIONS, BookingFilter, BookingService, build_service
from .vehicles import VehicleDirectory

USER_HEADER = "X-User-Id"
RETRY_AFTER_SECONDS = "1"

STATUS_CODES = {
    "validation": 400,
    "permission": 403,
    "not_found": 404,
    "conflict": 409,
    "invalid_transition": 409,
    "busy": 503,
}


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    vehicles: VehicleDirectory | None = None,
    notifier: Notifier | None = None,
    settings: BookingSettings | None = None,
    service: BookingService | None = None,
) -> Flask:
    app = Flask(__name__)
    booking_service = service or build_service(
        settings=settings,
        vehicles=vehicles,
        notifier=notifier,
        data_dir=data_dir,
    )
    clock: Callable[[], datetime] = now_provider or datetime.now
    app.config["BOOKING_SERVICE"] = booking_service

    def _serialize_booking(booking: Booking) -> dict[str, Any]:
        payload = booking.to_dict()
        payload["allowed_actions"] = _allowed_actions(booking_service.lifecycle, booking, _current_user() or "", clock())
        return payload

    def _current_user() -> str | None:
        user_id = request.headers.get(USER_HEADER, "").strip()
        return user_id or None

    def _failure(outcome: BookingOutcome) -> Any:
        response = jsonify({"success": False, "error": outcome.kind, "message": outcome.message})
        response.status_code = STATUS_CODES.get(outcome.kind, 400)
        if outcome.retryable:
            response.headers["Retry-After"] = RETRY_AFTER_SECONDS
        return response

    def _unauthenticated() -> Any:
        return jsonify({"success": False, "error": "unauthenticated", "message": f"{USER_HEADER} header is required."}), 401

    def _bad_request(message: str) -> Any:
        return jsonify({"success": False, "error": "validation", "message": message}), 400

    @app.post("/bookings")
    def create_booking() -> Any:
        user_id = _current_user()
        if user_id is None:
            return _unauthenticated()

        payload = request.get_json(silent=True) or {}
        vehicle_id = str(payload.get("vehicle_id", "")).strip()
        if not vehicle_id:
            return _bad_request("vehicle_id is required.")
        try:
            start = date.fromisoformat(str(payload.get("start_date", "")))
            end = date.fromisoformat(str(payload.get("end_date", "")))
        except ValueError:
            return _bad_request("start_date and end_date must be ISO dates (YYYY-MM-DD).")

        details = {
            name: payload[name] for name in BOOKING_DETAIL_FIELDS if isinstance(payload.get(name), DETAIL_VALUE_TYPES)
        }
        message = payload.get("message")
        outcome = booking_service.create_booking(
            vehicle_id,
            user_id,
            start,
            end,
            message=(str(message) if message is not None else None),
            now=clock(),
            **details,
        )
        if not outcome.ok:
            return _failure(outcome)
        return jsonify({"success": True, "data": _serialize_booking(outcome.booking)}), 201

    @app.get("/bookings")
    def list_my_bookings() -> Any:
        user_id = _current_user()
        if user_id is None:
            return _unauthenticated()
        bookings = booking_service.list_bookings(BookingFilter.by_renter(user_id))
        return jsonify({"success": True, "data": [_serialize_booking(booking) for booking in bookings]})

    @app.get("/bookings/owned")
    def list_owned_bookings() -> Any:
        user_id = _current_user()
        if user_id is None:
            return _unauthenticated()
        bookings = booking_service.list_bookings(BookingFilter.by_owner(user_id))
        return jsonify({"success": True, "data": [_serialize_booking(booking) for booking in bookings]})

    @app.get("/bookings/requests")
    def list_pending_requests() -> Any:
        user_id = _current_user()
        if user_id is None:
            return _unauthenticated()
        bookings = booking_service.list_bookings(BookingFilter.pending_for_owner(user_id))
        return jsonify({"success": True, "data": [_serialize_booking(booking) for booking in bookings]})

    @app.get("/bookings/<booking_id>")
    def get_booking(booking_id: str) -> Any:
        user_id = _current_user()
        if user_id is None:
            return _unauthenticated()
        outcome = booking_service.get_booking(booking_id, actor_id=user_id)
        if not outcome.ok:
            return _failure(outcome)
        return jsonify({"success": True, "data": _serialize_booking(outcome.booking)})

    @app.put("/bookings/<booking_id>/status")
    def update_booking_status(booking_id: str) -> Any:
        user_id = _current_user()
        if user_id is None:
            return _unauthenticated()

        payload = request.get_json(silent=True) or {}
        decision = EVENT_FOR_STATUS.get(str(payload.get("status", "")).strip())
        if decision not in DECISIONS:
            return _bad_request("status must be one of: accepted, rejected, cancelled.")

        message = payload.get("message")
        outcome = booking_service.respond_to_booking(
            booking_id,
            user_id,
            decision,
            message=(str(message) if message is not None else None),
            now=clock(),
        )
        if not outcome.ok:
            return _failure(outcome)
        return jsonify(
            {
                "success": True,
                "data": _serialize_booking(outcome.booking),
                "auto_rejected": [booking.booking_id for booking in outcome.affected],
            }
        )

    return app


def _allowed_actions(
    lifecycle: LifecycleController,
    booking: Booking,
    actor_id: str,
    now: datetime,
) -> list[str]:
    statuses = {event: status for status, event in EVENT_FOR_STATUS.items()}
    return [statuses[event] for event in lifecycle.allowed_events(booking, actor_id, now) if event in DECISIONS]


if __name__ == "__main__":
    settings = BookingSettings.from_env()
    configure_logging(settings)
    app = create_app(settings=settings)
    app.run(host="127.0.0.1", port=5000, debug=False, threaded=True)
