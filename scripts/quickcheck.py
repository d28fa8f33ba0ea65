from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
import tempfile
import traceback

from vehicle_bookings import BookingFilter, InMemoryVehicleDirectory, Vehicle, build_service


def main() -> int:
    print("[INFO] Vehicle Booking Quick Check")

    with tempfile.TemporaryDirectory() as temp_dir:
        vehicles = InMemoryVehicleDirectory([Vehicle("vehicle-1", "owner-1", Decimal("100"))])
        service = build_service(vehicles=vehicles, data_dir=Path(temp_dir) / "data")
        now = datetime(2024, 5, 20, 9, 0)

        first = service.create_booking("vehicle-1", "renter-a", date(2024, 6, 1), date(2024, 6, 5), now=now)
        second = service.create_booking("vehicle-1", "renter-b", date(2024, 6, 3), date(2024, 6, 6), now=now)
        if not (first.ok and second.ok):
            print(f"[ERROR] Booking requests refused: {first.message or second.message}")
            return 1
        print(f"[OK] Two overlapping requests pending, first total {first.booking.total_price}")

        accepted = service.respond_to_booking(first.booking.booking_id, "owner-1", "accept", now=now)
        print(f"[OK] Accepted {accepted.booking.booking_id}, auto-rejected {len(accepted.affected)}")

        repeat = service.respond_to_booking(second.booking.booking_id, "owner-1", "accept", now=now)
        print(f"[OK] Accepting the rejected request: {repeat.kind}")

        completed = service.sweep_expired(datetime(2024, 6, 5, 12, 0))
        print(f"[OK] Sweep completed {completed} booking(s)")

        history = service.list_bookings(BookingFilter.by_owner("owner-1"))
        for booking in history:
            print(f"[OK] {booking.booking_id} {booking.renter_id} {booking.status}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
