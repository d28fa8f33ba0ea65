import tempfile
import unittest
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from vehicle_bookings import InMemoryVehicleDirectory, Vehicle
from vehicle_bookings.web_app import create_app

NOW = datetime(2024, 5, 20, 9, 0)


class TestWebApp(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        vehicles = InMemoryVehicleDirectory([Vehicle("vehicle-1", "owner-1", Decimal("100"))])
        self.app = create_app(Path(self._temp_dir.name) / "data", now_provider=lambda: NOW, vehicles=vehicles)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def _create(self, renter: str, start: str, end: str, **extra):
        body = {"vehicle_id": "vehicle-1", "start_date": start, "end_date": end, **extra}
        return self.client.post("/bookings", json=body, headers={"X-User-Id": renter})

    def test_create_booking_returns_pending_booking(self) -> None:
        response = self._create("renter-a", "2024-06-01", "2024-06-05", message="Hi", pickup_location="Depot")

        self.assertEqual(response.status_code, 201)
        payload = response.get_json()
        self.assertTrue(payload["success"])
        data = payload["data"]
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["total_days"], 4)
        self.assertEqual(data["total_price"], "400")
        self.assertEqual(data["pickup_location"], "Depot")
        self.assertEqual(data["allowed_actions"], ["cancelled"])

    def test_delivery_details_are_stored_as_given(self) -> None:
        response = self._create(
            "renter-a",
            "2024-06-01",
            "2024-06-05",
            delivery_requested=True,
            delivery_address="12 Harbour Road",
            delivery_distance_km=7.5,
            upgrade="convertible",
        )

        self.assertEqual(response.status_code, 201)
        booking_id = response.get_json()["data"]["booking_id"]
        data = self.client.get(f"/bookings/{booking_id}", headers={"X-User-Id": "renter-a"}).get_json()["data"]
        self.assertIs(data["delivery_requested"], True)
        self.assertEqual(data["delivery_address"], "12 Harbour Road")
        self.assertEqual(data["delivery_distance_km"], 7.5)
        self.assertNotIn("upgrade", data)

    def test_missing_user_header_is_unauthenticated(self) -> None:
        response = self.client.post("/bookings", json={"vehicle_id": "vehicle-1"})
        self.assertEqual(response.status_code, 401)

    def test_bad_dates_are_validation_errors(self) -> None:
        self.assertEqual(self._create("renter-a", "June 1st", "2024-06-05").status_code, 400)
        response = self._create("renter-a", "2024-06-05", "2024-06-01")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "validation")

    def test_owner_flow_accept_then_conflicts(self) -> None:
        first = self._create("renter-a", "2024-06-01", "2024-06-05").get_json()["data"]
        second = self._create("renter-b", "2024-06-03", "2024-06-06").get_json()["data"]

        requests = self.client.get("/bookings/requests", headers={"X-User-Id": "owner-1"}).get_json()["data"]
        self.assertEqual({row["booking_id"] for row in requests}, {first["booking_id"], second["booking_id"]})

        forbidden = self.client.put(
            f"/bookings/{first['booking_id']}/status",
            json={"status": "accepted"},
            headers={"X-User-Id": "renter-a"},
        )
        self.assertEqual(forbidden.status_code, 403)

        accepted = self.client.put(
            f"/bookings/{first['booking_id']}/status",
            json={"status": "accepted", "message": "See you Saturday"},
            headers={"X-User-Id": "owner-1"},
        )
        self.assertEqual(accepted.status_code, 200)
        accepted_payload = accepted.get_json()
        self.assertEqual(accepted_payload["data"]["status"], "accepted")
        self.assertEqual(accepted_payload["auto_rejected"], [second["booking_id"]])

        repeat = self.client.put(
            f"/bookings/{second['booking_id']}/status",
            json={"status": "accepted"},
            headers={"X-User-Id": "owner-1"},
        )
        self.assertEqual(repeat.status_code, 409)
        self.assertEqual(repeat.get_json()["error"], "invalid_transition")

        unavailable = self._create("renter-c", "2024-06-02", "2024-06-03")
        self.assertEqual(unavailable.status_code, 409)
        self.assertEqual(unavailable.get_json()["error"], "conflict")

    def test_unknown_status_value_is_rejected(self) -> None:
        booking = self._create("renter-a", "2024-06-01", "2024-06-05").get_json()["data"]
        response = self.client.put(
            f"/bookings/{booking['booking_id']}/status",
            json={"status": "completed"},
            headers={"X-User-Id": "owner-1"},
        )
        self.assertEqual(response.status_code, 400)

    def test_get_booking_visibility(self) -> None:
        booking = self._create("renter-a", "2024-06-01", "2024-06-05").get_json()["data"]

        own = self.client.get(f"/bookings/{booking['booking_id']}", headers={"X-User-Id": "owner-1"})
        stranger = self.client.get(f"/bookings/{booking['booking_id']}", headers={"X-User-Id": "someone"})
        missing = self.client.get("/bookings/unknown", headers={"X-User-Id": "owner-1"})

        self.assertEqual(own.status_code, 200)
        self.assertEqual(sorted(own.get_json()["data"]["allowed_actions"]), ["accepted", "rejected"])
        self.assertEqual(stranger.status_code, 403)
        self.assertEqual(missing.status_code, 404)

    def test_list_endpoints(self) -> None:
        self._create("renter-a", "2024-06-01", "2024-06-05")
        self._create("renter-b", "2024-06-10", "2024-06-12")

        mine = self.client.get("/bookings", headers={"X-User-Id": "renter-a"}).get_json()["data"]
        owned = self.client.get("/bookings/owned", headers={"X-User-Id": "owner-1"}).get_json()["data"]

        self.assertEqual([row["renter_id"] for row in mine], ["renter-a"])
        self.assertEqual(len(owned), 2)

    def test_busy_vehicle_returns_retry_after(self) -> None:
        service = self.app.config["BOOKING_SERVICE"]
        service.engine.arbiter.timeout_seconds = 0.05
        with service.engine.arbiter.hold("vehicle-1"):
            response = self._create("renter-a", "2024-06-01", "2024-06-05")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.headers["Retry-After"], "1")


if __name__ == "__main__":
    unittest.main()
