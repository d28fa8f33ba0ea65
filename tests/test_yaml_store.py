import tempfile
import unittest
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from filelock import FileLock

from vehicle_bookings import (
    BookingNotFoundError,
    BookingStatus,
    BusyError,
    BookingYamlStore,
    CalendarIndex,
    ConflictArbiter,
    ConflictError,
    InvalidTransitionError,
    LifecycleController,
    PermissionDeniedError,
    StatusChange,
)


def create(store: BookingYamlStore, renter: str = "renter-a", owner: str = "owner-1", vehicle: str = "v-1", now=None):
    return store.create(
        vehicle_id=vehicle,
        renter_id=renter,
        owner_id=owner,
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 5),
        price_per_day=Decimal("100"),
        now=now or datetime(2024, 5, 1, 9, 0),
    )


class TestBookingYamlStore(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        self.store = BookingYamlStore(self.data_dir)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def test_create_assigns_id_timestamps_and_pending_status(self) -> None:
        booking = create(self.store)

        self.assertTrue(booking.booking_id)
        self.assertEqual(booking.status, BookingStatus.PENDING)
        self.assertEqual(booking.created_at, datetime(2024, 5, 1, 9, 0))
        self.assertEqual(booking.updated_at, booking.created_at)
        self.assertEqual(len(booking.history), 1)
        self.assertEqual(self.store.get(booking.booking_id), booking)

    def test_records_survive_a_new_store_instance(self) -> None:
        booking = create(self.store)

        reopened = BookingYamlStore(self.data_dir)

        self.assertEqual(reopened.get(booking.booking_id).total_price, Decimal("400"))

    def test_get_unknown_raises_not_found(self) -> None:
        with self.assertRaises(BookingNotFoundError):
            self.store.get("missing")

    def test_lists_are_newest_first(self) -> None:
        older = create(self.store, now=datetime(2024, 5, 1, 9, 0))
        newer = create(self.store, now=datetime(2024, 5, 2, 9, 0))
        other_renter = create(self.store, renter="renter-b", now=datetime(2024, 5, 3, 9, 0))

        by_renter = self.store.list_by_renter("renter-a")
        by_owner = self.store.list_by_owner("owner-1")

        self.assertEqual([b.booking_id for b in by_renter], [newer.booking_id, older.booking_id])
        self.assertEqual(
            [b.booking_id for b in by_owner],
            [other_renter.booking_id, newer.booking_id, older.booking_id],
        )

    def test_same_second_bookings_keep_insertion_order_reversed(self) -> None:
        first = create(self.store)
        second = create(self.store)

        self.assertEqual(
            [b.booking_id for b in self.store.list_by_renter("renter-a")],
            [second.booking_id, first.booking_id],
        )

    def test_list_pending_for_owner_skips_decided_bookings(self) -> None:
        pending = create(self.store)
        decided = create(self.store)
        self.store.commit_transitions(
            [
                (
                    decided.booking_id,
                    StatusChange(BookingStatus.PENDING, BookingStatus.REJECTED, "owner-1", datetime(2024, 5, 2)),
                )
            ]
        )

        pending_ids = [b.booking_id for b in self.store.list_pending_for_owner("owner-1")]

        self.assertEqual(pending_ids, [pending.booking_id])

    def test_commit_transitions_is_all_or_nothing(self) -> None:
        first = create(self.store)
        second = create(self.store)
        now = datetime(2024, 5, 2, 9, 0)

        with self.assertRaises(InvalidTransitionError):
            self.store.commit_transitions(
                [
                    (first.booking_id, StatusChange(BookingStatus.PENDING, BookingStatus.ACCEPTED, "owner-1", now)),
                    (second.booking_id, StatusChange(BookingStatus.ACCEPTED, BookingStatus.CANCELLED, "owner-1", now)),
                ],
                now=now,
            )

        self.assertEqual(self.store.get(first.booking_id).status, BookingStatus.PENDING)
        self.assertEqual(self.store.get(second.booking_id).status, BookingStatus.PENDING)

    def test_update_status_consults_the_policy(self) -> None:
        booking = create(self.store)
        policy = LifecycleController(self.store, CalendarIndex(), ConflictArbiter())

        with self.assertRaises(PermissionDeniedError):
            self.store.update_status(booking.booking_id, BookingStatus.REJECTED, "renter-a", policy)

        updated = self.store.update_status(
            booking.booking_id,
            BookingStatus.REJECTED,
            "owner-1",
            policy,
            now=datetime(2024, 5, 2, 9, 0),
            message="Not this week",
        )

        self.assertEqual(updated.status, BookingStatus.REJECTED)
        self.assertEqual(updated.updated_at, datetime(2024, 5, 2, 9, 0))
        self.assertEqual(updated.history[-1].message, "Not this week")
        self.assertEqual(self.store.get(booking.booking_id), updated)

    def test_update_status_refuses_to_accept(self) -> None:
        first = create(self.store)
        second = create(self.store)
        policy = LifecycleController(self.store, CalendarIndex(), ConflictArbiter())

        for booking in (first, second):
            with self.assertRaises(InvalidTransitionError):
                self.store.update_status(booking.booking_id, BookingStatus.ACCEPTED, "owner-1", policy)

        self.assertEqual(self.store.list_by_status(BookingStatus.ACCEPTED), [])

    def test_commit_transitions_refuses_a_second_overlapping_accept(self) -> None:
        first = create(self.store)
        second = create(self.store)
        touching = self.store.create(
            vehicle_id="v-1",
            renter_id="renter-c",
            owner_id="owner-1",
            start_date=date(2024, 6, 5),
            end_date=date(2024, 6, 7),
            price_per_day=Decimal("100"),
            now=datetime(2024, 5, 1, 9, 0),
        )
        now = datetime(2024, 5, 2, 9, 0)

        def accept(booking_id: str):
            return self.store.commit_transitions(
                [(booking_id, StatusChange(BookingStatus.PENDING, BookingStatus.ACCEPTED, "owner-1", now))],
                now=now,
            )

        accept(first.booking_id)
        with self.assertRaises(ConflictError):
            accept(second.booking_id)
        accept(touching.booking_id)

        self.assertEqual(self.store.get(second.booking_id).status, BookingStatus.PENDING)
        self.assertEqual(len(self.store.list_by_status(BookingStatus.ACCEPTED)), 2)

    def test_writers_from_another_process_are_waited_for(self) -> None:
        store = BookingYamlStore(self.data_dir, lock_timeout_seconds=0.2)

        with FileLock(str(self.data_dir / "bookings.yaml.lock")):
            with self.assertRaises(BusyError):
                create(store)

        self.assertEqual(self.store.list_all(), [])
        create(store)
        self.assertEqual(len(self.store.list_all()), 1)

    def test_events_are_logged(self) -> None:
        booking = create(self.store)
        self.store.commit_transitions(
            [
                (
                    booking.booking_id,
                    StatusChange(BookingStatus.PENDING, BookingStatus.CANCELLED, "renter-a", datetime(2024, 5, 2)),
                )
            ]
        )

        contents = (self.data_dir / "booking_events.yaml").read_text(encoding="utf-8")
        self.assertIn("BOOKING_CREATED", contents)
        self.assertIn("BOOKING_STATUS_CHANGED", contents)

    def test_corrupted_file_is_backed_up_and_reset(self) -> None:
        (self.data_dir / "bookings.yaml").write_text("- [unclosed\n", encoding="utf-8")

        self.assertEqual(self.store.list_all(), [])

        backups = list(self.data_dir.glob("bookings.corrupt.*.yaml"))
        self.assertEqual(len(backups), 1)
        event_types = [event["event_type"] for event in self.store.get_events()]
        self.assertIn("YAML_RECOVERED", event_types)

    def test_non_mapping_rows_are_skipped(self) -> None:
        booking = create(self.store)
        path = self.data_dir / "bookings.yaml"
        path.write_text(path.read_text(encoding="utf-8") + "- just a string\n", encoding="utf-8")

        self.assertEqual([b.booking_id for b in self.store.list_all()], [booking.booking_id])
        event_types = [event["event_type"] for event in self.store.get_events()]
        self.assertIn("YAML_ROW_SKIPPED", event_types)


if __name__ == "__main__":
    unittest.main()
