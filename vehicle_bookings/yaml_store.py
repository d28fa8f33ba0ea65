from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from threading import RLock
from typing import Any, Iterable, Iterator, Protocol, Sequence
from uuid import uuid4

import yaml
from filelock import FileLock, Timeout

from .booking import BOOKING_DETAIL_FIELDS, Booking, BookingStatus, StatusChange
from .errors import BookingNotFoundError, BookingStorageError, BusyError, ConflictError, InvalidTransitionError

logger = logging.getLogger(__name__)

CREATED_BY_RENTER = "created"
AUTO_REJECTED = "auto_rejected"


class TransitionPolicy(Protocol):
    def authorize_status(self, booking: Booking, new_status: str, actor_id: str, now: datetime) -> str: ...


class BookingYamlStore:
    """Durable booking records kept in a single YAML file.

    Every mutation rewrites the whole file through a temp file and ``replace``,
    so a status change together with its cascade lands in one write.
    Mutations also hold ``bookings.yaml.lock``, which serializes writers
    from other processes sharing the same data directory.
    """

    def __init__(self, base_dir: str | Path = "data", lock_timeout_seconds: float = 10.0) -> None:
        self.base_dir = Path(base_dir)
        self.bookings_file = self.base_dir / "bookings.yaml"
        self.log_file = self.base_dir / "booking_events.yaml"
        self.lock_timeout_seconds = lock_timeout_seconds
        self._lock = RLock()
        self._ensure_files()
        self._file_lock = FileLock(str(self.bookings_file) + ".lock")

    @contextmanager
    def _writing(self) -> Iterator[None]:
        with self._lock:
            try:
                self._file_lock.acquire(timeout=self.lock_timeout_seconds)
            except Timeout as error:
                logger.warning("Timed out waiting for %s", self._file_lock.lock_file)
                raise BusyError(f"Booking store {self.base_dir} is locked by another writer.") from error
            try:
                yield
            finally:
                self._file_lock.release()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.bookings_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise BookingStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.warning("Could not back up corrupted file %s", path)

        logger.error("Recovered corrupted YAML file %s: %s", path, error)
        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        events = self._read_yaml_list(self.log_file)
        events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
        try:
            self._write_yaml_list(self.log_file, events)
        except BookingStorageError:
            # The booking write already succeeded; the audit trail is best effort.
            logger.exception("Failed to append %s to the event log", event_type)

    def _load_bookings(self) -> list[Booking]:
        bookings: list[Booking] = []
        for index, row in enumerate(self._read_yaml_list(self.bookings_file)):
            try:
                bookings.append(Booking.from_dict(row))
            except (KeyError, ValueError, ArithmeticError) as error:
                logger.warning("Skipping unreadable booking row %d: %s", index, error)
        return bookings

    def get_events(self) -> list[dict[str, Any]]:
        with self._lock:
            return self._read_yaml_list(self.log_file)

    def create(
        self,
        vehicle_id: str,
        renter_id: str,
        owner_id: str,
        start_date: date,
        end_date: date,
        price_per_day: Decimal,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Booking:
        effective_now = (now or datetime.now()).replace(microsecond=0)
        booking = Booking(
            booking_id=str(uuid4()),
            vehicle_id=vehicle_id,
            renter_id=renter_id,
            owner_id=owner_id,
            start_date=start_date,
            end_date=end_date,
            price_per_day=price_per_day,
            status=BookingStatus.PENDING,
            created_at=effective_now,
            updated_at=effective_now,
            message=message,
            details={name: value for name, value in (details or {}).items() if name in BOOKING_DETAIL_FIELDS},
            history=(
                StatusChange(
                    from_status=None,
                    to_status=BookingStatus.PENDING,
                    actor_id=renter_id,
                    at=effective_now,
                    reason=CREATED_BY_RENTER,
                ),
            ),
        )

        with self._writing():
            rows = self._read_yaml_list(self.bookings_file)
            rows.append(booking.to_dict())
            self._write_yaml_list(self.bookings_file, rows)

            self._log_event(
                "BOOKING_CREATED",
                {
                    "booking_id": booking.booking_id,
                    "vehicle_id": vehicle_id,
                    "renter_id": renter_id,
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "total_price": str(booking.total_price),
                },
                effective_now,
            )
        return booking

    def get(self, booking_id: str) -> Booking:
        with self._lock:
            for booking in self._load_bookings():
                if booking.booking_id == booking_id:
                    return booking
        raise BookingNotFoundError(booking_id)

    def list_all(self) -> list[Booking]:
        with self._lock:
            return self._load_bookings()

    def list_by_renter(self, renter_id: str) -> list[Booking]:
        return self._list_newest_first(lambda booking: booking.renter_id == renter_id)

    def list_by_owner(self, owner_id: str) -> list[Booking]:
        return self._list_newest_first(lambda booking: booking.owner_id == owner_id)

    def list_pending_for_owner(self, owner_id: str) -> list[Booking]:
        return self._list_newest_first(
            lambda booking: booking.owner_id == owner_id and booking.status == BookingStatus.PENDING
        )

    def list_by_vehicle(self, vehicle_id: str, statuses: Iterable[str] | None = None) -> list[Booking]:
        wanted = frozenset(statuses) if statuses is not None else None
        return self._list_newest_first(
            lambda booking: booking.vehicle_id == vehicle_id and (wanted is None or booking.status in wanted)
        )

    def list_by_status(self, status: str) -> list[Booking]:
        return self._list_newest_first(lambda booking: booking.status == status)

    def _list_newest_first(self, predicate) -> list[Booking]:
        with self._lock:
            bookings = self._load_bookings()
        # File order breaks ties between bookings created in the same second.
        ranked = sorted(enumerate(bookings), key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [booking for _, booking in ranked if predicate(booking)]

    def update_status(
        self,
        booking_id: str,
        new_status: str,
        actor_id: str,
        policy: TransitionPolicy,
        *,
        now: datetime | None = None,
        message: str | None = None,
        reason: str | None = None,
    ) -> Booking:
        effective_now = (now or datetime.now()).replace(microsecond=0)
        with self._writing():
            current = self.get(booking_id)
            if new_status == BookingStatus.ACCEPTED:
                # Accepting also claims calendar dates; LifecycleController does that.
                raise InvalidTransitionError(current.status, new_status, "accept through the lifecycle controller")
            policy.authorize_status(current, new_status, actor_id, effective_now)
            change = StatusChange(
                from_status=current.status,
                to_status=new_status,
                actor_id=actor_id,
                at=effective_now,
                reason=reason,
                message=message,
            )
            return self.commit_transitions([(booking_id, change)], now=effective_now)[0]

    def commit_transitions(
        self,
        changes: Sequence[tuple[str, StatusChange]],
        now: datetime | None = None,
    ) -> list[Booking]:
        """Apply several status changes in one write, or none of them.

        Each change must still start from the booking's current status;
        a stale change aborts the whole batch. So does accepting a booking
        whose dates an already accepted booking of the same vehicle holds.
        """
        effective_now = (now or datetime.now()).replace(microsecond=0)
        with self._writing():
            rows = self._read_yaml_list(self.bookings_file)
            positions = {str(row.get("booking_id")): index for index, row in enumerate(rows)}

            updated: list[Booking] = []
            for booking_id, change in changes:
                if booking_id not in positions:
                    raise BookingNotFoundError(booking_id)
                index = positions[booking_id]
                current = Booking.from_dict(rows[index])
                if current.status != change.from_status:
                    raise InvalidTransitionError(
                        current.status,
                        change.to_status,
                        f"expected {change.from_status}, booking changed concurrently",
                    )
                next_booking = current.with_status(change)
                rows[index] = next_booking.to_dict()
                updated.append(next_booking)

            for booking in updated:
                if booking.status == BookingStatus.ACCEPTED:
                    _refuse_double_accept(rows, booking)

            if not updated:
                return []
            self._write_yaml_list(self.bookings_file, rows)

            for booking, (_, change) in zip(updated, changes):
                self._log_event(
                    _status_event_type(change),
                    {
                        "booking_id": booking.booking_id,
                        "vehicle_id": booking.vehicle_id,
                        "from_status": change.from_status,
                        "to_status": change.to_status,
                        "actor_id": change.actor_id,
                        "reason": change.reason,
                    },
                    effective_now,
                )
        return updated


def _status_event_type(change: StatusChange) -> str:
    if change.reason == AUTO_REJECTED:
        return "BOOKING_AUTO_REJECTED"
    if change.to_status == BookingStatus.COMPLETED:
        return "BOOKING_COMPLETED"
    return "BOOKING_STATUS_CHANGED"


def _refuse_double_accept(rows: list[dict[str, Any]], accepted: Booking) -> None:
    for row in rows:
        if row.get("booking_id") == accepted.booking_id or row.get("vehicle_id") != accepted.vehicle_id:
            continue
        if row.get("status") != BookingStatus.ACCEPTED:
            continue
        try:
            other = Booking.from_dict(row)
        except (KeyError, ValueError, ArithmeticError):
            continue
        if other.overlaps(accepted.start_date, accepted.end_date):
            raise ConflictError(
                f"Vehicle {accepted.vehicle_id} is already booked from {other.start_date.isoformat()} "
                f"to {other.end_date.isoformat()} by booking {other.booking_id}."
            )
