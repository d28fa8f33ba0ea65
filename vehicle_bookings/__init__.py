from .booking import Booking, BookingStatus, StatusChange, find_overlapping, has_date_overlap
from .calendar_index import CalendarEntry, CalendarIndex
from .arbiter import ConflictArbiter
from .config import BookingSettings, configure_logging
from .errors import (
	BookingError,
	BookingNotFoundError,
	BookingOutcome,
	BookingStorageError,
	BusyError,
	ConflictError,
	InvalidTransitionError,
	PermissionDeniedError,
	ValidationError,
)
from .engine import ReservationEngine
from .lifecycle import SYSTEM_ACTOR, LifecycleController, TransitionResult
from .notifier import LoggingNotifier, Notifier
from .service import BookingFilter, BookingService, build_service
from .vehicles import InMemoryVehicleDirectory, Vehicle, VehicleDirectory, YamlVehicleDirectory
from .yaml_store import BookingYamlStore

__all__ = [
	"Booking",
	"BookingStatus",
	"StatusChange",
	"find_overlapping",
	"has_date_overlap",
	"CalendarEntry",
	"CalendarIndex",
	"ConflictArbiter",
	"BookingSettings",
	"configure_logging",
	"BookingError",
	"BookingNotFoundError",
	"BookingOutcome",
	"BookingStorageError",
	"BusyError",
	"ConflictError",
	"InvalidTransitionError",
	"PermissionDeniedError",
	"ValidationError",
	"ReservationEngine",
	"SYSTEM_ACTOR",
	"LifecycleController",
	"TransitionResult",
	"LoggingNotifier",
	"Notifier",
	"BookingFilter",
	"BookingService",
	"build_service",
	"InMemoryVehicleDirectory",
	"Vehicle",
	"VehicleDirectory",
	"YamlVehicleDirectory",
	"BookingYamlStore",
]
