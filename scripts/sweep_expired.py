from __future__ import annotations

from datetime import datetime
import logging
import sys

from vehicle_bookings import BookingSettings, BookingStorageError, build_service, configure_logging

logger = logging.getLogger("sweep_expired")


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    settings = BookingSettings.from_env()
    configure_logging(settings)

    try:
        now = datetime.fromisoformat(args[0]) if args else datetime.now()
    except ValueError:
        logger.error("Invalid sweep time %r; expected an ISO timestamp such as 2024-06-05T12:00", args[0])
        return 2
    logger.info("Sweeping expired bookings in %s as of %s", settings.data_dir.resolve(), now.isoformat(timespec="seconds"))

    service = build_service(settings)
    try:
        completed = service.sweep_expired(now)
    except BookingStorageError:
        logger.exception("Sweep aborted: booking store unavailable")
        return 1

    logger.info("Completed %d booking(s)", completed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
