"""
Configuration settings for the booking engine.

Values come from environment variables, optionally loaded from a ``.env`` file.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

DEFAULT_DATA_DIR = "data"
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_BOOKING_DAYS = 90
DEFAULT_ADVANCE_WINDOW_DAYS = 365
DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class BookingSettings:
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    max_booking_days: int = DEFAULT_MAX_BOOKING_DAYS
    advance_window_days: int = DEFAULT_ADVANCE_WINDOW_DAYS
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be greater than zero")
        if self.max_booking_days <= 0:
            raise ValueError("max_booking_days must be greater than zero")
        if self.advance_window_days <= 0:
            raise ValueError("advance_window_days must be greater than zero")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, dotenv: bool = True) -> "BookingSettings":
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        return cls(
            data_dir=Path(environ.get("BOOKINGS_DATA_DIR", DEFAULT_DATA_DIR)),
            lock_timeout_seconds=_parse_number(
                environ, "BOOKINGS_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS, float
            ),
            max_booking_days=_parse_number(environ, "BOOKINGS_MAX_DAYS", DEFAULT_MAX_BOOKING_DAYS, int),
            advance_window_days=_parse_number(
                environ, "BOOKINGS_ADVANCE_WINDOW_DAYS", DEFAULT_ADVANCE_WINDOW_DAYS, int
            ),
            log_level=environ.get("BOOKINGS_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper(),
        )


def configure_logging(settings: BookingSettings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def _parse_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {raw!r}") from error
