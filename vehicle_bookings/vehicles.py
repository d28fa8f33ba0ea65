from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Protocol

import yaml

AVAILABILITY_STATUSES = frozenset({"available", "booked", "maintenance", "inactive"})
UNBOOKABLE_STATUSES = frozenset({"maintenance", "inactive"})


@dataclass(frozen=True)
class Vehicle:
    vehicle_id: str
    owner_id: str
    price_per_day: Decimal
    availability_status: str = "available"

    def __post_init__(self) -> None:
        if self.price_per_day < 0:
            raise ValueError("price_per_day must not be negative.")
        if self.availability_status not in AVAILABILITY_STATUSES:
            raise ValueError(f"Unknown availability status: {self.availability_status}")

    @property
    def is_bookable(self) -> bool:
        return self.availability_status not in UNBOOKABLE_STATUSES

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Vehicle":
        try:
            price = Decimal(str(data["price_per_day"]))
        except InvalidOperation as error:
            raise ValueError(f"Invalid price_per_day: {data.get('price_per_day')!r}") from error
        return Vehicle(
            vehicle_id=str(data.get("vehicle_id", data.get("id"))),
            owner_id=str(data["owner_id"]),
            price_per_day=price,
            availability_status=str(data.get("availability_status", "available")),
        )


class VehicleDirectory(Protocol):
    def get_vehicle(self, vehicle_id: str) -> Vehicle | None: ...


class InMemoryVehicleDirectory:
    def __init__(self, vehicles: Iterable[Vehicle] = ()) -> None:
        self._vehicles = {vehicle.vehicle_id: vehicle for vehicle in vehicles}

    def add(self, vehicle: Vehicle) -> None:
        self._vehicles[vehicle.vehicle_id] = vehicle

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        return self._vehicles.get(vehicle_id)


class YamlVehicleDirectory:
    """Read-only vehicle lookup over a ``vehicles.yaml`` list exported by the listing service."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        for row in self._read_rows():
            if str(row.get("vehicle_id", row.get("id"))) == vehicle_id:
                return Vehicle.from_dict(row)
        return None

    def _read_rows(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        payload = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            return []
        return [row for row in payload if isinstance(row, dict)]
