"""
Typed records for the Configuration document, the Data document
and the pending-updates queue.

All records keep unknown keys (extra="allow") so that a whole-document replace
written by the engine never loses fields it does not model. Count fields accept
the loose shapes found in hand-edited JSON ("12", 12.0, null) and normalise them
to int; anything that is not a number is a validation error.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, Iterable, List, Optional, Tuple, Union

from dateutil import parser as dateparser
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictInt, field_validator

VEHICLE_TYPES: Tuple[str, ...] = ("bus", "mobil", "motor")

STATUS_EMPTY = "empty"
STATUS_AVAILABLE = "available"
STATUS_FULL = "full"
STATUS_NOT_AVAILABLE = "not_available"
VEHICLE_STATUSES = (STATUS_EMPTY, STATUS_AVAILABLE, STATUS_FULL, STATUS_NOT_AVAILABLE)

LOCATION_STATUS_SPECIAL = "special"

NOTES_MAX_LEN = 500


def coerce_count(value: Any) -> int:
    """Parking spaces are whole numbers; round half up like the field forms do."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"expected a finite number, got {value!r}")
        return int(math.floor(value + 0.5))
    if isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            raise ValueError(f"expected a number, got {value!r}") from None
        return coerce_count(num)
    raise ValueError(f"expected a number, got {type(value).__name__}")


def _drop_unset_nulls(model: BaseModel, dumped: Dict[str, Any]) -> Dict[str, Any]:
    for name in type(model).model_fields:
        value = getattr(model, name)
        out = dumped.get(name)
        if value is None and name not in model.model_fields_set:
            dumped.pop(name, None)
        elif isinstance(value, BaseModel) and isinstance(out, dict):
            _drop_unset_nulls(value, out)
        elif isinstance(value, list) and isinstance(out, list):
            for item, item_out in zip(value, out):
                if isinstance(item, BaseModel) and isinstance(item_out, dict):
                    _drop_unset_nulls(item, item_out)
    return dumped


def dump_document(model: BaseModel) -> Dict[str, Any]:
    """JSON-ready dict of a document.

    Keys that were null in the input (modelled or extra) stay null; optional
    fields the input never had are left out instead of appearing as null.
    """
    return _drop_unset_nulls(model, model.model_dump(mode="json"))


Count = Annotated[int, BeforeValidator(coerce_count)]
UpdateCount = Annotated[int, BeforeValidator(coerce_count), Field(ge=0)]


def derive_vehicle_status(total: int, available: int) -> str:
    if total == 0:
        return STATUS_NOT_AVAILABLE
    if available == total:
        return STATUS_EMPTY
    if available == 0:
        return STATUS_FULL
    return STATUS_AVAILABLE


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Lenient timestamp parsing; naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = dateparser.parse(value.strip())
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Data document
# ---------------------------------------------------------------------------

class VehicleState(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: Count = 0
    available: Count = 0
    last_update: Optional[str] = None
    updated_by: Optional[str] = None
    status: Optional[str] = None

    def derived_status(self) -> str:
        return derive_vehicle_status(self.total, self.available)


class SpecialPeriod(BaseModel):
    model_config = ConfigDict(extra="allow")

    date: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    description: Optional[str] = None

    def window(self) -> Optional[Tuple[datetime, datetime]]:
        start = parse_timestamp(self.start) if self.start else None
        end = parse_timestamp(self.end) if self.end else None
        if start and end:
            return start, end
        day = parse_timestamp(self.date) if self.date else None
        if day is None:
            return None
        day = day.replace(hour=0, minute=0, second=0, microsecond=0)
        return day, day + timedelta(days=1)

    def is_active(self, at: datetime) -> bool:
        win = self.window()
        if win is None:
            return False
        return win[0] <= at < win[1]


class SpecialOperation(BaseModel):
    model_config = ConfigDict(extra="allow")

    period1: Optional[SpecialPeriod] = None
    period2: Optional[SpecialPeriod] = None

    def periods(self) -> List[SpecialPeriod]:
        return [p for p in (self.period1, self.period2) if p is not None]

    def is_active(self, at: datetime) -> bool:
        return any(p.is_active(at) for p in self.periods())


class LocationState(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[Union[int, str]] = None
    nama: str
    alamat: Optional[str] = None
    koordinat: Optional[Any] = None
    status: Optional[str] = None
    operational_hours: Optional[Any] = None
    bus: VehicleState = Field(default_factory=VehicleState)
    mobil: VehicleState = Field(default_factory=VehicleState)
    motor: VehicleState = Field(default_factory=VehicleState)
    special_operation: Optional[SpecialOperation] = None

    def vehicle(self, vehicle_type: str) -> VehicleState:
        if vehicle_type not in VEHICLE_TYPES:
            raise KeyError(vehicle_type)
        return getattr(self, vehicle_type)

    @property
    def is_special(self) -> bool:
        return self.status == LOCATION_STATUS_SPECIAL


class DataDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    metadata: Dict[str, Any] = Field(default_factory=dict)
    statistics: Dict[str, Any] = Field(default_factory=dict)
    locations: List[LocationState]

    def by_name(self) -> Dict[str, LocationState]:
        return {loc.nama: loc for loc in self.locations}

    def to_json(self) -> Dict[str, Any]:
        return dump_document(self)


# ---------------------------------------------------------------------------
# Configuration document
# ---------------------------------------------------------------------------

class CapacitySlot(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: Count = 0


class Capacity(BaseModel):
    model_config = ConfigDict(extra="allow")

    bus: CapacitySlot = Field(default_factory=CapacitySlot)
    mobil: CapacitySlot = Field(default_factory=CapacitySlot)
    motor: CapacitySlot = Field(default_factory=CapacitySlot)

    def total_for(self, vehicle_type: str) -> int:
        return getattr(self, vehicle_type).total


class LocationConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[Union[int, str]] = None
    code: Optional[str] = None
    name: str
    address: Optional[str] = None
    coordinates: Optional[Any] = None
    capacity: Capacity = Field(default_factory=Capacity)
    operational_hours: Optional[Any] = None
    status: Optional[str] = None

    @property
    def is_special(self) -> bool:
        return self.status == LOCATION_STATUS_SPECIAL


class CapacityTotals(BaseModel):
    model_config = ConfigDict(extra="allow")

    bus: Count = 0
    mobil: Count = 0
    motor: Count = 0
    total: Count = 0


class ConfigDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: Optional[Any] = None
    locations: List[LocationConfig]
    total_capacity: Optional[CapacityTotals] = None

    def by_name(self) -> Dict[str, LocationConfig]:
        return {loc.name: loc for loc in self.locations}

    def computed_totals(self) -> CapacityTotals:
        sums = {v: sum(loc.capacity.total_for(v) for loc in self.locations) for v in VEHICLE_TYPES}
        return CapacityTotals(**sums, total=sum(sums.values()))

    def to_json(self) -> Dict[str, Any]:
        return dump_document(self)


# ---------------------------------------------------------------------------
# Pending updates queue
# ---------------------------------------------------------------------------

class PendingUpdate(BaseModel):
    """One raw field report as submitted by an officer (petugas)."""

    model_config = ConfigDict(extra="allow")

    location_id: StrictInt
    petugas_name: str
    timestamp: Optional[str] = None
    bus: Optional[UpdateCount] = None
    mobil: Optional[UpdateCount] = None
    motor: Optional[UpdateCount] = None
    notes: Optional[str] = None

    @field_validator("petugas_name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("petugas_name must not be empty")
        return v

    @field_validator("timestamp")
    @classmethod
    def _timestamp_parses(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and parse_timestamp(v) is None:
            raise ValueError("Invalid timestamp format")
        return v

    def counts(self) -> Dict[str, int]:
        return {v: getattr(self, v) for v in VEHICLE_TYPES if getattr(self, v) is not None}


class LatestPointer(BaseModel):
    model_config = ConfigDict(extra="allow")

    timestamp: str
    backup_file: str
    info_file: Optional[str] = None
    type: Optional[str] = None
    reason: Optional[str] = None


def iter_vehicle_blocks(location: Any) -> Iterable[Tuple[str, Any]]:
    for v in VEHICLE_TYPES:
        if isinstance(location, dict):
            yield v, location.get(v)
        else:
            yield v, getattr(location, v, None)
