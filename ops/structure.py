"""
Structural validation of the Data and Configuration documents.

Policy:
- Every violation is collected before failing; StructureError lists them all.
- A missing vehicle block (bus/mobil/motor) is repaired to {total: 0, available: 0}
  and reported as a warning, never as an error.
- Range problems (available < 0, available > total) are CapacityViolations: they
  are reported here and clamped by the writers, they do not fail the load.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from ops.errors import CapacityViolation, StructureError
from ops.jsonio import read_json
from ops.models import VEHICLE_TYPES, ConfigDocument, DataDocument, coerce_count


def format_validation_error(exc: ValidationError) -> List[str]:
    out: List[str] = []
    for err in exc.errors():
        where = ""
        for part in err.get("loc", ()):
            where += f"[{part}]" if isinstance(part, int) else (f".{part}" if where else str(part))
        out.append(f"{where or 'document'}: {err.get('msg')}")
    return out


def _label(idx: int, loc: Mapping[str, Any], key: str) -> str:
    name = loc.get(key)
    return f"locations[{idx}] ({name})" if isinstance(name, str) and name else f"locations[{idx}]"


def _check_number(errors: List[str], where: str, value: Any) -> None:
    try:
        coerce_count(value)
    except ValueError:
        errors.append(f"{where} is not a number ({value!r})")


def _duplicate_names(locations: List[Any], key: str) -> List[str]:
    seen: Dict[str, int] = {}
    errors: List[str] = []
    for idx, loc in enumerate(locations):
        if not isinstance(loc, dict):
            continue
        name = loc.get(key)
        if not isinstance(name, str) or not name:
            continue
        if name in seen:
            errors.append(f"duplicate location {key} '{name}' (locations[{seen[name]}] and locations[{idx}])")
        else:
            seen[name] = idx
    return errors


# ---------------------------------------------------------------------------
# Data document
# ---------------------------------------------------------------------------

def data_structure_errors(raw: Any) -> List[str]:
    if not isinstance(raw, dict):
        return ["document is not a JSON object"]

    errors: List[str] = []
    locations = raw.get("locations")
    if "locations" not in raw:
        errors.append("missing 'locations'")
    elif not isinstance(locations, list):
        errors.append("'locations' must be a list")

    if "statistics" not in raw:
        errors.append("missing 'statistics'")
    elif not isinstance(raw.get("statistics"), dict):
        errors.append("'statistics' must be an object")

    if "metadata" in raw and not isinstance(raw.get("metadata"), dict):
        errors.append("'metadata' must be an object")

    if not isinstance(locations, list):
        return errors

    for idx, loc in enumerate(locations):
        if not isinstance(loc, dict):
            errors.append(f"locations[{idx}] is not an object")
            continue
        label = _label(idx, loc, "nama")
        nama = loc.get("nama")
        if not isinstance(nama, str) or not nama.strip():
            errors.append(f"{label} missing 'nama'")
        for v in VEHICLE_TYPES:
            block = loc.get(v)
            if block is None:
                continue
            if not isinstance(block, dict):
                errors.append(f"{label}.{v} must be an object")
                continue
            for key in ("total", "available"):
                if key in block:
                    _check_number(errors, f"{label}.{v}.{key}", block[key])

    errors.extend(_duplicate_names(locations, "nama"))
    return errors


def data_structure_warnings(raw: Mapping[str, Any]) -> List[str]:
    warnings: List[str] = []
    for idx, loc in enumerate(raw.get("locations") or []):
        label = _label(idx, loc, "nama")
        for v in VEHICLE_TYPES:
            block = loc.get(v)
            if block is None:
                warnings.append(f"{label}: missing '{v}' block, defaulted to zero")
                continue
            for key in ("total", "available"):
                if key not in block:
                    warnings.append(f"{label}.{v}: missing '{key}', defaulted to 0")
    return warnings


def validate_data(raw: Any, source: Optional[str] = None) -> Tuple[DataDocument, List[str]]:
    """Return the typed Data document plus repair warnings, or raise StructureError."""
    errors = data_structure_errors(raw)
    if errors:
        raise StructureError(errors, source)
    try:
        doc = DataDocument.model_validate(raw)
    except ValidationError as e:
        raise StructureError(format_validation_error(e), source) from e
    warnings = data_structure_warnings(raw)
    warnings.extend(v.describe() for v in capacity_violations(doc))
    return doc, warnings


def capacity_violations(doc: DataDocument) -> List[CapacityViolation]:
    out: List[CapacityViolation] = []
    for loc in doc.locations:
        for v in VEHICLE_TYPES:
            block = loc.vehicle(v)
            if block.available < 0:
                out.append(CapacityViolation(loc.nama, v, block.total, block.available, 0))
            elif block.available > block.total:
                out.append(CapacityViolation(loc.nama, v, block.total, block.available, max(block.total, 0)))
    return out


def clamp_capacity(doc: DataDocument, stamp: str, updated_by: str) -> List[CapacityViolation]:
    """Clamp every block of `doc` into 0 <= available <= total, in place.

    A negative total becomes 0. Only blocks that change get a new status,
    last_update and updated_by.
    """
    found = capacity_violations(doc)
    for loc in doc.locations:
        for v in VEHICLE_TYPES:
            block = loc.vehicle(v)
            total = max(block.total, 0)
            available = min(max(block.available, 0), total)
            if (total, available) == (block.total, block.available):
                continue
            block.total, block.available = total, available
            block.status = block.derived_status()
            block.last_update = stamp
            block.updated_by = updated_by
    return found


# ---------------------------------------------------------------------------
# Configuration document
# ---------------------------------------------------------------------------

def config_structure_errors(raw: Any) -> List[str]:
    if not isinstance(raw, dict):
        return ["document is not a JSON object"]

    errors: List[str] = []
    locations = raw.get("locations")
    if "locations" not in raw:
        errors.append("missing 'locations'")
        return errors
    if not isinstance(locations, list):
        errors.append("'locations' must be a list")
        return errors

    for idx, loc in enumerate(locations):
        if not isinstance(loc, dict):
            errors.append(f"locations[{idx}] is not an object")
            continue
        label = _label(idx, loc, "name")
        name = loc.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(f"{label} missing 'name'")
        capacity = loc.get("capacity")
        if capacity is None:
            continue
        if not isinstance(capacity, dict):
            errors.append(f"{label}.capacity must be an object")
            continue
        for v in VEHICLE_TYPES:
            slot = capacity.get(v)
            if slot is None:
                continue
            if not isinstance(slot, dict):
                errors.append(f"{label}.capacity.{v} must be an object")
            elif "total" in slot:
                _check_number(errors, f"{label}.capacity.{v}.total", slot["total"])

    errors.extend(_duplicate_names(locations, "name"))
    return errors


def validate_config(raw: Any, source: Optional[str] = None) -> ConfigDocument:
    errors = config_structure_errors(raw)
    if errors:
        raise StructureError(errors, source)
    try:
        return ConfigDocument.model_validate(raw)
    except ValidationError as e:
        raise StructureError(format_validation_error(e), source) from e


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def load_data_file(path: Path) -> Tuple[DataDocument, List[str]]:
    return validate_data(read_json(path), source=str(path))


def load_config_file(path: Path, required: bool = True) -> Optional[ConfigDocument]:
    """Config is optional for some routines; required=False turns a missing file into None."""
    if not required and not Path(path).exists():
        return None
    return validate_config(read_json(path), source=str(path))
