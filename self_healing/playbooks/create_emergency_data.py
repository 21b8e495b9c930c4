from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from ops.backup_manager import snapshot_copy
from ops.errors import DataIOError, StructureError
from ops.jsonio import write_json
from ops.models import VEHICLE_TYPES, ConfigDocument, LocationConfig, derive_vehicle_status
from ops.settings import Settings
from ops.statistics import recompute_statistics
from ops.structure import load_config_file

CREATED_BY = "emergency-recovery"
EMERGENCY_VERSION = "1.0.0"

FALLBACK_LOCATION = {
    "id": 1,
    "nama": "SENOPATI",
    "alamat": "JL P. SENOPATI",
    "koordinat": "-7.8017074,110.3681792",
    "status": "open",
    "operational_hours": "06:00-22:00",
    "petugas": "P001SEN",
    "capacity": {"bus": 62, "mobil": 200, "motor": 0},
}


def _block(total: int, stamp: str) -> Dict[str, Any]:
    return {
        "total": total,
        "available": total,
        "last_update": stamp,
        "updated_by": CREATED_BY,
        "status": derive_vehicle_status(total, total),
    }


def _petugas(loc: LocationConfig) -> Optional[str]:
    if isinstance(loc.id, int) and loc.code:
        return f"P{loc.id:03d}{loc.code[:3]}"
    return None


def location_from_config(loc: LocationConfig, stamp: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": loc.id,
        "nama": loc.name,
        "alamat": loc.address,
        "koordinat": loc.coordinates,
        "status": loc.status,
        "operational_hours": loc.operational_hours,
    }
    for v in VEHICLE_TYPES:
        out[v] = _block(0 if loc.is_special else max(0, loc.capacity.total_for(v)), stamp)
    petugas = _petugas(loc)
    if petugas:
        out["petugas"] = petugas
    out["emergency_created"] = True
    return out


def fallback_location(stamp: str) -> Dict[str, Any]:
    out = {k: v for k, v in FALLBACK_LOCATION.items() if k != "capacity"}
    for v in VEHICLE_TYPES:
        out[v] = _block(FALLBACK_LOCATION["capacity"][v], stamp)
    out["emergency_created"] = True
    return out


def build_emergency_document(
    config: Optional[ConfigDocument],
    now: datetime,
    operation_name: str,
    operation_period: Optional[str],
) -> Dict[str, Any]:
    stamp = now.isoformat()
    if config is not None and config.locations:
        locations = [location_from_config(loc, stamp) for loc in config.locations]
    else:
        locations = [fallback_location(stamp)]

    return {
        "metadata": {
            "last_updated": stamp,
            "updated_by": CREATED_BY,
            "version": EMERGENCY_VERSION,
            "total_locations": len(locations),
            "operation_name": operation_name,
            "operation_period": operation_period,
            "emergency_created": True,
        },
        "statistics": recompute_statistics({"emergency_mode": True}, locations, CREATED_BY, now),
        "locations": locations,
    }


def apply(settings: Settings, now: datetime) -> Dict[str, Any]:
    """
    Rung 4: last resort. Builds a minimal valid document from the locations
    config, or a single known location when the config cannot be read.
    """
    source = "config"
    reason: Optional[str] = None
    try:
        config = load_config_file(settings.config_path, required=False)
    except (DataIOError, StructureError) as e:
        config, reason = None, str(e)
    if config is None or not config.locations:
        source = "fallback"
        reason = reason or "config missing or empty"

    doc = build_emergency_document(config, now, settings.operation.name, settings.operation.period)

    path = settings.data_path
    kept: Optional[str] = None
    if path.exists():
        kept = str(snapshot_copy(path, settings.backups_dir, "pre-emergency", now))
    write_json(path, doc)

    return {
        "changed_files": [str(path)],
        "source": source,
        "fallback_reason": reason,
        "locations_created": len(doc["locations"]),
        "pre_emergency_copy": kept,
    }
