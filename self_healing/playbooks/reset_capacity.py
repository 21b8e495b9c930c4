from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Dict, Tuple

from ops.backup_manager import snapshot_copy
from ops.errors import StructureError
from ops.jsonio import read_json, write_json
from ops.models import VEHICLE_TYPES, coerce_count, derive_vehicle_status
from ops.settings import Settings
from ops.statistics import recompute_statistics

RESET_BY = "emergency-reset"


def reset_document(raw: Dict[str, Any], now: datetime) -> Tuple[Dict[str, Any], int]:
    """Every vehicle block back to full availability; returns (document, blocks reset)."""
    doc = copy.deepcopy(raw)
    stamp = now.isoformat()
    count = 0
    for loc in doc["locations"]:
        if not isinstance(loc, dict):
            continue
        for v in VEHICLE_TYPES:
            block = loc.get(v)
            if not isinstance(block, dict):
                block = {}
                loc[v] = block
            try:
                total = max(0, coerce_count(block.get("total")))
            except ValueError:
                total = 0
            block.update({
                "total": total,
                "available": total,
                "last_update": stamp,
                "updated_by": RESET_BY,
                "status": derive_vehicle_status(total, total),
            })
            count += 1

    stats = doc.get("statistics") if isinstance(doc.get("statistics"), dict) else {}
    stats = recompute_statistics(stats, doc["locations"], RESET_BY, now)
    stats.update({"last_reset": stamp, "reset_by": RESET_BY})
    doc["statistics"] = stats

    meta = doc.get("metadata") if isinstance(doc.get("metadata"), dict) else {}
    meta.update({
        "last_updated": stamp,
        "updated_by": RESET_BY,
        "emergency_reset": True,
        "total_locations": len(doc["locations"]),
    })
    doc["metadata"] = meta
    return doc, count


def apply(settings: Settings, now: datetime) -> Dict[str, Any]:
    """
    Rung 3: only for a document that still parses and holds a locations array.
    Raises DataIOError / StructureError when there is nothing to reset.
    """
    path = settings.data_path
    raw = read_json(path)
    if not isinstance(raw, dict) or not isinstance(raw.get("locations"), list):
        raise StructureError(["no locations array to reset"], str(path))

    kept = snapshot_copy(path, settings.backups_dir, "pre-reset", now)
    doc, count = reset_document(raw, now)
    write_json(path, doc)
    return {"changed_files": [str(path)], "reset_count": count, "pre_reset_copy": str(kept)}
