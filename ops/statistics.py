"""
The one place statistics totals are computed.

Used by the fixer, the config syncer, the update processor, the capacity reset
in recovery and the monitor. Accepts typed LocationState records or raw
location dicts; an absent or malformed vehicle block counts as zero.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

from ops.models import VEHICLE_TYPES, coerce_count, iter_vehicle_blocks


def _field(block: Any, key: str) -> int:
    if block is None:
        return 0
    value = block.get(key) if isinstance(block, Mapping) else getattr(block, key, 0)
    try:
        return coerce_count(value)
    except ValueError:
        return 0


def calculate(locations: Iterable[Any]) -> Dict[str, int]:
    out = {f"capacity_{v}": 0 for v in VEHICLE_TYPES}
    out.update({f"available_{v}": 0 for v in VEHICLE_TYPES})
    for loc in locations:
        for v, block in iter_vehicle_blocks(loc):
            out[f"capacity_{v}"] += _field(block, "total")
            out[f"available_{v}"] += _field(block, "available")
    return out


def utilization(capacity: int, available: int) -> float:
    if capacity <= 0:
        return 0.0
    return round((capacity - available) / capacity * 100, 1)


def recompute_statistics(
    statistics: Optional[Mapping[str, Any]],
    locations: Iterable[Any],
    by: str,
    now: datetime,
) -> Dict[str, Any]:
    """Return a new statistics mapping; keys the engine does not own are kept."""
    calc = calculate(locations)
    out: Dict[str, Any] = dict(statistics or {})
    for v in VEHICLE_TYPES:
        cap = calc[f"capacity_{v}"]
        avail = calc[f"available_{v}"]
        out[f"total_{v}_capacity"] = cap
        out[f"total_available_{v}"] = avail
        out[f"utilization_{v}"] = utilization(cap, avail)
    total_cap = sum(calc[f"capacity_{v}"] for v in VEHICLE_TYPES)
    total_avail = sum(calc[f"available_{v}"] for v in VEHICLE_TYPES)
    out["utilization_overall"] = utilization(total_cap, total_avail)
    out["last_recalculated"] = now.isoformat()
    out["recalculated_by"] = by
    return out


def statistics_match(statistics: Mapping[str, Any], calc: Mapping[str, int]) -> bool:
    for v in VEHICLE_TYPES:
        if statistics.get(f"total_{v}_capacity") != calc[f"capacity_{v}"]:
            return False
        if statistics.get(f"total_available_{v}") != calc[f"available_{v}"]:
            return False
    return True
