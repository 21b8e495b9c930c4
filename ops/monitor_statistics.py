#!/usr/bin/env python3
"""
ops/monitor_statistics.py — Statistics Monitor (read-only)

- data_inconsistency  reported total_available_<v> drifts from the recomputed sum
                      by more than max_difference (critical above critical_difference)
- high_utilization    per location/vehicle, warning >= 80 %, critical >= 95 %;
                      special locations and not_available blocks are skipped
- stale_update        no update for >= stale_hours.warning hours (critical above
                      stale_hours.critical)
- special_operation_incomplete
                      a special location without both operation periods (warning);
                      the report also lists which special windows are active now

Writes data/reports/monitor-report-YYYY-MM-DD.json (+ -latest) and appends one
line to data/logs/monitor-YYYY-MM-DD.jsonl. Exit 1 when critical findings exist.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ops.errors import DataIOError, StructureError
from ops.jsonio import append_jsonl
from ops.log import get_logger
from ops.models import STATUS_NOT_AVAILABLE, VEHICLE_TYPES, DataDocument, parse_timestamp
from ops.reports import write_github_summary, write_report
from ops.settings import Settings, Thresholds, load_settings
from ops.statistics import calculate, utilization
from ops.structure import load_data_file
from tools.ops.telemetry import emit

COMPONENT = "monitor_statistics"


@dataclass
class Alert:
    type: str
    severity: str
    message: str
    location: Optional[str] = None
    vehicle: Optional[str] = None
    value: Optional[float] = None


def check_reported_statistics(data: DataDocument, thresholds: Thresholds) -> List[Alert]:
    calc = calculate(data.locations)
    limits = thresholds.data_consistency
    alerts: List[Alert] = []
    for v in VEHICLE_TYPES:
        reported = data.statistics.get(f"total_available_{v}")
        calculated = calc[f"available_{v}"]
        if not isinstance(reported, (int, float)) or isinstance(reported, bool):
            alerts.append(Alert("data_inconsistency", "critical",
                                f"{v}: reported availability missing (calculated {calculated})", vehicle=v))
            continue
        diff = abs(calculated - reported)
        if diff > limits.max_difference:
            severity = "critical" if diff > limits.critical_difference else "warning"
            alerts.append(Alert("data_inconsistency", severity,
                                f"{v}: calculated {calculated}, reported {reported} (difference {diff})",
                                vehicle=v, value=diff))
    return alerts


def check_high_utilization(data: DataDocument, thresholds: Thresholds) -> List[Alert]:
    warning, critical = thresholds.utilization.warning, thresholds.utilization.critical
    alerts: List[Alert] = []
    for loc in data.locations:
        if loc.is_special:
            continue
        for v in VEHICLE_TYPES:
            block = loc.vehicle(v)
            if block.total <= 0 or block.status == STATUS_NOT_AVAILABLE:
                continue
            util = utilization(block.total, block.available)
            if util >= warning:
                severity = "critical" if util >= critical else "warning"
                alerts.append(Alert("high_utilization", severity,
                                    f"{loc.nama} {v}: {util:.1f}% utilized ({block.available}/{block.total} free)",
                                    loc.nama, v, util))
    return alerts


def check_stale_updates(data: DataDocument, thresholds: Thresholds, now: datetime) -> List[Alert]:
    stale = thresholds.stale_hours
    alerts: List[Alert] = []
    for loc in data.locations:
        stamps = [parse_timestamp(loc.vehicle(v).last_update) for v in VEHICLE_TYPES]
        stamps = [s for s in stamps if s is not None]
        if not stamps:
            continue
        hours = (now - max(stamps)).total_seconds() / 3600
        if hours >= stale.warning:
            severity = "critical" if hours > stale.critical else "warning"
            alerts.append(Alert("stale_update", severity,
                                f"{loc.nama}: no update for {hours:.1f} hours", loc.nama, value=round(hours, 1)))
    return alerts


def check_special_operations(data: DataDocument, now: datetime) -> Tuple[List[Dict[str, Any]], List[Alert]]:
    windows: List[Dict[str, Any]] = []
    alerts: List[Alert] = []
    for loc in data.locations:
        if not loc.is_special:
            continue
        ops = loc.special_operation
        missing = [p for p in ("period1", "period2") if ops is None or getattr(ops, p) is None]
        if missing:
            alerts.append(Alert("special_operation_incomplete", "warning",
                                f"{loc.nama}: special location without {' and '.join(missing)}", loc.nama))
        windows.append({
            "location": loc.nama,
            "active": bool(ops and ops.is_active(now)),
            "periods": [p.date or p.start for p in ops.periods()] if ops else [],
        })
    return windows, alerts


def monitor(data: DataDocument, thresholds: Thresholds, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    calc = calculate(data.locations)
    issues = check_reported_statistics(data, thresholds)
    windows, special_alerts = check_special_operations(data, now)
    alerts = check_high_utilization(data, thresholds) + check_stale_updates(data, thresholds, now) + special_alerts

    recs: List[str] = []
    if issues:
        recs.append("Run ops/fix_statistics.py to correct inconsistencies")
    if any(a.type == "high_utilization" for a in alerts):
        recs.append("Consider adding temporary parking capacity")
    if any(a.type == "stale_update" for a in alerts):
        recs.append("Contact location officers for updates")
    if special_alerts:
        recs.append("Add the missing special_operation periods")

    total_cap = sum(calc[f"capacity_{v}"] for v in VEHICLE_TYPES)
    total_avail = sum(calc[f"available_{v}"] for v in VEHICLE_TYPES)
    util = {v: utilization(calc[f"capacity_{v}"], calc[f"available_{v}"]) for v in VEHICLE_TYPES}
    util["overall"] = utilization(total_cap, total_avail)

    return {
        "timestamp": now.isoformat(),
        "summary": {
            "calculated": {v: calc[f"available_{v}"] for v in VEHICLE_TYPES},
            "utilization": util,
            "issues_found": len(issues),
            "alerts_generated": len(alerts),
            "critical": sum(1 for a in issues + alerts if a.severity == "critical"),
            "system_status": "needs_attention" if issues else "healthy",
            "special_active": [w["location"] for w in windows if w["active"]],
        },
        "details": {
            "issues": [asdict(a) for a in issues],
            "alerts": [asdict(a) for a in alerts],
            "special_operations": windows,
        },
        "recommendations": recs,
    }


def run(settings: Settings, ci: bool = False, now: Optional[datetime] = None) -> int:
    log = get_logger(COMPONENT, settings.logs_dir)
    now = now or datetime.now(timezone.utc)
    try:
        data, _ = load_data_file(settings.data_path)
    except (DataIOError, StructureError) as e:
        log.error(f"Cannot load data: {e}")
        return 1

    report = monitor(data, settings.thresholds, now)
    for item in report["details"]["issues"] + report["details"]["alerts"]:
        (log.error if item["severity"] == "critical" else log.warn)(item["message"])

    write_report(settings.reports_dir, "monitor-report", report, now)
    append_jsonl(settings.logs_dir / f"monitor-{now:%Y-%m-%d}.jsonl", {
        "timestamp": report["timestamp"],
        "check_type": "statistics_monitor",
        "issues_count": report["summary"]["issues_found"],
        "alerts_count": report["summary"]["alerts_generated"],
        "issues": report["details"]["issues"],
        "alerts": report["details"]["alerts"],
    })
    status = report["summary"]["system_status"]
    if ci:
        write_github_summary("Statistics Monitor", status,
                             [i["message"] for i in report["details"]["issues"] + report["details"]["alerts"]])
    emit(f"{COMPONENT}.completed", report["summary"], telemetry_dir=settings.logs_dir / "telemetry")
    log.info(f"System status: {status}")
    return 1 if report["summary"]["critical"] else 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Monitor parking statistics")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--ci", action="store_true", help="write GitHub step summary")
    args = ap.parse_args(argv)
    return run(load_settings(args.rules), ci=args.ci)


if __name__ == "__main__":
    sys.exit(main())
