#!/usr/bin/env python3
"""
ops/fix_statistics.py — Statistics Fixer / Validator

For every location and vehicle type:
- available is clamped to [0, total] (always, in every mode)
- total is clamped to the configured capacity unless mode == "strict"
  (special locations are expected to hold capacity 0)
then statistics are recomputed through ops.statistics.

Modes:
- fix     auto-correct (default)
- strict  report capacity mismatches, correct only the available ordering
--dry-run computes the same diagnostics and writes nothing but the reports.
--quick   clamp + recompute statistics only, no config comparison.

Exit codes:
- 0 everything consistent after the run
- 1 unresolved issues remain (strict mismatches, dry-run findings, locations
    missing from config) or the data document could not be loaded
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ops.backup_manager import BackupManager
from ops.errors import BackupError, CapacityViolation, ConsistencyIssue, DataIOError, StructureError
from ops.jsonio import write_json
from ops.log import get_logger
from ops.models import VEHICLE_TYPES, ConfigDocument, DataDocument, LocationConfig, LocationState
from ops.reports import render_text, write_github_summary, write_report, write_text
from ops.settings import Settings, load_settings
from ops.statistics import calculate, recompute_statistics, utilization
from ops.structure import load_config_file, load_data_file
from tools.audit_append import AuditTrail
from tools.ops.telemetry import emit

COMPONENT = "fix_statistics"
MODES = ("fix", "strict")


@dataclass
class FixEntry:
    location: str
    vehicle: Optional[str]
    field: str
    before: Any
    after: Any
    reason: str


@dataclass
class FixResult:
    document: DataDocument
    mode: str
    dry_run: bool
    issues: List[ConsistencyIssue] = field(default_factory=list)
    unresolved: List[ConsistencyIssue] = field(default_factory=list)
    fixes: List[FixEntry] = field(default_factory=list)
    violations: List[CapacityViolation] = field(default_factory=list)
    before: Dict[str, Any] = field(default_factory=dict)
    after: Dict[str, Any] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.fixes) or self.before != self.after


def _expected_capacity(loc: LocationState, config_loc: Optional[LocationConfig], v: str) -> Optional[int]:
    if loc.is_special or (config_loc is not None and config_loc.is_special):
        return 0
    if config_loc is None:
        return None
    return config_loc.capacity.total_for(v)


def fix_location(
    loc: LocationState,
    config_loc: Optional[LocationConfig],
    mode: str,
    now: datetime,
    result: FixResult,
) -> None:
    stamp = now.isoformat()
    for v in VEHICLE_TYPES:
        block = loc.vehicle(v)
        touched = False

        if block.total < 0:
            result.issues.append(ConsistencyIssue(COMPONENT, f"{loc.nama} {v}: Negative total ({block.total})", loc.nama, v))
            result.fixes.append(FixEntry(loc.nama, v, "total", block.total, 0, "negative total"))
            block.total = 0
            touched = True

        expected = _expected_capacity(loc, config_loc, v)
        if expected is not None and block.total != expected:
            issue = ConsistencyIssue(
                COMPONENT,
                f"{loc.nama} {v}: Total capacity ({block.total}) doesn't match config ({expected})",
                loc.nama, v,
            )
            result.issues.append(issue)
            if mode == "strict":
                result.unresolved.append(issue)
            else:
                result.fixes.append(FixEntry(loc.nama, v, "total", block.total, expected, "config capacity"))
                block.total = expected
                touched = True

        if block.available < 0 or block.available > block.total:
            corrected = 0 if block.available < 0 else block.total
            violation = CapacityViolation(loc.nama, v, block.total, block.available, corrected)
            result.violations.append(violation)
            result.issues.append(ConsistencyIssue(COMPONENT, f"{loc.nama} {violation.describe()}", loc.nama, v))
            result.fixes.append(FixEntry(loc.nama, v, "available", block.available, corrected, violation.kind))
            block.available = corrected
            touched = True

        if touched:
            block.status = block.derived_status()
            block.last_update = stamp
            block.updated_by = COMPONENT


def fix_document(
    data: DataDocument,
    config: Optional[ConfigDocument],
    mode: str = "fix",
    dry_run: bool = False,
    now: Optional[datetime] = None,
    tolerance: int = 5,
) -> FixResult:
    """Pure: returns a corrected copy of the document plus the full diagnostics."""
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
    now = now or datetime.now(timezone.utc)
    doc = data.model_copy(deep=True)
    result = FixResult(document=doc, mode=mode, dry_run=dry_run, before=dict(data.statistics))

    config_map = config.by_name() if config is not None else {}
    for loc in doc.locations:
        config_loc = config_map.get(loc.nama)
        if config is not None and config_loc is None:
            issue = ConsistencyIssue(COMPONENT, f"Location {loc.nama} not found in config", loc.nama)
            result.issues.append(issue)
            result.unresolved.append(issue)
        fix_location(loc, config_loc, mode, now, result)

    count = len(doc.locations)
    if doc.metadata.get("total_locations") != count:
        result.fixes.append(FixEntry("metadata", None, "total_locations", doc.metadata.get("total_locations"), count,
                                     "location count"))
        doc.metadata["total_locations"] = count

    stats = recompute_statistics(doc.statistics, doc.locations, COMPONENT, now)
    stats["config_consistency"] = config_consistency(stats, config, tolerance)
    doc.statistics = stats
    doc.metadata["last_validated"] = now.isoformat()
    doc.metadata["validation_mode"] = mode
    result.after = dict(stats)
    return result


def config_consistency(stats: Dict[str, Any], config: Optional[ConfigDocument], tolerance: int) -> str:
    if config is None or config.total_capacity is None:
        return "unknown"
    declared = config.total_capacity
    for v in VEHICLE_TYPES:
        want = getattr(declared, v)
        if want > 0 and abs(want - stats[f"total_{v}_capacity"]) > tolerance:
            return "warning"
    return "good"


def recommendations_for(
    loc: LocationState,
    config_loc: Optional[LocationConfig],
    has_config: bool,
    warning: float,
    critical: float,
) -> List[str]:
    recs: List[str] = []
    if has_config and config_loc is None:
        return ["Location not found in config - consider updating config file"]
    for v in VEHICLE_TYPES:
        block = loc.vehicle(v)
        configured = config_loc.capacity.total_for(v) if config_loc is not None else 0
        if configured > 0 and block.total == 0 and not loc.is_special:
            recs.append(f"{v}: Missing capacity data (config: {configured})")
        if block.total > 0:
            util = utilization(block.total, block.available)
            if util >= critical:
                recs.append(f"{v}: Critical utilization ({util:.1f}%) - Consider adding capacity")
            elif util >= warning:
                recs.append(f"{v}: High utilization ({util:.1f}%) - Monitor closely")
    return recs


def build_report(result: FixResult, config: Optional[ConfigDocument], settings: Settings, now: datetime) -> Dict[str, Any]:
    doc = result.document
    calc = calculate(doc.locations)
    util = settings.thresholds.utilization
    tolerance = settings.thresholds.config_tolerance
    total_cap = sum(calc[f"capacity_{v}"] for v in VEHICLE_TYPES)
    total_avail = sum(calc[f"available_{v}"] for v in VEHICLE_TYPES)
    declared = config.total_capacity if config is not None else None

    comparison: Dict[str, Any] = {}
    for v in VEHICLE_TYPES:
        want = getattr(declared, v) if declared is not None else 0
        have = calc[f"capacity_{v}"]
        comparison[v] = {
            "config": want,
            "data": have,
            "difference": have - want,
            "status": "match" if want > 0 and abs(have - want) <= tolerance else "mismatch",
        }

    config_map = config.by_name() if config is not None else {}
    recs = []
    for loc in doc.locations:
        r = recommendations_for(loc, config_map.get(loc.nama), config is not None, util.warning, util.critical)
        if r:
            recs.append({"location": loc.nama, "recommendations": r})

    return {
        "timestamp": now.isoformat(),
        "summary": {
            "total_locations": len(doc.locations),
            "total_capacity": total_cap,
            "total_available": total_avail,
            "utilization_percent": utilization(total_cap, total_avail),
            "issues_found": len(result.issues),
            "fixes_applied": 0 if result.dry_run else len(result.fixes),
            "fixes_proposed": len(result.fixes),
            "unresolved": len(result.unresolved),
            "config_consistency": doc.statistics.get("config_consistency", "unknown"),
            "dry_run": result.dry_run,
        },
        "details": {
            "by_vehicle_type": {
                v: {
                    "capacity": calc[f"capacity_{v}"],
                    "available": calc[f"available_{v}"],
                    "utilization": utilization(calc[f"capacity_{v}"], calc[f"available_{v}"]),
                }
                for v in VEHICLE_TYPES
            },
            "config_comparison": comparison,
            "capacity_violations": [
                {"location": c.location, "vehicle": c.vehicle, "kind": c.kind, "available": c.available,
                 "corrected_to": c.corrected_to}
                for c in result.violations
            ],
        },
        "statistics_before": result.before,
        "statistics_after": result.after,
        "issues": [i.msg for i in result.issues],
        "issues_fixed": [asdict(f) for f in result.fixes],
        "recommendations": recs,
        "metadata": {
            "mode": result.mode,
            "thresholds": {"warning": util.warning, "critical": util.critical},
            "max_backups": settings.data_management.max_backup_files,
        },
    }


def run(
    settings: Settings,
    mode: str = "fix",
    dry_run: bool = False,
    quick: bool = False,
    force: bool = False,
    ci: bool = False,
    now: Optional[datetime] = None,
) -> int:
    log = get_logger(COMPONENT, settings.logs_dir)
    now = now or datetime.now(timezone.utc)

    try:
        data, warnings = load_data_file(settings.data_path)
        config = None if quick else load_config_file(settings.config_path, required=False)
    except (DataIOError, StructureError) as e:
        log.error(f"Cannot load documents: {e}")
        log.error("Run self_healing/heal.py --check to diagnose the data file.")
        return 1
    for w in warnings:
        log.warn(w)
    if config is None and not quick:
        log.warn("Configuration not found; capacities are validated against recorded totals only")

    if not dry_run:
        try:
            BackupManager(settings, log=log).create_backup("pre-fix", f"statistics {mode}")
        except BackupError as e:
            if not force:
                log.error(f"Snapshot before fix failed: {e} (use --force to continue without one)")
                return 1
            log.warn(f"Snapshot before fix failed, continuing (--force): {e}")

    result = fix_document(data, config, mode=mode, dry_run=dry_run, now=now,
                          tolerance=settings.thresholds.config_tolerance)
    for issue in result.issues:
        log.warn(issue.msg)

    if not dry_run:
        write_json(settings.data_path, result.document.to_json())
        AuditTrail(settings, COMPONENT).record(
            "fix", f"{len(result.fixes)} fix(es) applied in {mode} mode",
            {"issues": len(result.issues), "fixes": len(result.fixes), "unresolved": len(result.unresolved)},
        )
        log.ok(f"Data saved to {settings.data_path}")
    else:
        log.info(f"DRY RUN: {len(result.fixes)} fix(es) would be applied")

    report = build_report(result, config, settings, now)
    report_path = write_report(settings.reports_dir, "validation-report", report, now)
    write_text(settings.reports_dir / "validation-summary.txt", render_text("validation_summary.txt.j2", report=report))
    log.info(f"Report generated: {report_path}")

    stats = result.document.statistics
    for v in VEHICLE_TYPES:
        log.info(f"{v}: {stats[f'total_available_{v}']}/{stats[f'total_{v}_capacity']} available")

    failed = bool(result.unresolved) or (dry_run and bool(result.issues))
    status = "FAIL" if failed else "PASS"
    if ci:
        write_github_summary("Statistics Fixer", status, [i.msg for i in result.issues])
    emit(f"{COMPONENT}.completed", {"mode": mode, "dry_run": dry_run, "issues": len(result.issues),
                                    "fixes": len(result.fixes), "status": status},
         telemetry_dir=settings.logs_dir / "telemetry")
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Validate and fix parking statistics")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--mode", default="fix", choices=MODES)
    ap.add_argument("--dry-run", action="store_true", help="report only, write nothing to the data file")
    ap.add_argument("--quick", action="store_true", help="clamp + recompute statistics only")
    ap.add_argument("--force", action="store_true", help="continue when the pre-fix snapshot fails")
    ap.add_argument("--max-backups", type=int, default=None, help="override data_management.max_backup_files")
    ap.add_argument("--threshold", type=float, default=None, help="override critical utilization threshold (%%)")
    ap.add_argument("--ci", action="store_true", help="write GitHub step summary")
    args = ap.parse_args(argv)

    settings = load_settings(args.rules)
    if args.max_backups:
        settings.data_management.max_backup_files = args.max_backups
    if args.threshold is not None:
        settings.thresholds.utilization.critical = args.threshold
    return run(settings, mode=args.mode, dry_run=args.dry_run, quick=args.quick, force=args.force, ci=args.ci)


if __name__ == "__main__":
    sys.exit(main())
