#!/usr/bin/env python3
"""
ops/health_check.py — system health check

Checks (critical ones decide the exit code):
- config_file        config/locations-config.json present, parseable, well formed   [critical]
- data_file          data/parkir-data.json valid; pending-updates.json parseable     [critical]
- data_consistency   location count and capacity vs config; reported totals match
                     the location blocks                                             [critical]
- backup_health      compressed backups exist; latest pointer present and verifiable;
                     newest backup not older than 24 hours
- log_files          logs dir present; total size, largest file, activity in 24 hours

Overall status: critical (a critical check failed), warning (a non-critical check
failed), healthy otherwise.

Writes data/reports/health-check-YYYY-MM-DD.json (+ -latest).
Exit codes: 0 healthy or warning, 1 critical
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.table import Table

from ops.backup_manager import (
    COMPRESSED_PREFIX,
    LATEST_POINTER,
    BackupManager,
    iso,
    parse_file_timestamp,
    timestamp_from_name,
)
from ops.consistency_agent import quick_check
from ops.errors import DataIOError
from ops.jsonio import read_json
from ops.log import console, get_logger
from ops.reports import write_github_summary, write_report
from ops.settings import Settings, load_settings
from ops.statistics import calculate, statistics_match
from ops.structure import config_structure_errors
from self_healing.detectors.detect_data_file import detect
from tools.ops.telemetry import emit

COMPONENT = "health_check"
MB = 1024 * 1024
MAX_TOTAL_LOG_BYTES = 100 * MB
MAX_LOG_FILE_BYTES = 50 * MB
DAY_SECONDS = 24 * 60 * 60

STATUS_HEALTHY = "healthy"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"


@dataclass
class HealthCheck:
    name: str
    critical: bool
    passed: bool = True
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def fail(self, issue: str) -> None:
        self.passed = False
        self.issues.append(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "critical": self.critical,
            "passed": self.passed,
            "issues": self.issues,
            "warnings": self.warnings,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# checks
# ---------------------------------------------------------------------------

def check_config_file(settings: Settings) -> HealthCheck:
    check = HealthCheck("config_file", critical=True)
    path = settings.config_path
    check.details["path"] = str(path)
    if not path.is_file():
        check.fail(f"missing {path.name}")
        return check
    try:
        raw = read_json(path)
    except DataIOError as e:
        check.fail(f"{path.name}: {e.reason}")
        return check
    for err in config_structure_errors(raw):
        check.fail(err)
    if check.passed:
        check.details["locations"] = len(raw["locations"])
    return check


def check_data_files(settings: Settings) -> HealthCheck:
    check = HealthCheck("data_file", critical=True)
    report = detect(settings.data_path)
    check.details["data"] = report.to_dict()
    if not report.valid:
        check.fail(f"{settings.data_path.name}: {report.reason}")

    queue = settings.pending_updates_path
    if queue.exists():
        try:
            if not isinstance(read_json(queue), list):
                check.fail(f"{queue.name}: not a JSON array")
        except DataIOError as e:
            check.fail(f"{queue.name}: {e.reason}")
    else:
        check.warnings.append(f"{queue.name} not found")

    optional = {
        "backups": settings.backups_dir,
        "logs": settings.logs_dir,
        "reports": settings.reports_dir,
        "updates_archive": settings.resolve(settings.paths.updates_archive),
    }
    missing = [name for name, path in optional.items() if not path.is_dir()]
    check.details["missing_directories"] = missing
    if missing:
        check.warnings.append("missing directories: " + ", ".join(missing))
    return check


def check_data_consistency(settings: Settings) -> HealthCheck:
    check = HealthCheck("data_consistency", critical=True)
    try:
        config = read_json(settings.config_path)
        data = read_json(settings.data_path)
    except DataIOError as e:
        check.fail(str(e))
        return check

    report = quick_check(config, data)
    for issue in report.issues:
        check.fail(issue.msg)

    locations = data.get("locations") if isinstance(data, dict) else None
    stats = data.get("statistics") if isinstance(data, dict) else None
    if not isinstance(locations, list) or not isinstance(stats, dict):
        check.fail("data document has no locations or statistics")
        return check
    consistent = statistics_match(stats, calculate(locations))
    if not consistent:
        check.fail("reported statistics differ from the location blocks")
    check.details.update({"total_locations": len(locations), "statistics_consistent": consistent})
    return check


def check_backup_health(settings: Settings, now: datetime, backups: Optional[BackupManager] = None) -> HealthCheck:
    check = HealthCheck("backup_health", critical=False)
    backups = backups or BackupManager(settings)
    if not backups.backup_dir.is_dir():
        check.fail("Backup directory does not exist")
        return check

    files = sorted(backups.backup_dir.glob(f"{COMPRESSED_PREFIX}*.json.gz"))
    stamps = [parse_file_timestamp(timestamp_from_name(p.name) or "") for p in files]
    stamps = [s for s in stamps if s is not None]
    has_pointer = (backups.backup_dir / LATEST_POINTER).is_file()

    newest_hours: Optional[float] = None
    if stamps:
        newest_hours = round((now - max(stamps)).total_seconds() / 3600, 1)
    check.details.update({
        "total_backups": len(files),
        "has_latest_reference": has_pointer,
        "newest_backup": iso(max(stamps)) if stamps else None,
        "newest_backup_age_hours": newest_hours,
    })

    if not files:
        check.fail("No backup files found")
    if not has_pointer:
        check.warnings.append("No latest backup reference")
    else:
        latest = backups.latest_backup()
        verified = backups.verify_backup(latest) if latest is not None else {"valid": False, "error": "File not found"}
        if not verified["valid"]:
            check.warnings.append(f"Latest backup does not verify: {verified.get('error')}")
    if newest_hours is not None and newest_hours > 24:
        check.warnings.append(f"Newest backup is {round(newest_hours)} hours old")
    return check


def check_log_files(settings: Settings, now: datetime) -> HealthCheck:
    check = HealthCheck("log_files", critical=False)
    logs_dir = settings.logs_dir
    if not logs_dir.is_dir():
        check.fail("Log directory does not exist")
        return check

    files = [p for p in logs_dir.iterdir() if p.is_file() and p.suffix in (".jsonl", ".log")]
    sizes: List[Tuple[str, int, float]] = [(p.name, p.stat().st_size, p.stat().st_mtime) for p in files]
    total = sum(s for _, s, _ in sizes)
    largest = max(sizes, key=lambda x: x[1]) if sizes else None
    recent = sum(1 for _, _, mtime in sizes if now.timestamp() - mtime < DAY_SECONDS)

    check.details.update({
        "total_log_files": len(sizes),
        "total_log_size_mb": round(total / MB, 2),
        "largest_log_file": largest[0] if largest else None,
        "recent_logs_24h": recent,
    })
    if not sizes:
        check.warnings.append("No log files found")
    if total > MAX_TOTAL_LOG_BYTES:
        check.warnings.append(f"Total log size is large: {total / MB:.1f} MB")
    if largest and largest[1] > MAX_LOG_FILE_BYTES:
        check.warnings.append(f"Large log file: {largest[0]} ({largest[1] / MB:.1f} MB)")
    if sizes and recent == 0:
        check.warnings.append("No logs updated in the last 24 hours")
    return check


# ---------------------------------------------------------------------------
# report
# ---------------------------------------------------------------------------

def overall_status(checks: List[HealthCheck]) -> str:
    if any(c.critical and not c.passed for c in checks):
        return STATUS_CRITICAL
    if any(not c.passed for c in checks):
        return STATUS_WARNING
    return STATUS_HEALTHY


def recommendations(checks: List[HealthCheck], status: str) -> List[str]:
    recs: List[str] = []
    if status == STATUS_CRITICAL:
        recs.append("IMMEDIATE ACTION REQUIRED: Critical checks failed")
    for c in checks:
        if c.critical and not c.passed:
            recs.append(f"Fix critical issue in: {c.name}")
        recs.extend(f"Resolve: {issue}" for issue in c.issues)
    return recs


def health_check(settings: Settings, now: Optional[datetime] = None, backups: Optional[BackupManager] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    runners: List[Callable[[], HealthCheck]] = [
        lambda: check_config_file(settings),
        lambda: check_data_files(settings),
        lambda: check_data_consistency(settings),
        lambda: check_backup_health(settings, now, backups),
        lambda: check_log_files(settings, now),
    ]
    checks = [r() for r in runners]
    status = overall_status(checks)
    return {
        "timestamp": iso(now),
        "overall_status": status,
        "checks_passed": sum(1 for c in checks if c.passed),
        "checks_failed": sum(1 for c in checks if c.critical and not c.passed),
        "checks_warning": sum(1 for c in checks if not c.critical and not c.passed),
        "details": [c.to_dict() for c in checks],
        "recommendations": recommendations(checks, status),
    }


def print_report(report: Dict[str, Any]) -> None:
    table = Table(title=f"Health check: {report['overall_status'].upper()}")
    table.add_column("check")
    table.add_column("result")
    table.add_column("findings")
    for c in report["details"]:
        result = "PASS" if c["passed"] else ("FAIL" if c["critical"] else "WARN")
        table.add_row(c["name"], result, "; ".join(c["issues"] + c["warnings"]))
    console.print(table)
    for i, rec in enumerate(report["recommendations"], start=1):
        console.print(f"  {i}. {rec}", markup=False)


def run(settings: Settings, ci: bool = False, now: Optional[datetime] = None) -> int:
    log = get_logger(COMPONENT, settings.logs_dir)
    now = now or datetime.now(timezone.utc)
    log.info("Starting system health check")

    report = health_check(settings, now, BackupManager(settings, log=log))
    path = write_report(settings.reports_dir, "health-check", report, now)
    print_report(report)
    if ci:
        findings = [f"{c['name']}: {msg}" for c in report["details"] for msg in c["issues"] + c["warnings"]]
        write_github_summary("System Health Check", report["overall_status"].upper(), findings)
    emit(f"{COMPONENT}.completed",
         {k: report[k] for k in ("overall_status", "checks_passed", "checks_failed", "checks_warning")},
         telemetry_dir=settings.logs_dir / "telemetry")

    log.info(f"Report written: {path}")
    if report["overall_status"] == STATUS_CRITICAL:
        log.error("Critical health checks failed")
        return 1
    log.ok(f"System status: {report['overall_status']}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Check the health of the parking data system")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--ci", action="store_true", help="write GitHub step summary")
    args = ap.parse_args(argv)
    return run(load_settings(args.rules), ci=args.ci)


if __name__ == "__main__":
    sys.exit(main())
