#!/usr/bin/env python3
"""
ops/consistency_agent.py — Consistency Agent (Config vs Data)

Purpose:
- Cross-validate config/locations-config.json against data/parkir-data.json.
- Read-only: never mutates either document. Deterministic, no network calls.

Checks (all five always run, no short-circuit):
- file_structure        gross shape of both documents
- location_count        Config count == Data count == metadata.total_locations
- individual_locations  per location (matched by name): capacity, available <= total,
                        address, coordinates; special locations expect capacity 0
- total_statistics      declared total_capacity vs statistics; recomputed available
- metadata              required fields, version x.y.z, total_locations

Quick mode (--quick) runs location_count and the capacity half of total_statistics.

Outputs:
- Console summary (rich)
- Machine report: data/reports/consistency-report-YYYY-MM-DD.json
- Optional GitHub Actions job summary via $GITHUB_STEP_SUMMARY

Exit codes:
- 0 all checks passed
- 1 at least one check failed, or a document could not be loaded
"""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from rich.table import Table

from ops.errors import ConsistencyIssue, DataIOError
from ops.jsonio import read_json
from ops.log import console, get_logger
from ops.models import LOCATION_STATUS_SPECIAL, VEHICLE_TYPES, coerce_count
from ops.reports import write_github_summary, write_report
from ops.settings import Settings, load_settings
from ops.statistics import calculate
from ops.structure import config_structure_errors, data_structure_errors
from tools.ops.telemetry import emit

AGENT = "consistency_agent"
VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")
REQUIRED_METADATA = ("last_updated", "version", "total_locations", "operation_name")
TOTAL_CHECKS = 5


@dataclass
class CheckResult:
    name: str
    passed: bool
    message: str
    issues: List[ConsistencyIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "issues": [i.msg for i in self.issues],
        }


@dataclass
class ConsistencyReport:
    checks: List[CheckResult]

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def issues(self) -> List[ConsistencyIssue]:
        return [i for c in self.checks for i in c.issues]

    def check(self, name: str) -> CheckResult:
        for c in self.checks:
            if c.name == name:
                return c
        raise KeyError(name)

    def recommendations(self) -> List[str]:
        recs: List[str] = []
        if not self.passed:
            recs.append("Run ops/fix_statistics.py to correct data inconsistencies")
            recs.append("Review config/locations-config.json for configuration errors")
            recs.append("Check data/parkir-data.json for data entry errors")
        if any(c.name == "total_statistics" and not c.passed for c in self.checks):
            recs.append("Recalculate statistics using ops/fix_statistics.py --quick")
        return recs

    def to_dict(self, generated_at: str) -> Dict[str, Any]:
        return {
            "timestamp": generated_at,
            "agent": AGENT,
            "summary": {
                "total_checks": len(self.checks),
                "passed_checks": sum(1 for c in self.checks if c.passed),
                "failed_checks": sum(1 for c in self.checks if not c.passed),
                "total_issues": len(self.issues),
            },
            "checks": [c.to_dict() for c in self.checks],
            "recommendations": self.recommendations(),
        }


def iso_utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _locations(doc: Any) -> List[Dict[str, Any]]:
    locs = doc.get("locations") if isinstance(doc, dict) else None
    if not isinstance(locs, list):
        return []
    return [loc for loc in locs if isinstance(loc, dict)]


def _mapping(doc: Any, key: str) -> Mapping[str, Any]:
    value = doc.get(key) if isinstance(doc, dict) else None
    return value if isinstance(value, dict) else {}


def _num(value: Any) -> int:
    try:
        return coerce_count(value)
    except ValueError:
        return 0


def _block_value(loc: Mapping[str, Any], vehicle: str, key: str) -> int:
    block = loc.get(vehicle)
    return _num(block.get(key)) if isinstance(block, dict) else 0


def _config_capacity(loc: Mapping[str, Any], vehicle: str) -> int:
    cap = loc.get("capacity")
    slot = cap.get(vehicle) if isinstance(cap, dict) else None
    return _num(slot.get("total")) if isinstance(slot, dict) else 0


def _is_special(*locs: Mapping[str, Any]) -> bool:
    return any(loc.get("status") == LOCATION_STATUS_SPECIAL for loc in locs)


def _name_map(locs: List[Dict[str, Any]], key: str) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for loc in locs:
        name = loc.get(key)
        if isinstance(name, str) and name not in out:
            out[name] = loc
    return out


def _result(name: str, issues: List[ConsistencyIssue], ok_msg: str, fail_msg: Optional[str] = None) -> CheckResult:
    if issues:
        return CheckResult(name, False, fail_msg or f"{len(issues)} issue(s) found", issues)
    return CheckResult(name, True, ok_msg, [])


# ---------------------------------------------------------------------------
# (a) file_structure
# ---------------------------------------------------------------------------

def check_file_structure(config: Any, data: Any) -> CheckResult:
    issues: List[ConsistencyIssue] = []
    for msg in config_structure_errors(config):
        issues.append(ConsistencyIssue("file_structure", f"Config: {msg}"))
    if isinstance(config, dict) and not isinstance(config.get("total_capacity"), dict):
        issues.append(ConsistencyIssue("file_structure", "Config: Missing total_capacity"))
    for msg in data_structure_errors(data):
        issues.append(ConsistencyIssue("file_structure", f"Data: {msg}"))
    if isinstance(data, dict) and not isinstance(data.get("metadata"), dict):
        issues.append(ConsistencyIssue("file_structure", "Data: Missing metadata"))
    return _result("file_structure", issues, "Both documents are structurally valid")


# ---------------------------------------------------------------------------
# (b) location_count
# ---------------------------------------------------------------------------

def check_location_count(config: Any, data: Any) -> CheckResult:
    config_count = len(_locations(config))
    data_count = len(_locations(data))
    if config_count != data_count:
        msg = f"Location count mismatch: Config has {config_count}, Data has {data_count}"
        return CheckResult("location_count", False, msg, [ConsistencyIssue("location_count", msg)])
    return CheckResult("location_count", True, f"Location count matches: {config_count} locations")


# ---------------------------------------------------------------------------
# (c) individual_locations
# ---------------------------------------------------------------------------

def location_issues(config_loc: Mapping[str, Any], data_loc: Mapping[str, Any]) -> List[ConsistencyIssue]:
    name = str(config_loc.get("name"))
    special = _is_special(config_loc, data_loc)
    issues: List[ConsistencyIssue] = []

    for v in VEHICLE_TYPES:
        expected = 0 if special else _config_capacity(config_loc, v)
        total = _block_value(data_loc, v, "total")
        available = _block_value(data_loc, v, "available")
        if expected != total:
            label = "special location expects 0" if special else f"config: {expected}"
            issues.append(ConsistencyIssue(
                "individual_locations",
                f"{name} {v}: Capacity mismatch ({label}, data: {total})",
                name, v,
            ))
        if available > total:
            issues.append(ConsistencyIssue(
                "individual_locations",
                f"{name} {v}: Available ({available}) exceeds total ({total})",
                name, v,
            ))
        elif available < 0:
            issues.append(ConsistencyIssue(
                "individual_locations",
                f"{name} {v}: Negative available spaces ({available})",
                name, v,
            ))

    if config_loc.get("coordinates") != data_loc.get("koordinat"):
        issues.append(ConsistencyIssue("individual_locations", f"{name}: Coordinates mismatch", name))
    if config_loc.get("address") != data_loc.get("alamat"):
        issues.append(ConsistencyIssue("individual_locations", f"{name}: Address mismatch", name))
    return issues


def check_individual_locations(config: Any, data: Any) -> CheckResult:
    issues: List[ConsistencyIssue] = []
    data_map = _name_map(_locations(data), "nama")

    for config_loc in _locations(config):
        name = config_loc.get("name")
        data_loc = data_map.get(name) if isinstance(name, str) else None
        if data_loc is None:
            issues.append(ConsistencyIssue("individual_locations", f'Config location "{name}" not found in data', name))
            continue
        issues.extend(location_issues(config_loc, data_loc))

    config_names = set(_name_map(_locations(config), "name"))
    for name in data_map:
        if name not in config_names:
            issues.append(ConsistencyIssue("individual_locations", f'Data location "{name}" not found in config', name))

    return _result("individual_locations", issues, "All locations match the configuration")


# ---------------------------------------------------------------------------
# (d) total_statistics
# ---------------------------------------------------------------------------

def _declared_totals(config: Any) -> Dict[str, int]:
    declared = _mapping(config, "total_capacity")
    if declared:
        return {v: _num(declared.get(v)) for v in VEHICLE_TYPES}
    return {v: sum(_config_capacity(loc, v) for loc in _locations(config)) for v in VEHICLE_TYPES}


def check_total_statistics(config: Any, data: Any, include_available: bool = True) -> CheckResult:
    issues: List[ConsistencyIssue] = []
    stats = _mapping(data, "statistics")
    declared = _declared_totals(config)

    for v in VEHICLE_TYPES:
        reported = stats.get(f"total_{v}_capacity")
        if declared[v] != reported:
            issues.append(ConsistencyIssue(
                "total_statistics",
                f"{v.capitalize()} capacity mismatch: Config {declared[v]}, Data {reported}",
                vehicle=v,
            ))

    if include_available:
        calc = calculate(_locations(data))
        for v in VEHICLE_TYPES:
            reported = stats.get(f"total_available_{v}")
            if calc[f"available_{v}"] != reported:
                issues.append(ConsistencyIssue(
                    "total_statistics",
                    f"{v.capitalize()} available mismatch: Calculated {calc[f'available_{v}']}, Reported {reported}",
                    vehicle=v,
                ))

    return _result("total_statistics", issues, "Statistics match configuration and location data")


# ---------------------------------------------------------------------------
# (e) metadata
# ---------------------------------------------------------------------------

def check_metadata(data: Any) -> CheckResult:
    issues: List[ConsistencyIssue] = []
    metadata = _mapping(data, "metadata")

    for key in REQUIRED_METADATA:
        if metadata.get(key) in (None, ""):
            issues.append(ConsistencyIssue("metadata", f"Missing metadata field: {key}"))

    version = metadata.get("version")
    if version not in (None, "") and not VERSION_RE.match(str(version)):
        issues.append(ConsistencyIssue("metadata", f"Invalid version format: {version}"))

    actual = len(_locations(data))
    declared = metadata.get("total_locations")
    if declared != actual:
        issues.append(ConsistencyIssue(
            "metadata",
            f"Metadata total_locations ({declared}) doesn't match actual ({actual})",
        ))

    return _result("metadata", issues, "Metadata is complete")


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def check_consistency(config: Any, data: Any) -> ConsistencyReport:
    return ConsistencyReport([
        check_file_structure(config, data),
        check_location_count(config, data),
        check_individual_locations(config, data),
        check_total_statistics(config, data),
        check_metadata(data),
    ])


def quick_check(config: Any, data: Any) -> ConsistencyReport:
    return ConsistencyReport([
        check_location_count(config, data),
        check_total_statistics(config, data, include_available=False),
    ])


def print_report(report: ConsistencyReport) -> None:
    table = Table(title="Consistency verification", show_lines=False)
    table.add_column("check")
    table.add_column("result")
    table.add_column("message")
    for c in report.checks:
        table.add_row(c.name, "PASS" if c.passed else "FAIL", c.message)
    console.print(table)
    for i, issue in enumerate(report.issues, start=1):
        console.print(f"  {i}. {issue.msg}", markup=False)


def run(settings: Settings, quick: bool = False, mode: str = "local") -> int:
    log = get_logger(AGENT, settings.logs_dir)
    try:
        config = read_json(settings.config_path)
        data = read_json(settings.data_path)
    except DataIOError as e:
        log.error(f"Failed to load required files: {e}")
        return 1

    report = quick_check(config, data) if quick else check_consistency(config, data)
    ts = iso_utc_now()
    if not quick:
        path = write_report(settings.reports_dir, "consistency-report", report.to_dict(ts),
                            datetime.now(timezone.utc), latest=False)
        log.info(f"Report written: {path}")

    print_report(report)
    status = "PASS" if report.passed else "FAIL"
    if mode == "ci":
        write_github_summary("Consistency Agent", status, [i.msg for i in report.issues])
    emit(f"{AGENT}.completed", {"status": status, "quick": quick, "issues": len(report.issues)},
         telemetry_dir=settings.logs_dir / "telemetry")

    if report.passed:
        log.ok("All checks passed. Data is consistent.")
        return 0
    log.warn(f"{len(report.issues)} issue(s) found. Run ops/fix_statistics.py to correct them.")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Verify Config vs Data consistency")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--quick", action="store_true", help="location count + capacity totals only")
    ap.add_argument("--mode", default="local", choices=["local", "ci"], help="write GitHub summary in ci mode")
    args = ap.parse_args(argv)
    return run(load_settings(args.rules), quick=args.quick, mode=args.mode)


if __name__ == "__main__":
    sys.exit(main())
