#!/usr/bin/env python3
"""
ops/sync_config.py — Config Synchronizer

Directions:
- config-to-data  Config is pushed into Data (address, coordinates, status,
                  operational_hours, capacity); available is clamped to the new
                  total and vehicle status re-derived; statistics recomputed.
- data-to-config  Data capacities are reflected back into Config; a Data
                  location unknown to Config is an error (never auto-created);
                  total_capacity recomputed.
- all             config-to-data, then data-to-config; either failing fails the
                  whole run and a failing first step stops the second.
- validate        read-only discrepancy audit (same classes as the consistency agent).

Locations are matched by name (config "name" <-> data "nama"). Special locations
hold capacity 0 in Data and are never propagated back into Config.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ops.backup_manager import BackupManager, snapshot_copy
from ops.consistency_agent import location_issues
from ops.errors import BackupError, ConsistencyIssue, DataIOError, StructureError
from ops.jsonio import write_json
from ops.log import get_logger
from ops.models import VEHICLE_TYPES, ConfigDocument, DataDocument, VehicleState
from ops.settings import Settings, load_settings
from ops.statistics import recompute_statistics
from ops.structure import load_config_file, load_data_file
from tools.audit_append import AuditTrail
from tools.ops.telemetry import emit

COMPONENT = "sync_config"

# config field -> data field
LOCATION_FIELDS = (
    ("address", "alamat"),
    ("coordinates", "koordinat"),
    ("status", "status"),
    ("operational_hours", "operational_hours"),
)


@dataclass
class SyncResult:
    direction: str
    data: Optional[DataDocument] = None
    config: Optional[ConfigDocument] = None
    updates: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def summary(self) -> Dict[str, Any]:
        return {"direction": self.direction, "success": self.success,
                "updates": len(self.updates), "errors": len(self.errors)}


def sync_config_to_data(config: ConfigDocument, data: DataDocument, now: Optional[datetime] = None) -> SyncResult:
    now = now or datetime.now(timezone.utc)
    stamp = now.isoformat()
    doc = data.model_copy(deep=True)
    result = SyncResult("config_to_data", data=doc)
    data_map = doc.by_name()

    for config_loc in config.locations:
        data_loc = data_map.get(config_loc.name)
        if data_loc is None:
            result.errors.append(f"Location {config_loc.name} not found in data")
            continue

        changes: List[str] = []
        for cfg_field, data_field in LOCATION_FIELDS:
            want = getattr(config_loc, cfg_field)
            have = getattr(data_loc, data_field)
            if want is not None and want != have:
                changes.append(f"{cfg_field}: {have} → {want}")
                setattr(data_loc, data_field, want)

        special = data_loc.is_special or config_loc.is_special
        for v in VEHICLE_TYPES:
            block: VehicleState = data_loc.vehicle(v)
            capacity = 0 if special else config_loc.capacity.total_for(v)
            if block.total == capacity and 0 <= block.available <= block.total:
                continue
            if block.total != capacity:
                changes.append(f"{v} capacity: {block.total} → {capacity}")
                block.total = capacity
            if block.available > capacity:
                changes.append(f"{v} available adjusted: {block.available} → {capacity}")
                block.available = capacity
            elif block.available < 0:
                changes.append(f"{v} available adjusted: {block.available} → 0")
                block.available = 0
            block.status = block.derived_status()
            block.last_update = stamp
            block.updated_by = COMPONENT

        setattr(data_loc, "last_config_sync", stamp)
        setattr(data_loc, "config_version", config.version)
        if changes:
            result.updates.append({"location": config_loc.name, "updates": changes})

    doc.statistics = recompute_statistics(doc.statistics, doc.locations, COMPONENT, now)
    doc.metadata.update({
        "last_config_sync": stamp,
        "config_version": config.version,
        "sync_type": "config_to_data",
        "total_locations": len(doc.locations),
    })
    return result


def sync_data_to_config(data: DataDocument, config: ConfigDocument, now: Optional[datetime] = None) -> SyncResult:
    now = now or datetime.now(timezone.utc)
    cfg = config.model_copy(deep=True)
    result = SyncResult("data_to_config", config=cfg)
    config_map = cfg.by_name()

    for data_loc in data.locations:
        config_loc = config_map.get(data_loc.nama)
        if config_loc is None:
            result.errors.append(f"Location {data_loc.nama} exists in data but not in config")
            continue
        if data_loc.is_special or config_loc.is_special:
            continue
        changes: List[str] = []
        for v in VEHICLE_TYPES:
            have = config_loc.capacity.total_for(v)
            want = data_loc.vehicle(v).total
            if have != want:
                changes.append(f"{v}: config {have} → {want}")
                getattr(config_loc.capacity, v).total = want
        if changes:
            result.updates.append({"location": config_loc.name, "updates": changes})

    cfg.total_capacity = cfg.computed_totals()
    setattr(cfg, "last_sync_from_data", now.isoformat())
    setattr(cfg, "data_version", data.metadata.get("version"))
    return result


def sync_all(config: ConfigDocument, data: DataDocument, now: Optional[datetime] = None) -> List[SyncResult]:
    """Step 1 failing stops before step 2; callers treat any failed step as overall failure."""
    now = now or datetime.now(timezone.utc)
    step1 = sync_config_to_data(config, data, now)
    if not step1.success:
        return [step1]
    step2 = sync_data_to_config(step1.data, config, now)
    return [step1, step2]


def validate_sync(config: ConfigDocument, data: DataDocument) -> List[ConsistencyIssue]:
    """Non-mutating audit of every matched and unmatched location."""
    config_raw = config.to_json()
    data_raw = data.to_json()
    data_map = {loc["nama"]: loc for loc in data_raw["locations"]}
    config_names = {loc["name"] for loc in config_raw["locations"]}

    issues: List[ConsistencyIssue] = []
    for config_loc in config_raw["locations"]:
        data_loc = data_map.get(config_loc["name"])
        if data_loc is None:
            issues.append(ConsistencyIssue("validate_sync", f"Location {config_loc['name']} not found in data",
                                           config_loc["name"]))
            continue
        issues.extend(location_issues(config_loc, data_loc))
    for name in data_map:
        if name not in config_names:
            issues.append(ConsistencyIssue("validate_sync", f"Location {name} exists in data but not in config", name))
    if len(config_raw["locations"]) != len(data_raw["locations"]):
        issues.append(ConsistencyIssue(
            "validate_sync",
            f"Location count mismatch: Config has {len(config_raw['locations'])}, Data has {len(data_raw['locations'])}",
        ))
    return issues


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def _log_result(log: Any, res: SyncResult) -> None:
    for upd in res.updates:
        for change in upd["updates"]:
            log.info(f"{upd['location']}: {change}")
    for err in res.errors:
        log.error(err)
    log.info(f"{res.direction}: {len(res.updates)} location(s) updated, {len(res.errors)} error(s)")


def _write_data(settings: Settings, doc: DataDocument, backups: BackupManager, force: bool, log: Any) -> bool:
    try:
        backups.create_backup("pre-sync", "config to data sync")
    except BackupError as e:
        if not force:
            log.error(f"Snapshot before sync failed: {e} (use --force to continue without one)")
            return False
        log.warn(f"Snapshot before sync failed, continuing (--force): {e}")
    write_json(settings.data_path, doc.to_json())
    return True


def _write_config(settings: Settings, cfg: ConfigDocument, backups: BackupManager) -> None:
    snapshot_copy(settings.config_path, settings.backups_dir, "pre-sync", backups.clock())
    write_json(settings.config_path, cfg.to_json())


def run(settings: Settings, direction: str, force: bool = False, now: Optional[datetime] = None) -> int:
    log = get_logger(COMPONENT, settings.logs_dir)
    now = now or datetime.now(timezone.utc)
    audit = AuditTrail(settings, COMPONENT)
    try:
        data, warnings = load_data_file(settings.data_path)
        config = load_config_file(settings.config_path)
    except (DataIOError, StructureError) as e:
        log.error(f"Failed to load required files: {e}")
        return 1
    for w in warnings:
        log.warn(w)

    if direction == "validate":
        issues = validate_sync(config, data)
        for issue in issues:
            log.warn(issue.msg)
        if issues:
            log.warn(f"{len(issues)} sync discrepancy(ies) found")
            return 1
        log.ok("Config and data are in sync")
        return 0

    backups = BackupManager(settings, log=log)
    results: List[SyncResult] = []

    if direction in ("config-to-data", "all"):
        res = sync_config_to_data(config, data, now)
        results.append(res)
        _log_result(log, res)
        if not _write_data(settings, res.data, backups, force, log):
            return 1
        audit.record("sync_config_to_data", f"{len(res.updates)} location(s) updated", res.summary())
        data = res.data
        if not res.success and direction == "all":
            log.error("Step 1 failed, data-to-config skipped")
            return 1

    if direction in ("data-to-config", "all"):
        res = sync_data_to_config(data, config, now)
        results.append(res)
        _log_result(log, res)
        _write_config(settings, res.config, backups)
        audit.record("sync_data_to_config", f"{len(res.updates)} location(s) updated", res.summary())

    ok = all(r.success for r in results)
    emit(f"{COMPONENT}.completed", {"direction": direction, "results": [r.summary() for r in results]},
         telemetry_dir=settings.logs_dir / "telemetry")
    if ok:
        log.ok("Sync completed")
        return 0
    log.error("Sync completed with errors")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Synchronize locations config and parking data")
    ap.add_argument("direction", nargs="?", default="all",
                    choices=["config-to-data", "data-to-config", "all", "validate"])
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--force", action="store_true", help="continue when the pre-sync snapshot fails")
    args = ap.parse_args(argv)
    return run(load_settings(args.rules), args.direction, force=args.force)


if __name__ == "__main__":
    sys.exit(main())
