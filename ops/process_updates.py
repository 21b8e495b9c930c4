#!/usr/bin/env python3
"""
ops/process_updates.py — consume data/pending-updates.json

Pipeline: read queue -> validate every entry -> snapshot data -> apply valid
entries -> archive processed entries -> write data -> quarantine invalid entries
-> clear the queue -> GitHub Actions outputs. A failed archive stops the run
before the data write, leaving the queue in place.

Validation (per entry, all errors collected):
- location_id: int, known in the data document
- petugas_name: non-empty string
- bus/mobil/motor: non-negative integers; above capacity -> warning and capped
  (an error with --strict)
- timestamp: parseable; in the future -> warning
- notes: longer than 500 chars -> truncated with a warning

Outputs: processed_count, failed_count, updated_locations, has_changes
Exit codes: 0 all entries processed, 1 any entry invalid or documents unreadable
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ops.backup_manager import BackupManager, file_timestamp
from ops.errors import BackupError, DataIOError, StructureError
from ops.jsonio import read_json, write_json
from ops.log import get_logger
from ops.models import (
    NOTES_MAX_LEN,
    VEHICLE_TYPES,
    ConfigDocument,
    DataDocument,
    LocationState,
    PendingUpdate,
    parse_timestamp,
)
from ops.reports import gh_set_output
from ops.settings import Settings, load_settings
from ops.statistics import recompute_statistics
from ops.structure import clamp_capacity, format_validation_error, load_config_file, load_data_file
from tools.audit_append import AuditTrail
from tools.ops.telemetry import emit

COMPONENT = "process_updates"


@dataclass
class UpdateValidation:
    valid: List[Dict[str, Any]] = field(default_factory=list)
    invalid: List[Dict[str, Any]] = field(default_factory=list)


def _id_map(data: DataDocument) -> Dict[int, LocationState]:
    return {loc.id: loc for loc in data.locations if isinstance(loc.id, int) and not isinstance(loc.id, bool)}


def _capacity_limit(loc: LocationState, config: Optional[ConfigDocument], v: str) -> int:
    if config is not None and not loc.is_special:
        config_loc = config.by_name().get(loc.nama)
        if config_loc is not None and config_loc.capacity.total_for(v) > 0:
            return config_loc.capacity.total_for(v)
    return loc.vehicle(v).total


def validate_entry(
    entry: Any,
    locations: Dict[int, LocationState],
    config: Optional[ConfigDocument],
    strict: bool,
    now: datetime,
) -> Tuple[Optional[Dict[str, Any]], List[str], List[str]]:
    errors: List[str] = []
    warnings: List[str] = []
    if not isinstance(entry, dict):
        return None, ["entry is not an object"], warnings

    candidate = dict(entry)
    notes = candidate.get("notes")
    if isinstance(notes, str) and len(notes) > NOTES_MAX_LEN:
        warnings.append(f"Notes too long (truncated to {NOTES_MAX_LEN} chars)")
        candidate["notes"] = notes[:NOTES_MAX_LEN]

    try:
        update = PendingUpdate.model_validate(candidate)
    except ValidationError as e:
        return None, format_validation_error(e), warnings

    loc = locations.get(update.location_id)
    if loc is None:
        return None, [f"Invalid location_id: {update.location_id} not found in parkir data"], warnings

    counts = update.counts()
    for v, value in counts.items():
        limit = _capacity_limit(loc, config, v)
        if value > limit:
            msg = f"{v.capitalize()} value {value} exceeds capacity {limit}"
            if strict:
                errors.append(msg)
            else:
                warnings.append(msg)
                counts[v] = limit

    if update.timestamp is not None:
        ts = parse_timestamp(update.timestamp)
        if ts is not None and ts > now:
            warnings.append("Timestamp is in the future")

    if errors:
        return None, errors, warnings

    cleaned: Dict[str, Any] = {
        "location_id": update.location_id,
        "location_name": loc.nama,
        "petugas_name": update.petugas_name,
        "timestamp": update.timestamp or now.isoformat(),
        "status": "pending",
        "validated_at": now.isoformat(),
    }
    cleaned.update(counts)
    if update.notes:
        cleaned["notes"] = update.notes.strip()
    if warnings:
        cleaned["warnings"] = warnings
    return cleaned, errors, warnings


def validate_updates(
    entries: List[Any],
    data: DataDocument,
    config: Optional[ConfigDocument] = None,
    strict: bool = False,
    now: Optional[datetime] = None,
) -> UpdateValidation:
    now = now or datetime.now(timezone.utc)
    locations = _id_map(data)
    out = UpdateValidation()
    for entry in entries:
        cleaned, errors, warnings = validate_entry(entry, locations, config, strict, now)
        if cleaned is not None:
            out.valid.append(cleaned)
        else:
            out.invalid.append({"original": entry, "errors": errors, "warnings": warnings,
                                "failed_at": now.isoformat()})
    return out


def apply_updates(
    data: DataDocument,
    updates: List[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Tuple[DataDocument, List[str]]:
    """Apply cleaned updates in queue order; later entries for a location win.

    Every block of the returned document, touched or not, satisfies
    0 <= available <= total.
    """
    now = now or datetime.now(timezone.utc)
    doc = data.model_copy(deep=True)
    locations = _id_map(doc)
    touched: List[str] = []

    for upd in updates:
        loc = locations.get(upd["location_id"])
        if loc is None:
            continue
        for v in VEHICLE_TYPES:
            if v not in upd:
                continue
            block = loc.vehicle(v)
            block.available = max(0, min(int(upd[v]), block.total))
            block.last_update = upd.get("timestamp") or now.isoformat()
            block.updated_by = upd["petugas_name"]
            block.status = block.derived_status()
        if upd.get("notes"):
            setattr(loc, "notes", upd["notes"])
        if loc.nama not in touched:
            touched.append(loc.nama)

    clamp_capacity(doc, now.isoformat(), COMPONENT)
    doc.statistics = recompute_statistics(doc.statistics, doc.locations, COMPONENT, now)
    doc.metadata["last_updated"] = now.isoformat()
    doc.metadata["updated_by"] = COMPONENT
    return doc, touched


def _set_outputs(processed: int, failed: int, updated: List[str]) -> None:
    gh_set_output("processed_count", str(processed))
    gh_set_output("failed_count", str(failed))
    gh_set_output("updated_locations", ",".join(updated))
    gh_set_output("has_changes", "true" if processed else "false")


def archive_processed(settings: Settings, updates: List[Dict[str, Any]], now: datetime) -> None:
    path = settings.resolve(settings.paths.updates_archive) / f"updates-{now:%Y-%m-%d}.json"
    existing: List[Any] = []
    if path.exists():
        loaded = read_json(path)
        if not isinstance(loaded, list):
            raise DataIOError(path, "archive is not a JSON array")
        existing = loaded
    write_json(path, existing + updates)


def run(settings: Settings, strict: bool = False, dry_run: bool = False, now: Optional[datetime] = None) -> int:
    log = get_logger(COMPONENT, settings.logs_dir)
    now = now or datetime.now(timezone.utc)
    queue_path = settings.pending_updates_path

    if not queue_path.exists():
        log.info("No pending updates")
        _set_outputs(0, 0, [])
        return 0
    try:
        entries = read_json(queue_path)
    except DataIOError as e:
        log.error(f"Error reading pending updates: {e}")
        _set_outputs(0, 0, [])
        return 1
    if not isinstance(entries, list):
        log.error("pending-updates.json must hold a JSON array")
        _set_outputs(0, 0, [])
        return 1
    if not entries:
        log.info("No pending updates")
        _set_outputs(0, 0, [])
        return 0

    try:
        data, warnings = load_data_file(settings.data_path)
        config = load_config_file(settings.config_path, required=False)
    except (DataIOError, StructureError) as e:
        log.error(f"Cannot load documents: {e}")
        return 1
    for w in warnings:
        log.warn(w)

    checked = validate_updates(entries, data, config, strict=strict, now=now)
    for item in checked.invalid:
        log.warn(f"Invalid update rejected: {'; '.join(item['errors'])}")
    log.info(f"Validated {len(entries)} update(s): {len(checked.valid)} valid, {len(checked.invalid)} invalid")

    if dry_run:
        log.info("DRY RUN: queue left untouched")
        return 1 if checked.invalid else 0

    updated: List[str] = []
    if checked.valid:
        try:
            BackupManager(settings, log=log).create_backup("pre-update", f"{len(checked.valid)} pending update(s)")
        except BackupError as e:
            log.error(f"Snapshot before update failed: {e}")
            return 1
        doc, updated = apply_updates(data, checked.valid, now)
        try:
            archive_processed(settings, checked.valid, now)
        except DataIOError as e:
            log.error(f"Archive failed, queue kept and data left unchanged: {e}")
            _set_outputs(0, len(checked.invalid), [])
            return 1
        write_json(settings.data_path, doc.to_json())
        AuditTrail(settings, COMPONENT).record(
            "process_updates", f"{len(checked.valid)} update(s) applied",
            {"updated_locations": updated, "failed": len(checked.invalid)},
        )
        log.ok(f"Applied updates to: {', '.join(updated)}")

    if checked.invalid:
        invalid_path = settings.resolve(settings.paths.updates_invalid) / f"invalid-{file_timestamp(now)}.json"
        write_json(invalid_path, checked.invalid)
        log.warn(f"Invalid updates quarantined to {invalid_path}")

    write_json(queue_path, [])
    _set_outputs(len(checked.valid), len(checked.invalid), updated)
    emit(f"{COMPONENT}.completed", {"processed": len(checked.valid), "failed": len(checked.invalid)},
         telemetry_dir=settings.logs_dir / "telemetry")
    return 1 if checked.invalid else 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Validate and apply pending parking updates")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--strict", action="store_true", help="reject over-capacity values instead of capping them")
    ap.add_argument("--dry-run", action="store_true", help="validate only")
    args = ap.parse_args(argv)
    return run(load_settings(args.rules), strict=args.strict, dry_run=args.dry_run)


if __name__ == "__main__":
    sys.exit(main())
