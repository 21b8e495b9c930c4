#!/usr/bin/env python3
"""
ops/backup_manager.py — snapshots of data/parkir-data.json.

Layout under data/backups/:
  backup-raw-<ts>.json          wrapper {metadata, data}, pretty JSON
  backup-compressed-<ts>.json.gz  same wrapper, gzip
  backup-info-<ts>.json         sizes + compression ratio
  latest-backup.json            pointer {timestamp, backup_file, info_file, type, reason}

<ts> is the UTC ISO-8601 timestamp with ':' and '.' replaced by '-'. Two backups
in the same millisecond get a numeric suffix.

Usage:
  python -m ops.backup_manager create [--type manual] [--reason "..."]
  python -m ops.backup_manager cleanup
  python -m ops.backup_manager restore <file|latest>
  python -m ops.backup_manager list
  python -m ops.backup_manager verify <file>
  python -m ops.backup_manager verify-all
"""

from __future__ import annotations

import argparse
import shutil
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from rich.table import Table

from ops.errors import BackupError, DataIOError, RestoreError
from ops.jsonio import read_json, write_json, write_json_gz
from ops.log import OpsLogger, console, get_logger
from ops.models import LatestPointer
from ops.settings import Settings, load_settings
from ops.structure import data_structure_errors
from tools.audit_append import AuditTrail

LATEST_POINTER = "latest-backup.json"
RAW_PREFIX = "backup-raw-"
COMPRESSED_PREFIX = "backup-compressed-"
INFO_PREFIX = "backup-info-"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def file_timestamp(now: datetime) -> str:
    """2026-04-20T10:15:30.123Z -> 2026-04-20T10-15-30-123Z"""
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


def iso(now: datetime) -> str:
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_file_timestamp(stamp: str) -> Optional[datetime]:
    """Inverse of file_timestamp; a collision suffix ("-1") is ignored."""
    try:
        return datetime.strptime(stamp[:23], "%Y-%m-%dT%H-%M-%S-%f").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def timestamp_from_name(name: str) -> Optional[str]:
    for prefix in (COMPRESSED_PREFIX, RAW_PREFIX):
        if name.startswith(prefix):
            return name[len(prefix):].replace(".json.gz", "").replace(".json", "")
    return None


def snapshot_copy(path: Path, backup_dir: Path, prefix: str, now: datetime) -> Path:
    """Byte copy of a file as <prefix>-<stem>-<ts><suffix>; not subject to rotation."""
    target = backup_dir / f"{prefix}-{path.stem}-{file_timestamp(now)}{path.suffix}"
    n = 0
    while target.exists():
        n += 1
        target = backup_dir / f"{prefix}-{path.stem}-{file_timestamp(now)}-{n}{path.suffix}"
    backup_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(path, target)
    return target


def unwrap_backup(backup: Any) -> Any:
    if isinstance(backup, dict) and isinstance(backup.get("data"), dict) and "metadata" in backup:
        return backup["data"]
    return backup


class BackupManager:
    def __init__(
        self,
        settings: Settings,
        log: Optional[OpsLogger] = None,
        clock: Clock = utc_now,
        audit: Optional[AuditTrail] = None,
    ) -> None:
        self.settings = settings
        self.data_file = settings.data_path
        self.backup_dir = settings.backups_dir
        self.max_files = settings.data_management.max_backup_files
        self.log = log or get_logger("backup_manager", settings.logs_dir)
        self.clock = clock
        self.audit = audit or AuditTrail(settings, "backup_manager")

    # -----------------------------
    # create / cleanup
    # -----------------------------
    def _unique_stamp(self, now: datetime) -> str:
        base = file_timestamp(now)
        stamp, n = base, 0
        while (self.backup_dir / f"{RAW_PREFIX}{stamp}.json").exists() or (
            self.backup_dir / f"{COMPRESSED_PREFIX}{stamp}.json.gz"
        ).exists():
            n += 1
            stamp = f"{base}-{n}"
        return stamp

    def create_backup(self, backup_type: str = "manual", reason: str = "scheduled") -> Dict[str, Any]:
        now = self.clock()
        try:
            original_size = self.data_file.stat().st_size
            data = read_json(self.data_file)
        except FileNotFoundError:
            raise BackupError(f"nothing to back up: {self.data_file} does not exist") from None
        except DataIOError as e:
            raise BackupError(f"cannot back up unreadable data file: {e}") from e

        wrapper = {
            "metadata": {
                "backup_timestamp": iso(now),
                "backup_type": backup_type,
                "backup_reason": reason,
                "original_metadata": data.get("metadata") if isinstance(data, dict) else None,
            },
            "data": data,
        }

        stamp = self._unique_stamp(now)
        raw_file = self.backup_dir / f"{RAW_PREFIX}{stamp}.json"
        compressed_file = self.backup_dir / f"{COMPRESSED_PREFIX}{stamp}.json.gz"
        info_file = self.backup_dir / f"{INFO_PREFIX}{stamp}.json"

        try:
            write_json(raw_file, wrapper)
            write_json_gz(compressed_file, wrapper)
        except DataIOError as e:
            raise BackupError(str(e)) from e

        raw_size = raw_file.stat().st_size
        compressed_size = compressed_file.stat().st_size
        ratio = round((raw_size - compressed_size) / raw_size * 100, 1) if raw_size else 0.0
        info = {
            "timestamp": iso(now),
            "type": backup_type,
            "reason": reason,
            "original_file": str(self.data_file),
            "original_size": original_size,
            "raw_backup_file": raw_file.name,
            "raw_size": raw_size,
            "compressed_backup_file": compressed_file.name,
            "compressed_size": compressed_size,
            "compression_ratio": ratio,
        }
        write_json(info_file, info)

        pointer = LatestPointer(
            timestamp=iso(now),
            backup_file=compressed_file.name,
            info_file=info_file.name,
            type=backup_type,
            reason=reason,
        )
        write_json(self.backup_dir / LATEST_POINTER, pointer.model_dump())

        self.log.ok(
            f"Backup created: {backup_type} ({reason}) raw={raw_size}B compressed={compressed_size}B ({ratio}% smaller)"
        )
        cleanup = self.cleanup_old_backups()

        return {
            "success": True,
            "timestamp": iso(now),
            "info": info,
            "files": {
                "raw": str(raw_file),
                "compressed": str(compressed_file),
                "info": str(info_file),
                "latest": str(self.backup_dir / LATEST_POINTER),
            },
            "cleanup": cleanup,
        }

    def _backup_artifacts(self) -> List[Path]:
        if not self.backup_dir.is_dir():
            return []
        return [
            p for p in self.backup_dir.iterdir()
            if p.is_file() and p.name.startswith("backup-") and (p.name.endswith(".json") or p.name.endswith(".json.gz"))
        ]

    def cleanup_old_backups(self) -> Dict[str, Any]:
        files = sorted(self._backup_artifacts(), key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
        to_delete = files[self.max_files:]
        for p in to_delete:
            p.unlink()
            self.log.info(f"Deleted old backup: {p.name}")
        return {"deleted": len(to_delete), "kept": len(files) - len(to_delete), "total_before": len(files)}

    # -----------------------------
    # lookup
    # -----------------------------
    def resolve(self, backup_file: str | Path) -> Path:
        p = Path(backup_file)
        if p.is_absolute() or p.exists():
            return p
        return self.backup_dir / p

    def latest_backup(self) -> Optional[Path]:
        """Pointer first; fall back to the newest filename timestamp."""
        pointer_path = self.backup_dir / LATEST_POINTER
        if pointer_path.is_file():
            try:
                pointer = LatestPointer.model_validate(read_json(pointer_path))
                candidate = self.resolve(pointer.backup_file)
                if candidate.is_file():
                    return candidate
                self.log.warn(f"latest pointer names a missing file: {pointer.backup_file}")
            except (DataIOError, ValidationError) as e:
                self.log.warn(f"latest pointer unreadable, scanning backups instead: {e}")

        scanned = self._scan_backups()
        return scanned[0] if scanned else None

    def _scan_backups(self) -> List[Path]:
        """One artifact per stamp, newest first; compressed wins over raw."""
        by_stamp: Dict[str, Path] = {}
        for p in self._backup_artifacts():
            ts = timestamp_from_name(p.name)
            if ts is None:
                continue
            if ts not in by_stamp or p.name.startswith(COMPRESSED_PREFIX):
                by_stamp[ts] = p
        return [by_stamp[ts] for ts in sorted(by_stamp, reverse=True)]

    def restore_candidates(self) -> List[Path]:
        """The latest backup followed by every other backup, newest first."""
        latest = self.latest_backup()
        if latest is None:
            return []
        return [latest] + [p for p in self._scan_backups() if p != latest]

    def list_backups(self) -> Dict[str, Any]:
        backups: List[Dict[str, Any]] = []
        if self.backup_dir.is_dir():
            for info_path in self.backup_dir.glob(f"{INFO_PREFIX}*.json"):
                try:
                    info = read_json(info_path)
                except DataIOError as e:
                    self.log.warn(f"skipping unreadable info file: {e}")
                    continue
                backups.append({
                    "file": info_path.name,
                    "timestamp": info.get("timestamp"),
                    "type": info.get("type"),
                    "reason": info.get("reason"),
                    "size": info.get("compressed_size") or 0,
                    "compression_ratio": info.get("compression_ratio"),
                    "backup_file": info.get("compressed_backup_file"),
                })
        backups.sort(key=lambda b: str(b.get("timestamp") or ""), reverse=True)
        return {"count": len(backups), "total_size": sum(b["size"] for b in backups), "backups": backups}

    # -----------------------------
    # verify
    # -----------------------------
    def verify_backup(self, backup_file: str | Path) -> Dict[str, Any]:
        path = self.resolve(backup_file)
        result: Dict[str, Any] = {"file": str(path), "valid": False}
        if not path.is_file():
            result["error"] = "File not found"
            return result
        size = path.stat().st_size
        result["size"] = size
        if size == 0:
            result["error"] = "Empty file"
            return result
        try:
            backup = read_json(path)
        except DataIOError as e:
            result["error"] = e.reason
            return result
        if not isinstance(backup, dict) or not all(backup.get(k) for k in ("metadata", "data")):
            result["error"] = "Invalid backup structure"
            return result
        meta = backup["metadata"] if isinstance(backup["metadata"], dict) else {}
        data = backup["data"]
        result.update({
            "valid": True,
            "timestamp": meta.get("backup_timestamp"),
            "type": meta.get("backup_type"),
            "locations": len(data.get("locations") or []) if isinstance(data, dict) else 0,
        })
        return result

    def verify_all_backups(self) -> Dict[str, Any]:
        files = sorted(self.backup_dir.glob(f"{COMPRESSED_PREFIX}*.json.gz")) if self.backup_dir.is_dir() else []
        results = [self.verify_backup(p) for p in files]
        valid = sum(1 for r in results if r["valid"])
        return {"total": len(results), "valid": valid, "invalid": len(results) - valid, "results": results}

    # -----------------------------
    # restore
    # -----------------------------
    def _pre_restore_snapshot(self) -> Optional[str]:
        """Protect the current document before it is overwritten."""
        if not self.data_file.exists():
            return None
        try:
            problems = data_structure_errors(read_json(self.data_file))
        except DataIOError as e:
            problems = [e.reason]
        if not problems:
            try:
                return self.create_backup("auto", "pre-restore-backup")["files"]["compressed"]
            except BackupError as e:
                problems = [str(e)]
        # a broken document never becomes a rotated backup or the latest pointer
        copy = snapshot_copy(self.data_file, self.backup_dir, "pre-restore", self.clock())
        self.log.warn(f"current data not backed up ({problems[0]}); raw copy kept at {copy.name}")
        return str(copy)

    def restore_backup(self, backup_file: str | Path) -> Dict[str, Any]:
        path = self.resolve(backup_file)
        self.log.info(f"Restoring from backup: {path}")
        try:
            backup = read_json(path)
        except DataIOError as e:
            raise RestoreError(f"cannot read backup: {e}") from e

        payload = unwrap_backup(backup)
        errors = data_structure_errors(payload)
        if errors:
            raise RestoreError(f"backup {path.name} does not hold a valid data document: " + "; ".join(errors))

        pre_restore = self._pre_restore_snapshot()
        now = self.clock()
        metadata = dict(payload.get("metadata") or {})
        metadata.update({
            "restored_from": str(path),
            "restored_at": iso(now),
            "pre_restore_backup": pre_restore,
        })
        restored = dict(payload)
        restored["metadata"] = metadata
        try:
            write_json(self.data_file, restored)
        except DataIOError as e:
            raise RestoreError(str(e)) from e

        self.audit.record("restore", f"data restored from {path.name}",
                          {"backup_file": str(path), "pre_restore_backup": pre_restore})
        self.log.ok(f"Restore completed from {path.name}")
        return {
            "success": True,
            "backup_used": str(path),
            "pre_restore_backup": pre_restore,
            "data_restored": metadata.get("last_updated"),
        }

    def restore_latest(self) -> Dict[str, Any]:
        """Restore the newest backup that holds a valid data document."""
        candidates = self.restore_candidates()
        if not candidates:
            raise RestoreError("No latest backup")
        rejected: List[str] = []
        for path in candidates:
            try:
                return self.restore_backup(path)
            except RestoreError as e:
                self.log.warn(f"skipping backup {path.name}: {e}")
                rejected.append(str(e))
        raise RestoreError(f"no usable backup among {len(candidates)}: " + "; ".join(rejected))


def print_listing(listing: Dict[str, Any]) -> None:
    table = Table(title=f"Backups ({listing['count']}, {listing['total_size']} bytes)")
    for col in ("timestamp", "type", "reason", "size", "ratio %"):
        table.add_column(col)
    for b in listing["backups"]:
        table.add_row(str(b["timestamp"]), str(b["type"]), str(b["reason"]), str(b["size"]), str(b["compression_ratio"]))
    console.print(table)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Backup manager for data/parkir-data.json")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--max-files", type=int, default=None, help="override data_management.max_backup_files")
    sub = ap.add_subparsers(dest="command", required=True)
    p_create = sub.add_parser("create")
    p_create.add_argument("--type", default="manual")
    p_create.add_argument("--reason", default="Manual backup")
    sub.add_parser("cleanup")
    p_restore = sub.add_parser("restore")
    p_restore.add_argument("file", help="backup file or 'latest'")
    sub.add_parser("list")
    p_verify = sub.add_parser("verify")
    p_verify.add_argument("file")
    sub.add_parser("verify-all")
    args = ap.parse_args(argv)

    settings = load_settings(args.rules)
    if args.max_files:
        settings.data_management.max_backup_files = args.max_files
    manager = BackupManager(settings)
    log = manager.log

    try:
        if args.command == "create":
            manager.create_backup(args.type, args.reason)
        elif args.command == "cleanup":
            res = manager.cleanup_old_backups()
            log.info(f"Cleanup: deleted {res['deleted']}, kept {res['kept']}")
        elif args.command == "restore":
            if args.file == "latest":
                manager.restore_latest()
            else:
                manager.restore_backup(args.file)
        elif args.command == "list":
            print_listing(manager.list_backups())
        elif args.command == "verify":
            res = manager.verify_backup(args.file)
            if not res["valid"]:
                log.error(f"{res['file']}: {res['error']}")
                return 1
            log.ok(f"{res['file']}: valid ({res['size']} bytes)")
        elif args.command == "verify-all":
            res = manager.verify_all_backups()
            for r in res["results"]:
                if not r["valid"]:
                    log.warn(f"{Path(r['file']).name}: {r['error']}")
            log.info(f"Verified {res['total']} backup(s): {res['valid']} valid, {res['invalid']} invalid")
            return 1 if res["invalid"] else 0
    except (BackupError, RestoreError) as e:
        log.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
