#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Append audit entries with hash chaining (append-only JSON Lines).

Every core write (fix, sync, update processing, restore, recovery) appends one
entry. Each entry carries sha_previous (the last entry's sha_current, or the
hash of the anchor file for the first entry) and its own sha_current.

Usage:
  python -m tools.audit_append --verify [--rules ops/parking_rules.yaml]
"""

from __future__ import annotations

import argparse
import hashlib
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import orjson

from ops.settings import load_settings

ANCHOR_TEXT = "parkir_audit_anchor_v1\n"

# Hash material, in order. sha_current is never part of its own material.
FIELDS = ["timestamp", "component", "action", "severity", "description", "run_id", "details", "sha_previous"]


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def iso_utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _material(entry: Dict[str, Any]) -> str:
    parts = []
    for k in FIELDS:
        v = entry.get(k, "")
        parts.append(json.dumps(v, sort_keys=True, default=str) if isinstance(v, (dict, list)) else str(v))
    return "|".join(parts)


def _anchor_hash(anchor_path: Path) -> str:
    if anchor_path.is_file():
        return sha256(anchor_path.read_text(encoding="utf-8").strip())
    return sha256("")


def read_last_hash(log_path: Path, anchor_path: Path) -> str:
    """
    sha_previous for the next entry:
      - last line of the audit log -> sha_current
      - else hash of the anchor file
      - else hash of the empty string
    """
    if log_path.is_file():
        with log_path.open("r", encoding="utf-8") as f:
            lines = [ln.strip() for ln in f if ln.strip()]
        if lines:
            try:
                return json.loads(lines[-1]).get("sha_current") or ""
            except ValueError:
                # a torn last line breaks the chain; verify_chain reports it
                return sha256(lines[-1])
    return _anchor_hash(anchor_path)


def append_entry(
    log_path: Path,
    anchor_path: Path,
    component: str,
    action: str,
    description: str,
    details: Optional[Dict[str, Any]] = None,
    severity: str = "info",
) -> Dict[str, Any]:
    log_path = Path(log_path)
    anchor_path = Path(anchor_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if not anchor_path.is_file():
        anchor_path.parent.mkdir(parents=True, exist_ok=True)
        anchor_path.write_text(ANCHOR_TEXT, encoding="utf-8")

    entry = {
        "timestamp": iso_utc_now(),
        "component": component,
        "action": action,
        "severity": severity,
        "description": description,
        "run_id": os.environ.get("GITHUB_RUN_ID") or os.environ.get("CI_RUN_ID") or "local",
        "details": details or {},
        "sha_previous": read_last_hash(log_path, anchor_path),
    }
    entry["sha_current"] = sha256(_material(entry))

    with log_path.open("ab") as f:
        f.write(orjson.dumps(entry, default=str))
        f.write(b"\n")
    return entry


def verify_chain(log_path: Path, anchor_path: Path) -> Tuple[bool, List[str]]:
    problems: List[str] = []
    log_path = Path(log_path)
    if not log_path.is_file():
        return True, problems

    prev = _anchor_hash(Path(anchor_path))
    with log_path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                problems.append(f"line {lineno}: invalid JSON")
                prev = sha256(line)
                continue
            if entry.get("sha_previous") != prev:
                problems.append(f"line {lineno}: sha_previous does not match previous entry")
            if entry.get("sha_current") != sha256(_material(entry)):
                problems.append(f"line {lineno}: sha_current does not match entry content")
            prev = entry.get("sha_current") or ""
    return not problems, problems


class AuditTrail:
    """Bound to one component; no-op when auditing is disabled in the rules."""

    def __init__(self, settings: Any, component: str) -> None:
        self.enabled = bool(settings.audit.enabled)
        self.log_path = settings.resolve(settings.paths.audit_log)
        self.anchor_path = settings.resolve(settings.paths.audit_anchor)
        self.component = component

    def record(self, action: str, description: str, details: Optional[Dict[str, Any]] = None, severity: str = "info") -> None:
        if not self.enabled:
            return
        append_entry(self.log_path, self.anchor_path, self.component, action, description, details, severity)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Verify the hash-chained audit log")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    ap.add_argument("--verify", action="store_true", help="re-walk the chain and report breaks")
    args = ap.parse_args(argv)

    settings = load_settings(args.rules)
    log_path = settings.resolve(settings.paths.audit_log)
    anchor_path = settings.resolve(settings.paths.audit_anchor)

    if not args.verify:
        ap.print_help()
        return 2

    ok, problems = verify_chain(log_path, anchor_path)
    for p in problems:
        print(f"- {p}", file=sys.stderr)
    print(f"audit chain {'OK' if ok else 'BROKEN'}: {log_path}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
