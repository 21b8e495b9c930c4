# tests/test_audit.py
"""
Tests for the hash-chained audit log (tools/audit_append.py).
"""

from __future__ import annotations

import json

from tools.audit_append import AuditTrail, _anchor_hash, append_entry, main, verify_chain


def _paths(tmp_path):
    return tmp_path / "logs" / "audit.jsonl", tmp_path / "logs" / "audit_anchor.txt"


def test_entries_chain_from_the_anchor(tmp_path) -> None:
    log_path, anchor = _paths(tmp_path)

    first = append_entry(log_path, anchor, "fix_statistics", "fix", "1 fix applied", {"fixes": 1})
    second = append_entry(log_path, anchor, "sync_config", "sync", "config to data")

    assert anchor.is_file()
    assert first["sha_previous"] == _anchor_hash(anchor)
    assert second["sha_previous"] == first["sha_current"]
    assert verify_chain(log_path, anchor) == (True, [])


def test_tampering_is_detected(tmp_path) -> None:
    log_path, anchor = _paths(tmp_path)
    for n in range(3):
        append_entry(log_path, anchor, "process_updates", "process_updates", f"{n} update(s) applied")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[1])
    entry["description"] = "99 update(s) applied"
    lines[1] = json.dumps(entry)
    log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    ok, problems = verify_chain(log_path, anchor)

    assert not ok
    assert problems == ["line 2: sha_current does not match entry content"]


def test_torn_line_breaks_the_chain(tmp_path) -> None:
    log_path, anchor = _paths(tmp_path)
    append_entry(log_path, anchor, "backup_manager", "restore", "restored")
    with log_path.open("a", encoding="utf-8") as f:
        f.write('{"timestamp": "2026-04\n')
    append_entry(log_path, anchor, "backup_manager", "restore", "restored again")

    ok, problems = verify_chain(log_path, anchor)

    assert not ok
    assert problems == ["line 2: invalid JSON"]


def test_missing_log_verifies(tmp_path) -> None:
    log_path, anchor = _paths(tmp_path)
    assert verify_chain(log_path, anchor) == (True, [])


def test_audit_trail_respects_enabled_flag(settings) -> None:
    trail = AuditTrail(settings, "emergency_recovery")
    trail.record("recovery", "ladder finished in RECOVERED", {"method": "remote_pull"})
    assert trail.log_path.is_file()

    settings.audit.enabled = False
    trail.log_path.unlink()
    AuditTrail(settings, "emergency_recovery").record("recovery", "ignored")
    assert not trail.log_path.exists()


def test_cli_verify(settings, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PARKIR_ROOT", str(tmp_path))
    trail = AuditTrail(settings, "sync_config")
    trail.record("sync", "config to data")

    assert main(["--verify"]) == 0

    with trail.log_path.open("a", encoding="utf-8") as f:
        f.write("garbage\n")
    assert main(["--verify"]) == 1
    assert main([]) == 2
