# tests/test_heal.py
"""
Tests for emergency recovery (self_healing/heal.py + playbooks).

Covers:
- probe severities (missing, empty, degraded)
- the ladder stops at the first rung that leaves a valid document
- every rung runs at most once; exhausting the ladder ends in FAILED
- provenance is stamped into metadata and the recovery log is JSONL
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from ops.backup_manager import BackupManager
from ops.errors import RemoteError
from ops.structure import validate_data
from self_healing.detectors.detect_data_file import detect
from self_healing.heal import LADDER, RECOVERY_LOG, IllegalTransition, RecoveryMachine, State, run
from self_healing.playbooks.create_emergency_data import build_emergency_document
from self_healing.playbooks.reset_capacity import RESET_BY, reset_document
from sample_docs import NOW, location


def _machine(settings, **kw) -> RecoveryMachine:
    return RecoveryMachine(settings, clock=lambda: NOW, **kw)


def _saved(settings) -> Dict[str, Any]:
    return json.loads(settings.data_path.read_text(encoding="utf-8"))


def _tracking(calls: List[State], state: State, error: Exception = None):
    def rung():
        calls.append(state)
        if error is not None:
            raise error
        return {}

    return rung


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

def test_probe_severities(settings, write_docs, data_raw) -> None:
    missing = detect(settings.data_path)
    assert (missing.valid, missing.severity, missing.reason) == (False, "critical", "data file missing")

    settings.data_path.parent.mkdir(parents=True, exist_ok=True)
    settings.data_path.write_text("", encoding="utf-8")
    empty = detect(settings.data_path)
    assert (empty.exists, empty.severity, empty.reason) == (True, "critical", "data file is empty")

    location(data_raw, "SENOPATI")["bus"]["available"] = "penuh"
    write_docs(data=data_raw)
    degraded = detect(settings.data_path)
    assert degraded.has_locations and not degraded.valid
    assert degraded.severity == "degraded"
    assert degraded.reason == "1 structural error(s)"


def test_valid_document_needs_no_recovery(write_docs, data_raw) -> None:
    settings = write_docs(data=data_raw)

    outcome = _machine(settings).run()

    assert outcome.path == [State.PROBE, State.VALID]
    assert not outcome.needed and outcome.success
    assert _saved(settings) == data_raw


# ---------------------------------------------------------------------------
# Ladder
# ---------------------------------------------------------------------------

def test_missing_file_is_restored_from_latest_backup(write_docs, data_raw, config_raw) -> None:
    settings = write_docs(data=data_raw, config=config_raw)
    BackupManager(settings, clock=lambda: NOW).create_backup()
    settings.data_path.unlink()
    calls: List[State] = []
    rungs = {s: _tracking(calls, s) for s in LADDER[1:]}

    outcome = _machine(settings, rungs=rungs).run()

    assert outcome.path == [State.PROBE, State.RESTORE_BACKUP, State.RECOVERED]
    assert calls == []
    assert outcome.method == "restore_from_backup"
    saved = _saved(settings)
    assert saved["locations"] == data_raw["locations"]
    assert saved["metadata"]["recovery_method"] == "restore_from_backup"
    assert saved["metadata"]["recovery_type"] == "emergency"
    assert saved["metadata"]["recovery_source"].endswith(".json.gz")
    assert saved["metadata"]["recovered_at"] == "2026-04-21T10:00:00.000Z"


def test_empty_file_is_restored_and_its_bytes_kept(write_docs, data_raw) -> None:
    settings = write_docs(data=data_raw)
    BackupManager(settings, clock=lambda: NOW).create_backup()
    settings.data_path.write_text("", encoding="utf-8")

    outcome = _machine(settings).run()

    assert outcome.final_state == State.RECOVERED
    assert outcome.method == "restore_from_backup"
    assert list(settings.backups_dir.glob("pre-restore-parkir-data-*.json"))
    assert detect(settings.data_path).valid


def test_degraded_then_missing_file_still_recovers_from_backup(write_docs, data_raw) -> None:
    settings = write_docs(data=data_raw)
    BackupManager(settings, clock=lambda: NOW).create_backup()
    settings.data_path.write_text(json.dumps({"locations": 5, "statistics": {}}), encoding="utf-8")

    first = _machine(settings).run()
    settings.data_path.unlink()
    second = _machine(settings).run()

    assert first.method == "restore_from_backup"
    assert second.path == [State.PROBE, State.RESTORE_BACKUP, State.RECOVERED]
    assert _saved(settings)["locations"] == data_raw["locations"]
    assert len(list(settings.backups_dir.glob("backup-compressed-*.json.gz"))) == 1


def test_unparseable_count_without_backup_falls_to_capacity_reset(write_docs, data_raw) -> None:
    location(data_raw, "SENOPATI")["mobil"]["available"] = "penuh"
    settings = write_docs(data=data_raw)

    outcome = _machine(settings).run()

    assert outcome.path == [
        State.PROBE, State.RESTORE_BACKUP, State.REMOTE_PULL, State.CAPACITY_RESET, State.RECOVERED,
    ]
    assert [a.success for a in outcome.attempts] == [False, False, True]
    assert outcome.attempts[0].error == "No latest backup"
    saved = _saved(settings)
    assert location(saved, "SENOPATI")["mobil"]["available"] == 200
    assert saved["metadata"]["emergency_reset"] is True
    assert saved["metadata"]["recovery_method"] == "reset_to_full_capacity"
    assert list(settings.backups_dir.glob("pre-reset-parkir-data-*.json"))


def test_garbage_without_backup_builds_emergency_data_from_config(write_docs, config_raw) -> None:
    settings = write_docs(config=config_raw)
    settings.data_path.parent.mkdir(parents=True, exist_ok=True)
    settings.data_path.write_text("{{{ not json", encoding="utf-8")

    outcome = _machine(settings).run()

    assert outcome.final_state == State.RECOVERED
    assert outcome.method == "create_emergency_data"
    assert len(outcome.attempts) == 4
    saved = _saved(settings)
    assert [loc["nama"] for loc in saved["locations"]] == ["SENOPATI", "ABU BAKAR ALI", "STADION KRIDOSONO"]
    assert location(saved, "STADION KRIDOSONO")["bus"]["total"] == 0
    assert location(saved, "SENOPATI")["petugas"] == "P001SEN"
    assert saved["metadata"]["recovery_source"] == "config"
    assert saved["statistics"]["emergency_mode"] is True
    assert list(settings.backups_dir.glob("pre-emergency-parkir-data-*.json"))


def test_exhausted_ladder_fails_after_each_rung_once(settings) -> None:
    calls: List[State] = []
    rungs = {s: _tracking(calls, s, RemoteError("down")) for s in LADDER}

    outcome = _machine(settings, rungs=rungs).run()

    assert calls == list(LADDER)
    assert len(outcome.path) == 6
    assert outcome.final_state == State.FAILED
    assert not outcome.success and outcome.method is None


def test_rung_that_leaves_invalid_data_counts_as_failure(settings) -> None:
    calls: List[State] = []
    rungs = {s: _tracking(calls, s) for s in LADDER}

    outcome = _machine(settings, rungs=rungs).run()

    assert outcome.final_state == State.FAILED
    assert all(a.error == "data file missing" for a in outcome.attempts)


def test_illegal_transitions_are_rejected(settings) -> None:
    machine = _machine(settings)
    with pytest.raises(IllegalTransition):
        machine._move(State.CAPACITY_RESET)

    machine._move(State.RESTORE_BACKUP)
    machine.state = State.PROBE
    with pytest.raises(IllegalTransition):
        machine._move(State.RESTORE_BACKUP)


def test_recovery_log_is_jsonl(settings) -> None:
    rungs = {s: _tracking([], s, RemoteError("down")) for s in LADDER}
    _machine(settings, rungs=rungs).run()

    lines = (settings.logs_dir / RECOVERY_LOG).read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]

    assert entries[0]["action"] == "probe"
    assert entries[-1] == {
        "timestamp": "2026-04-21T10:00:00.000Z",
        "action": "finished",
        "details": {"final_state": "FAILED", "method": None},
    }
    assert [e["action"] for e in entries].count("transition") == 5


def test_run_with_nothing_on_disk_writes_fallback_location(settings, tmp_path, monkeypatch) -> None:
    outputs = tmp_path / "gh-output.txt"
    monkeypatch.setenv("GITHUB_OUTPUT", str(outputs))

    assert run(settings) == 0

    saved = _saved(settings)
    assert [loc["nama"] for loc in saved["locations"]] == ["SENOPATI"]
    assert saved["metadata"]["recovery_source"] == "fallback"
    text = outputs.read_text(encoding="utf-8")
    assert "recovery_state" in text and "RECOVERED" in text
    assert "create_emergency_data" in text
    assert list((settings.logs_dir / "telemetry").glob("events-*.jsonl"))


# ---------------------------------------------------------------------------
# Playbook documents
# ---------------------------------------------------------------------------

def test_reset_document_restores_full_availability(data_raw) -> None:
    location(data_raw, "ABU BAKAR ALI")["motor"]["total"] = "abc"
    del location(data_raw, "SENOPATI")["motor"]

    doc, count = reset_document(data_raw, NOW)

    assert count == 9
    assert location(doc, "SENOPATI")["mobil"]["available"] == 200
    assert location(doc, "SENOPATI")["motor"] == {
        "total": 0, "available": 0, "last_update": NOW.isoformat(), "updated_by": RESET_BY,
        "status": "not_available",
    }
    assert location(doc, "ABU BAKAR ALI")["motor"]["total"] == 0
    assert doc["statistics"]["total_available_mobil"] == 240
    assert doc["statistics"]["reset_by"] == RESET_BY
    # input untouched
    assert location(data_raw, "ABU BAKAR ALI")["motor"]["total"] == "abc"


def test_fallback_emergency_document_is_valid() -> None:
    doc = build_emergency_document(None, NOW, "Ops Ketupat Progo 2026", None)

    parsed, warnings = validate_data(doc)

    assert [loc.nama for loc in parsed.locations] == ["SENOPATI"]
    assert (parsed.locations[0].bus.total, parsed.locations[0].mobil.available) == (62, 200)
    assert warnings == []
    assert doc["metadata"]["total_locations"] == 1
    assert (doc["statistics"]["total_bus_capacity"], doc["statistics"]["total_mobil_capacity"]) == (62, 200)
