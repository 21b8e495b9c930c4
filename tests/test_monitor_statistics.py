# tests/test_monitor_statistics.py
"""
Tests for the Statistics Monitor (ops/monitor_statistics.py). Read-only: the
monitor reports, it never writes the data document.
"""

from __future__ import annotations

import json
from datetime import timedelta

from ops.monitor_statistics import check_high_utilization, check_stale_updates, monitor, run
from ops.settings import Thresholds
from ops.structure import validate_data
from sample_docs import NOW, location


def _doc(data_raw):
    return validate_data(data_raw)[0]


def test_sample_document_is_healthy(data_raw) -> None:
    report = monitor(_doc(data_raw), Thresholds(), NOW)

    assert report["summary"]["system_status"] == "healthy"
    assert report["summary"]["issues_found"] == 0
    assert report["summary"]["alerts_generated"] == 0
    assert report["summary"]["calculated"] == {"bus": 30, "mobil": 160, "motor": 120}
    assert report["recommendations"] == []


def test_reported_drift_levels(data_raw) -> None:
    data_raw["statistics"]["total_available_bus"] = 22
    data_raw["statistics"]["total_available_motor"] = 100
    del data_raw["statistics"]["total_available_mobil"]

    report = monitor(_doc(data_raw), Thresholds(), NOW)

    issues = {i["vehicle"]: i["severity"] for i in report["details"]["issues"]}
    assert issues == {"bus": "warning", "mobil": "critical", "motor": "critical"}
    assert report["summary"]["system_status"] == "needs_attention"
    assert "Run ops/fix_statistics.py to correct inconsistencies" in report["recommendations"]


def test_high_utilization_thresholds(data_raw) -> None:
    location(data_raw, "SENOPATI")["mobil"]["available"] = 30
    location(data_raw, "ABU BAKAR ALI")["mobil"]["available"] = 2

    alerts = check_high_utilization(_doc(data_raw), Thresholds())

    assert [(a.location, a.vehicle, a.severity, a.value) for a in alerts] == [
        ("SENOPATI", "mobil", "warning", 85.0),
        ("ABU BAKAR ALI", "mobil", "critical", 95.0),
    ]


def test_special_locations_are_not_utilization_checked(data_raw) -> None:
    location(data_raw, "STADION KRIDOSONO")["mobil"].update(total=10, available=0, status="full")

    assert check_high_utilization(_doc(data_raw), Thresholds()) == []


def test_stale_update_levels(data_raw) -> None:
    doc = _doc(data_raw)

    assert check_stale_updates(doc, Thresholds(), NOW + timedelta(hours=1)) == []
    warn = check_stale_updates(doc, Thresholds(), NOW + timedelta(hours=2))
    crit = check_stale_updates(doc, Thresholds(), NOW + timedelta(hours=4))

    assert {a.severity for a in warn} == {"warning"}
    assert {a.severity for a in crit} == {"critical"}
    assert crit[0].message == "SENOPATI: no update for 4.5 hours"


def test_special_operation_windows_are_reported(data_raw) -> None:
    report = monitor(_doc(data_raw), Thresholds(), NOW + timedelta(days=1))

    assert report["summary"]["special_active"] == ["STADION KRIDOSONO"]
    assert report["details"]["special_operations"] == [
        {"location": "STADION KRIDOSONO", "active": True, "periods": ["2026-04-22", "2026-04-23"]},
    ]
    assert monitor(_doc(data_raw), Thresholds(), NOW)["summary"]["special_active"] == []


def test_special_location_without_both_periods_is_flagged(data_raw) -> None:
    del location(data_raw, "STADION KRIDOSONO")["special_operation"]["period2"]

    report = monitor(_doc(data_raw), Thresholds(), NOW)

    assert [(a["type"], a["severity"], a["message"]) for a in report["details"]["alerts"]] == [
        ("special_operation_incomplete", "warning", "STADION KRIDOSONO: special location without period2"),
    ]
    assert report["summary"]["critical"] == 0
    assert "Add the missing special_operation periods" in report["recommendations"]


def test_run_writes_reports_and_flags_critical(write_docs, data_raw) -> None:
    settings = write_docs(data=data_raw)
    before = settings.data_path.read_bytes()

    assert run(settings, now=NOW) == 0
    assert (settings.reports_dir / "monitor-report-2026-04-21.json").is_file()
    assert (settings.logs_dir / "monitor-2026-04-21.jsonl").is_file()

    assert run(settings, now=NOW + timedelta(hours=6)) == 1
    latest = json.loads((settings.reports_dir / "monitor-report-latest.json").read_text(encoding="utf-8"))
    assert latest["summary"]["critical"] == 3
    assert settings.data_path.read_bytes() == before
