# tests/test_process_updates.py
"""
Tests for the pending-updates processor (ops/process_updates.py).
"""

from __future__ import annotations

import json

from ops.process_updates import apply_updates, run, validate_updates
from ops.structure import validate_config, validate_data
from sample_docs import NOW, location


def _docs(data_raw, config_raw):
    data, _ = validate_data(data_raw)
    return data, validate_config(config_raw)


def _update(**kw):
    entry = {"location_id": 1, "petugas_name": "Budi", "timestamp": "2026-04-21T09:55:00+00:00"}
    entry.update(kw)
    return entry


# ---------------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------------

def test_valid_entry_is_cleaned(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)

    res = validate_updates([_update(mobil="120", notes="  ramai  ")], data, config, now=NOW)

    assert res.invalid == []
    cleaned = res.valid[0]
    assert cleaned["location_name"] == "SENOPATI"
    assert cleaned["mobil"] == 120
    assert cleaned["notes"] == "ramai"
    assert "bus" not in cleaned
    assert "warnings" not in cleaned


def test_unknown_location_is_rejected(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)

    res = validate_updates([_update(location_id=99, mobil=1)], data, config, now=NOW)

    assert res.valid == []
    assert res.invalid[0]["errors"] == ["Invalid location_id: 99 not found in parkir data"]


def test_malformed_entries_are_rejected(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)
    entries = [
        _update(location_id="1"),
        _update(petugas_name="   "),
        _update(motor=-3),
        _update(timestamp="kemarin sore"),
        "not an entry",
    ]

    res = validate_updates(entries, data, config, now=NOW)

    assert res.valid == []
    assert len(res.invalid) == 5
    assert res.invalid[-1]["errors"] == ["entry is not an object"]


def test_over_capacity_is_capped_with_warning(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)

    res = validate_updates([_update(mobil=250)], data, config, now=NOW)

    assert res.valid[0]["mobil"] == 200
    assert res.valid[0]["warnings"] == ["Mobil value 250 exceeds capacity 200"]


def test_over_capacity_is_an_error_in_strict_mode(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)

    res = validate_updates([_update(mobil=250)], data, config, strict=True, now=NOW)

    assert res.valid == []
    assert res.invalid[0]["errors"] == ["Mobil value 250 exceeds capacity 200"]


def test_long_notes_and_future_timestamps_are_warnings(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)

    res = validate_updates(
        [_update(bus=10, notes="x" * 600, timestamp="2026-04-21T12:00:00+00:00")], data, config, now=NOW
    )

    cleaned = res.valid[0]
    assert len(cleaned["notes"]) == 500
    assert cleaned["warnings"] == ["Notes too long (truncated to 500 chars)", "Timestamp is in the future"]


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------

def test_later_updates_win_and_statistics_follow(data_raw, config_raw) -> None:
    data, config = _docs(data_raw, config_raw)
    res = validate_updates([_update(mobil=180), _update(mobil=120, petugas_name="Sari")], data, config, now=NOW)

    doc, touched = apply_updates(data, res.valid, now=NOW)

    mobil = doc.by_name()["SENOPATI"].mobil
    assert (mobil.available, mobil.updated_by, mobil.status) == (120, "Sari", "available")
    assert touched == ["SENOPATI"]
    assert doc.statistics["total_available_mobil"] == 130
    assert doc.metadata["updated_by"] == "process_updates"
    # input untouched
    assert data.by_name()["SENOPATI"].mobil.available == 150


def test_untouched_blocks_are_clamped_too(data_raw, config_raw) -> None:
    location(data_raw, "ABU BAKAR ALI")["mobil"]["available"] = 999
    location(data_raw, "ABU BAKAR ALI")["motor"]["available"] = -5
    data, config = _docs(data_raw, config_raw)
    res = validate_updates([_update(bus=12)], data, config, now=NOW)

    doc, touched = apply_updates(data, res.valid, now=NOW)

    abu = doc.by_name()["ABU BAKAR ALI"]
    assert touched == ["SENOPATI"]
    assert (abu.mobil.available, abu.mobil.status, abu.mobil.updated_by) == (40, "empty", "process_updates")
    assert (abu.motor.available, abu.motor.status) == (0, "full")
    assert doc.statistics["total_available_mobil"] == 190
    assert doc.statistics["total_available_motor"] == 0
    for loc in doc.locations:
        for v in ("bus", "mobil", "motor"):
            assert 0 <= loc.vehicle(v).available <= loc.vehicle(v).total


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------

def test_run_without_queue_is_a_no_op(write_docs, data_raw) -> None:
    settings = write_docs(data=data_raw)
    before = settings.data_path.read_bytes()

    assert run(settings, now=NOW) == 0
    assert settings.data_path.read_bytes() == before


def test_run_applies_archives_quarantines_and_clears(write_docs, data_raw, config_raw, tmp_path, monkeypatch) -> None:
    settings = write_docs(data=data_raw, config=config_raw)
    outputs = tmp_path / "gh-output.txt"
    monkeypatch.setenv("GITHUB_OUTPUT", str(outputs))
    queue = [_update(location_id=2, motor=50), _update(location_id=42, bus=1)]
    settings.pending_updates_path.write_text(json.dumps(queue), encoding="utf-8")

    assert run(settings, now=NOW) == 1

    saved = json.loads(settings.data_path.read_text(encoding="utf-8"))
    assert location(saved, "ABU BAKAR ALI")["motor"]["available"] == 50
    assert saved["statistics"]["total_available_motor"] == 50
    assert json.loads(settings.pending_updates_path.read_text(encoding="utf-8")) == []

    archive = settings.resolve(settings.paths.updates_archive) / "updates-2026-04-21.json"
    assert [u["location_id"] for u in json.loads(archive.read_text(encoding="utf-8"))] == [2]
    invalid = list(settings.resolve(settings.paths.updates_invalid).glob("invalid-*.json"))
    assert len(invalid) == 1
    assert json.loads(invalid[0].read_text(encoding="utf-8"))[0]["original"]["location_id"] == 42
    assert list(settings.backups_dir.glob("backup-compressed-*.json.gz"))

    text = outputs.read_text(encoding="utf-8")
    assert "processed_count<<EOF_PARKIR_OUTPUT\n1\n" in text
    assert "failed_count<<EOF_PARKIR_OUTPUT\n1\n" in text
    assert "updated_locations<<EOF_PARKIR_OUTPUT\nABU BAKAR ALI\n" in text


def test_run_dry_run_keeps_queue(write_docs, data_raw, config_raw) -> None:
    settings = write_docs(data=data_raw, config=config_raw)
    settings.pending_updates_path.write_text(json.dumps([_update(mobil=100)]), encoding="utf-8")
    before = settings.data_path.read_bytes()

    assert run(settings, dry_run=True, now=NOW) == 0

    assert settings.data_path.read_bytes() == before
    assert len(json.loads(settings.pending_updates_path.read_text(encoding="utf-8"))) == 1


def test_run_never_writes_out_of_range_counts(write_docs, data_raw, config_raw) -> None:
    location(data_raw, "ABU BAKAR ALI")["mobil"]["available"] = 999
    settings = write_docs(data=data_raw, config=config_raw)
    settings.pending_updates_path.write_text(json.dumps([_update(mobil=100)]), encoding="utf-8")

    assert run(settings, now=NOW) == 0

    saved = json.loads(settings.data_path.read_text(encoding="utf-8"))
    assert location(saved, "ABU BAKAR ALI")["mobil"]["available"] == 40
    assert saved["statistics"]["total_available_mobil"] == 140
    for loc in saved["locations"]:
        for v in ("bus", "mobil", "motor"):
            assert 0 <= loc[v]["available"] <= loc[v]["total"]


def test_run_keeps_queue_when_archive_fails(write_docs, data_raw, config_raw) -> None:
    settings = write_docs(data=data_raw, config=config_raw)
    queue = [_update(mobil=100)]
    settings.pending_updates_path.write_text(json.dumps(queue), encoding="utf-8")
    archive = settings.resolve(settings.paths.updates_archive) / "updates-2026-04-21.json"
    archive.parent.mkdir(parents=True, exist_ok=True)
    archive.write_text('{"broken": true}', encoding="utf-8")
    before = settings.data_path.read_bytes()

    assert run(settings, now=NOW) == 1

    assert settings.data_path.read_bytes() == before
    assert json.loads(settings.pending_updates_path.read_text(encoding="utf-8")) == queue
    assert json.loads(archive.read_text(encoding="utf-8")) == {"broken": True}
