# tests/test_structure.py
"""
Tests for the structural validator (ops/structure.py).

StructureError is fatal and lists every violation; a missing vehicle block is
only a warning; range problems are CapacityViolations, not structure errors.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ops.errors import DataIOError, StructureError
from ops.structure import (
    capacity_violations,
    config_structure_errors,
    data_structure_errors,
    load_config_file,
    load_data_file,
    validate_config,
    validate_data,
)
from sample_docs import location


def test_valid_documents_load(data_raw, config_raw) -> None:
    doc, warnings = validate_data(data_raw)
    cfg = validate_config(config_raw)

    assert [loc.nama for loc in doc.locations] == ["SENOPATI", "ABU BAKAR ALI", "STADION KRIDOSONO"]
    assert warnings == []
    assert cfg.by_name()["STADION KRIDOSONO"].is_special
    assert doc.by_name()["STADION KRIDOSONO"].special_operation is not None


def test_all_violations_are_collected() -> None:
    raw = {"statistics": [], "metadata": "x"}
    errors = data_structure_errors(raw)

    assert "missing 'locations'" in errors
    assert "'statistics' must be an object" in errors
    assert "'metadata' must be an object" in errors

    with pytest.raises(StructureError) as exc:
        validate_data(raw, source="parkir-data.json")
    assert len(exc.value.violations) == 3
    assert "parkir-data.json" in str(exc.value)


def test_location_level_violations(data_raw) -> None:
    del location(data_raw, "ABU BAKAR ALI")["nama"]
    location(data_raw, "SENOPATI")["bus"] = [62, 30]
    location(data_raw, "STADION KRIDOSONO")["mobil"]["available"] = "penuh"
    data_raw["locations"].append("not a location")

    errors = data_structure_errors(data_raw)

    assert "locations[3] is not an object" in errors
    assert "locations[1] missing 'nama'" in errors
    assert "locations[0] (SENOPATI).bus must be an object" in errors
    assert any("STADION KRIDOSONO).mobil.available is not a number" in e for e in errors)


def test_duplicate_names_are_structure_errors(data_raw, config_raw) -> None:
    data_raw["locations"][1]["nama"] = "SENOPATI"
    config_raw["locations"][2]["name"] = "SENOPATI"

    assert "duplicate location nama 'SENOPATI' (locations[0] and locations[1])" in data_structure_errors(data_raw)
    assert "duplicate location name 'SENOPATI' (locations[0] and locations[2])" in config_structure_errors(config_raw)


def test_missing_vehicle_block_is_defaulted_with_warning(data_raw) -> None:
    del location(data_raw, "SENOPATI")["motor"]
    del location(data_raw, "ABU BAKAR ALI")["bus"]["available"]

    doc, warnings = validate_data(data_raw)

    assert doc.by_name()["SENOPATI"].motor.total == 0
    assert "locations[0] (SENOPATI): missing 'motor' block, defaulted to zero" in warnings
    assert "locations[1] (ABU BAKAR ALI).bus: missing 'available', defaulted to 0" in warnings


def test_capacity_violations_are_warnings_not_errors(data_raw) -> None:
    location(data_raw, "SENOPATI")["mobil"]["available"] = 250
    location(data_raw, "ABU BAKAR ALI")["motor"]["available"] = -4

    doc, warnings = validate_data(data_raw)
    violations = capacity_violations(doc)

    assert "mobil: Available (250) exceeds total (200)" in warnings
    assert "motor: Negative available spaces (-4)" in warnings
    assert [(v.location, v.kind, v.corrected_to) for v in violations] == [
        ("SENOPATI", "over_capacity", 200),
        ("ABU BAKAR ALI", "negative", 0),
    ]


def test_numeric_strings_are_coerced(data_raw) -> None:
    location(data_raw, "SENOPATI")["bus"]["available"] = "30"
    doc, _ = validate_data(data_raw)
    assert doc.by_name()["SENOPATI"].bus.available == 30


def test_config_structure_errors(config_raw) -> None:
    config_raw["locations"][0]["capacity"]["bus"] = 62
    config_raw["locations"][1]["name"] = ""

    errors = config_structure_errors(config_raw)

    assert "locations[0] (SENOPATI).capacity.bus must be an object" in errors
    assert "locations[1] missing 'name'" in errors


def test_loaders(tmp_path, write_docs, data_raw, config_raw) -> None:
    settings = write_docs(data=data_raw, config=config_raw)

    doc, _ = load_data_file(settings.data_path)
    assert len(doc.locations) == 3
    assert load_config_file(settings.config_path).version == "1.0.0"
    assert load_config_file(tmp_path / "nope.json", required=False) is None

    with pytest.raises(DataIOError) as exc:
        load_config_file(tmp_path / "nope.json")
    assert exc.value.reason == "file not found"

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(DataIOError) as exc:
        load_data_file(tmp_path / "broken.json")
    assert exc.value.reason.startswith("invalid JSON")


def test_special_operation_windows(data_raw) -> None:
    ops = location(data_raw, "STADION KRIDOSONO")["special_operation"]
    ops["period2"] = {"start": "2026-04-23T05:00:00+07:00", "end": "2026-04-23T09:00:00+07:00"}
    special = validate_data(data_raw)[0].by_name()["STADION KRIDOSONO"].special_operation

    assert special.is_active(datetime(2026, 4, 22, 15, 0, tzinfo=timezone.utc))
    assert special.is_active(datetime(2026, 4, 23, 0, 30, tzinfo=timezone.utc))
    assert not special.is_active(datetime(2026, 4, 23, 3, 0, tzinfo=timezone.utc))
    assert not special.is_active(datetime(2026, 4, 21, 23, 59, tzinfo=timezone.utc))
