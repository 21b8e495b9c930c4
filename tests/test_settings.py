# tests/test_settings.py
"""Rules file loading (ops/settings.py + ops/parking_rules.yaml)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ops.settings import load_settings


def test_bundled_rules_load(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("PARKIR_RULES", raising=False)
    monkeypatch.setenv("PARKIR_ROOT", str(tmp_path))

    s = load_settings()

    assert s.root == tmp_path
    assert s.data_path == tmp_path / "data" / "parkir-data.json"
    assert s.config_path == tmp_path / "config" / "locations-config.json"
    assert s.thresholds.utilization.critical == 95
    assert s.data_management.max_backup_files == 30
    assert s.recovery.remote_mode == "git"


def test_partial_rules_keep_defaults(tmp_path) -> None:
    rules = tmp_path / "rules.yaml"
    rules.write_text("recovery:\n  remote_mode: none\nthresholds:\n  stale_hours:\n    warning: 1\n", encoding="utf-8")

    s = load_settings(str(rules), root=str(tmp_path))

    assert s.recovery.remote_mode == "none"
    assert s.thresholds.stale_hours.warning == 1
    assert s.thresholds.stale_hours.critical == 4
    assert s.operation.name == "Ops Ketupat Progo 2026"


def test_bad_rules_are_rejected(tmp_path) -> None:
    rules = tmp_path / "rules.yaml"
    rules.write_text("recovery:\n  remote_mode: ftp\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_settings(str(rules), root=str(tmp_path))

    rules.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(str(rules), root=str(tmp_path))
