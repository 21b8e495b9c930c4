# tests/conftest.py
"""Fixtures: fresh copies of the sample documents and Settings rooted in tmp_path."""

from __future__ import annotations

import copy
from typing import Any, Dict

import pytest

from ops.jsonio import write_json
from ops.settings import Settings
from sample_docs import CONFIG, DATA


@pytest.fixture
def config_raw() -> Dict[str, Any]:
    return copy.deepcopy(CONFIG)


@pytest.fixture
def data_raw() -> Dict[str, Any]:
    return copy.deepcopy(DATA)


@pytest.fixture
def settings(tmp_path, monkeypatch) -> Settings:
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    monkeypatch.delenv("GITHUB_STEP_SUMMARY", raising=False)
    s = Settings(root=tmp_path)
    # never shell out to git from a test
    s.recovery.remote_mode = "none"
    return s


@pytest.fixture
def write_docs(settings):
    def _write(data: Any = None, config: Any = None) -> Settings:
        if data is not None:
            write_json(settings.data_path, data)
        if config is not None:
            write_json(settings.config_path, config)
        return settings

    return _write
