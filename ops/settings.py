"""
Operating rules for the parking engine.

Rules come from ops/parking_rules.yaml (PyYAML), or the file named by --rules /
PARKIR_RULES. A missing file means defaults. All relative paths are resolved
against PARKIR_ROOT (default: cwd).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "parking_rules.yaml"


class OperationRules(BaseModel):
    name: str = "Ops Ketupat Progo 2026"
    period: Optional[str] = "20-26 April 2026"


class PathRules(BaseModel):
    data: str = "data/parkir-data.json"
    config: str = "config/locations-config.json"
    pending_updates: str = "data/pending-updates.json"
    backups: str = "data/backups"
    reports: str = "data/reports"
    logs: str = "data/logs"
    updates_archive: str = "data/updates/archive"
    updates_invalid: str = "data/updates/invalid"
    audit_log: str = "data/logs/audit.log"
    audit_anchor: str = "data/logs/audit_anchor.txt"


class UtilizationThresholds(BaseModel):
    warning: float = 80
    critical: float = 95


class ConsistencyThresholds(BaseModel):
    max_difference: int = 5
    critical_difference: int = 10


class StaleThresholds(BaseModel):
    warning: float = 2
    critical: float = 4


class Thresholds(BaseModel):
    utilization: UtilizationThresholds = Field(default_factory=UtilizationThresholds)
    data_consistency: ConsistencyThresholds = Field(default_factory=ConsistencyThresholds)
    stale_hours: StaleThresholds = Field(default_factory=StaleThresholds)
    config_tolerance: int = 5


class DataManagement(BaseModel):
    max_backup_files: int = Field(default=30, ge=1)


class RecoveryRules(BaseModel):
    remote_mode: str = Field(default="git", pattern="^(git|http|none)$")
    remote_url: Optional[str] = None
    timeout_seconds: float = 30


class AuditRules(BaseModel):
    enabled: bool = True


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    root: Path = Field(default_factory=Path.cwd)
    operation: OperationRules = Field(default_factory=OperationRules)
    paths: PathRules = Field(default_factory=PathRules)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    data_management: DataManagement = Field(default_factory=DataManagement)
    recovery: RecoveryRules = Field(default_factory=RecoveryRules)
    audit: AuditRules = Field(default_factory=AuditRules)

    def resolve(self, rel: str) -> Path:
        p = Path(rel)
        return p if p.is_absolute() else self.root / p

    @property
    def data_path(self) -> Path:
        return self.resolve(self.paths.data)

    @property
    def config_path(self) -> Path:
        return self.resolve(self.paths.config)

    @property
    def pending_updates_path(self) -> Path:
        return self.resolve(self.paths.pending_updates)

    @property
    def backups_dir(self) -> Path:
        return self.resolve(self.paths.backups)

    @property
    def reports_dir(self) -> Path:
        return self.resolve(self.paths.reports)

    @property
    def logs_dir(self) -> Path:
        return self.resolve(self.paths.logs)


def load_yaml(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Rules file {path} must parse to a dict/object.")
    return data


def load_settings(rules_path: Optional[str] = None, root: Optional[str] = None) -> Settings:
    path = Path(rules_path or os.environ.get("PARKIR_RULES") or DEFAULT_RULES_PATH)
    raw = load_yaml(path) if path.exists() else {}
    raw["root"] = Path(root or os.environ.get("PARKIR_ROOT") or Path.cwd())
    return Settings.model_validate(raw)
