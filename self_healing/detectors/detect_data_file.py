from __future__ import annotations

import json
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ops.errors import DataIOError
from ops.jsonio import read_json
from ops.structure import data_structure_errors

SEVERITY_NONE = "none"
SEVERITY_DEGRADED = "degraded"
SEVERITY_CRITICAL = "critical"


@dataclass
class HealthReport:
    path: str
    exists: bool = False
    size: int = 0
    parses: bool = False
    has_locations: bool = False
    locations: int = 0
    errors: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.has_locations and not self.errors

    @property
    def severity(self) -> str:
        if self.valid:
            return SEVERITY_NONE
        # a parseable document with a locations list can still be repaired in place
        return SEVERITY_DEGRADED if self.has_locations else SEVERITY_CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["valid"] = self.valid
        out["severity"] = self.severity
        return out


def detect(path: Path) -> HealthReport:
    path = Path(path)
    report = HealthReport(path=str(path))

    if not path.is_file():
        report.reason = "data file missing"
        return report
    report.exists = True
    report.size = path.stat().st_size
    if report.size == 0:
        report.reason = "data file is empty"
        return report

    try:
        raw = read_json(path)
    except DataIOError as e:
        report.reason = e.reason
        return report
    report.parses = True

    locations = raw.get("locations") if isinstance(raw, dict) else None
    if not isinstance(locations, list):
        report.reason = "no locations array"
        return report
    report.has_locations = True
    report.locations = len(locations)

    report.errors = data_structure_errors(raw)
    if report.errors:
        report.reason = f"{len(report.errors)} structural error(s)"
    return report


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("data/parkir-data.json")
    print(json.dumps(detect(target).to_dict(), indent=2, sort_keys=True))
