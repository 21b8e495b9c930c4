"""
Error taxonomy for the parking consistency engine.

Fatal:
- StructureError     document fails required-shape checks (lists every violation)
- DataIOError        file missing / unreadable / unwritable
- RemoteError        remote pull failed (a recovery rung failure, never a crash)
- BackupError / RestoreError

Non-fatal records (accumulated into reports, not raised):
- ConsistencyIssue   cross-document mismatch
- CapacityViolation  available/total ordering broken (always clamped)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ParkirError(Exception):
    """Base class for all engine errors."""


class StructureError(ParkirError):
    def __init__(self, violations: List[str], source: Optional[str] = None) -> None:
        self.violations = list(violations)
        self.source = source
        where = f" ({source})" if source else ""
        joined = "\n".join(f"- {v}" for v in self.violations)
        super().__init__(f"structure validation failed{where}:\n{joined}")


class DataIOError(ParkirError):
    def __init__(self, path: Any, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class RemoteError(ParkirError):
    pass


class BackupError(ParkirError):
    pass


class RestoreError(ParkirError):
    pass


@dataclass(frozen=True)
class ConsistencyIssue:
    check: str
    msg: str
    location: Optional[str] = None
    vehicle: Optional[str] = None

    def __str__(self) -> str:
        return self.msg


@dataclass(frozen=True)
class CapacityViolation:
    location: str
    vehicle: str
    total: int
    available: int
    corrected_to: int
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return "negative" if self.available < 0 else "over_capacity"

    def describe(self) -> str:
        if self.kind == "negative":
            return f"{self.vehicle}: Negative available spaces ({self.available})"
        return f"{self.vehicle}: Available ({self.available}) exceeds total ({self.total})"
