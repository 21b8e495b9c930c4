#!/usr/bin/env python3
"""
Emergency recovery for data/parkir-data.json

Scope: one invocation, one pass, no loops.

This script:
- Probes the data document (exists, non-empty, parses, has a locations array,
  no structural errors)
- If the probe fails: walks the recovery ladder in a fixed order and stops at
  the first rung after which the document probes valid again
    RESTORE_BACKUP -> REMOTE_PULL -> CAPACITY_RESET -> EMERGENCY_DATA
- Appends every probe, rung outcome and state transition to
  data/logs/emergency-recovery.log (JSONL, append-only)
- Emits GitHub Actions outputs (recovery_needed, recovery_state, recovery_method)

Each rung is attempted at most once per invocation. Transitions outside the
table below raise IllegalTransition.

Standalone entry points:
  python -m self_healing.heal                  full ladder
  python -m self_healing.heal --check          probe only
  python -m self_healing.heal --restore latest rung 1 with an explicit target
  python -m self_healing.heal --reset          rung 3 only
  python -m self_healing.heal --emergency      rung 4 only
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ops.backup_manager import BackupManager, Clock, iso, utc_now
from ops.errors import BackupError, DataIOError, RemoteError, RestoreError, StructureError
from ops.jsonio import append_jsonl, read_json, write_json
from ops.log import OpsLogger, get_logger
from ops.reports import gh_set_output
from ops.settings import Settings, load_settings
from self_healing.detectors.detect_data_file import HealthReport, detect
from self_healing.playbooks import create_emergency_data, pull_remote, reset_capacity, restore_backup
from tools.audit_append import AuditTrail
from tools.ops.telemetry import emit

COMPONENT = "emergency_recovery"
RECOVERY_LOG = "emergency-recovery.log"


class State(str, Enum):
    PROBE = "PROBE"
    VALID = "VALID"
    RESTORE_BACKUP = "RESTORE_BACKUP"
    REMOTE_PULL = "REMOTE_PULL"
    CAPACITY_RESET = "CAPACITY_RESET"
    EMERGENCY_DATA = "EMERGENCY_DATA"
    RECOVERED = "RECOVERED"
    FAILED = "FAILED"


LADDER: Tuple[State, ...] = (
    State.RESTORE_BACKUP,
    State.REMOTE_PULL,
    State.CAPACITY_RESET,
    State.EMERGENCY_DATA,
)

TRANSITIONS: Dict[State, Tuple[State, ...]] = {
    State.PROBE: (State.VALID, State.RESTORE_BACKUP),
    State.RESTORE_BACKUP: (State.RECOVERED, State.REMOTE_PULL),
    State.REMOTE_PULL: (State.RECOVERED, State.CAPACITY_RESET),
    State.CAPACITY_RESET: (State.RECOVERED, State.EMERGENCY_DATA),
    State.EMERGENCY_DATA: (State.RECOVERED, State.FAILED),
}

TERMINAL = (State.VALID, State.RECOVERED, State.FAILED)

# action names written to the recovery log and to metadata.recovery_method
ACTIONS: Dict[State, str] = {
    State.RESTORE_BACKUP: "restore_from_backup",
    State.REMOTE_PULL: "remote_pull",
    State.CAPACITY_RESET: "reset_to_full_capacity",
    State.EMERGENCY_DATA: "create_emergency_data",
}

# a rung raising one of these has failed; anything else is a bug and propagates
RUNG_ERRORS = (RestoreError, RemoteError, BackupError, DataIOError, StructureError)

Rung = Callable[[], Dict[str, Any]]


class IllegalTransition(RuntimeError):
    pass


# -----------------------------
# Outcomes
# -----------------------------
@dataclass
class Attempt:
    state: State
    success: bool
    outcome: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    health: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rung": self.state.value,
            "action": ACTIONS[self.state],
            "success": self.success,
            "outcome": self.outcome,
            "error": self.error,
            "health": self.health,
        }


@dataclass
class RecoveryOutcome:
    probe: HealthReport
    path: List[State]
    attempts: List[Attempt]

    @property
    def final_state(self) -> State:
        return self.path[-1]

    @property
    def needed(self) -> bool:
        return self.final_state != State.VALID

    @property
    def success(self) -> bool:
        return self.final_state in (State.VALID, State.RECOVERED)

    @property
    def method(self) -> Optional[str]:
        for a in self.attempts:
            if a.success:
                return ACTIONS[a.state]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "needed": self.needed,
            "success": self.success,
            "final_state": self.final_state.value,
            "method": self.method,
            "path": [s.value for s in self.path],
            "probe": self.probe.to_dict(),
            "attempts": [a.to_dict() for a in self.attempts],
        }


# -----------------------------
# State machine
# -----------------------------
class RecoveryMachine:
    def __init__(
        self,
        settings: Settings,
        clock: Clock = utc_now,
        log: Optional[OpsLogger] = None,
        backups: Optional[BackupManager] = None,
        rungs: Optional[Dict[State, Rung]] = None,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.log = log or get_logger(COMPONENT, settings.logs_dir)
        self.backups = backups or BackupManager(settings, log=self.log, clock=clock)
        self.recovery_log = settings.logs_dir / RECOVERY_LOG
        self.rungs: Dict[State, Rung] = {**self.default_rungs(), **(rungs or {})}
        self.state = State.PROBE
        self.path: List[State] = [State.PROBE]
        self.attempts: List[Attempt] = []

    def default_rungs(self) -> Dict[State, Rung]:
        return {
            State.RESTORE_BACKUP: lambda: restore_backup.apply(self.backups),
            State.REMOTE_PULL: lambda: pull_remote.apply(self.settings, self.clock()),
            State.CAPACITY_RESET: lambda: reset_capacity.apply(self.settings, self.clock()),
            State.EMERGENCY_DATA: lambda: create_emergency_data.apply(self.settings, self.clock()),
        }

    def record(self, action: str, details: Dict[str, Any]) -> None:
        append_jsonl(self.recovery_log, {"timestamp": iso(self.clock()), "action": action, "details": details})

    def probe(self) -> HealthReport:
        return detect(self.settings.data_path)

    def _move(self, to: State) -> None:
        if to not in TRANSITIONS.get(self.state, ()):
            raise IllegalTransition(f"{self.state.value} -> {to.value} is not a recovery transition")
        if to in self.path:
            raise IllegalTransition(f"{to.value} already visited in this run")
        self.record("transition", {"from": self.state.value, "to": to.value})
        self.state = to
        self.path.append(to)

    def _next_rung(self, rung: State) -> State:
        idx = LADDER.index(rung)
        return LADDER[idx + 1] if idx + 1 < len(LADDER) else State.FAILED

    def attempt(self, rung: State) -> Attempt:
        action = ACTIONS[rung]
        self.log.info(f"Attempting {action}...")
        try:
            outcome = self.rungs[rung]()
        except RUNG_ERRORS as e:
            attempt = Attempt(rung, False, error=str(e))
        else:
            health = self.probe()
            attempt = Attempt(rung, health.valid, outcome or {}, None if health.valid else health.reason,
                              health.to_dict())
        self.record(action, attempt.to_dict())
        if attempt.success:
            self.log.ok(f"{action} succeeded")
        else:
            self.log.warn(f"{action} failed: {attempt.error}")
        self.attempts.append(attempt)
        return attempt

    def _stamp_provenance(self, attempt: Attempt) -> None:
        doc = read_json(self.settings.data_path)
        meta = doc.get("metadata") if isinstance(doc.get("metadata"), dict) else {}
        outcome = attempt.outcome
        meta.update({
            "recovered_at": iso(self.clock()),
            "recovery_method": ACTIONS[attempt.state],
            "recovery_source": outcome.get("backup_used") or outcome.get("url") or outcome.get("source")
            or outcome.get("mode") or ACTIONS[attempt.state],
            "recovery_type": "emergency",
        })
        doc["metadata"] = meta
        write_json(self.settings.data_path, doc)

    def run(self) -> RecoveryOutcome:
        health = self.probe()
        self.record("probe", health.to_dict())
        if health.valid:
            self.log.ok(f"Data file valid ({health.locations} locations), no recovery needed")
            self._move(State.VALID)
            return RecoveryOutcome(health, list(self.path), [])

        self.log.error(f"Data file {health.severity}: {health.reason}")
        self._move(LADDER[0])
        while self.state not in TERMINAL:
            attempt = self.attempt(self.state)
            if attempt.success:
                self._stamp_provenance(attempt)
                self._move(State.RECOVERED)
            else:
                self._move(self._next_rung(self.state))

        outcome = RecoveryOutcome(health, list(self.path), list(self.attempts))
        self.record("finished", {"final_state": outcome.final_state.value, "method": outcome.method})
        return outcome


# -----------------------------
# Entry points
# -----------------------------
def _set_outputs(needed: bool, state: str, method: Optional[str]) -> None:
    gh_set_output("recovery_needed", "true" if needed else "false")
    gh_set_output("recovery_state", state)
    gh_set_output("recovery_method", method or "")


def run_check(settings: Settings, log: OpsLogger) -> int:
    health = detect(settings.data_path)
    for key, value in health.to_dict().items():
        log.info(f"{key}: {value}")
    if health.valid:
        log.ok("Data file valid")
        return 0
    log.error(f"Data file {health.severity}: {health.reason}")
    return 1


def run_single(machine: RecoveryMachine, rung: State) -> int:
    """One rung on operator request, outside the ladder."""
    attempt = machine.attempt(rung)
    _set_outputs(True, "RECOVERED" if attempt.success else "FAILED", ACTIONS[rung] if attempt.success else None)
    AuditTrail(machine.settings, COMPONENT).record(
        ACTIONS[rung], "manual recovery step", attempt.to_dict(), severity="info" if attempt.success else "error"
    )
    return 0 if attempt.success else 1


def run(settings: Settings) -> int:
    machine = RecoveryMachine(settings)
    outcome = machine.run()
    _set_outputs(outcome.needed, outcome.final_state.value, outcome.method)
    if outcome.needed:
        AuditTrail(settings, COMPONENT).record(
            "recovery", f"ladder finished in {outcome.final_state.value}", outcome.to_dict(),
            severity="warning" if outcome.success else "critical",
        )
    emit(f"{COMPONENT}.completed", {"final_state": outcome.final_state.value, "method": outcome.method},
         telemetry_dir=settings.logs_dir / "telemetry")
    if not outcome.success:
        machine.log.error("All recovery methods failed")
    return 0 if outcome.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Emergency recovery for the parking data document")
    ap.add_argument("--rules", default=None, help="path to parking_rules.yaml")
    group = ap.add_mutually_exclusive_group()
    group.add_argument("--check", action="store_true", help="probe the data file only")
    group.add_argument("--restore", metavar="FILE", help="restore a backup file, or 'latest'")
    group.add_argument("--reset", action="store_true", help="reset every location to full capacity")
    group.add_argument("--emergency", action="store_true", help="write emergency data from the config")
    args = ap.parse_args(argv)

    settings = load_settings(args.rules)
    if args.check:
        return run_check(settings, get_logger(COMPONENT, settings.logs_dir))

    if args.restore:
        machine = RecoveryMachine(settings)
        target = args.restore
        machine.rungs[State.RESTORE_BACKUP] = lambda: restore_backup.apply(machine.backups, target)
        return run_single(machine, State.RESTORE_BACKUP)
    if args.reset:
        return run_single(RecoveryMachine(settings), State.CAPACITY_RESET)
    if args.emergency:
        return run_single(RecoveryMachine(settings), State.EMERGENCY_DATA)
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
