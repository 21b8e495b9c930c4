"""
Console + JSONL logging for ops scripts.

Console lines go to stderr through rich ("[INFO] ...", "[WARN] ...", "[ERROR] ...").
When a logs directory is given, every line is also appended to
<logs>/<component>-YYYY-MM-DD.jsonl (orjson).
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console

from ops.jsonio import append_jsonl

_STYLES = {"INFO": "cyan", "WARN": "yellow", "ERROR": "bold red", "OK": "green"}

console = Console(stderr=True, highlight=False)


class OpsLogger:
    def __init__(self, component: str, logs_dir: Optional[Path] = None, out: Optional[Console] = None) -> None:
        self.component = component
        self.logs_dir = Path(logs_dir) if logs_dir else None
        self.out = out or console

    def _emit(self, level: str, msg: str, fields: Dict[str, Any]) -> None:
        self.out.print(f"[{level}] {msg}", style=_STYLES.get(level), markup=False)
        if self.logs_dir is None:
            return
        now = datetime.now(timezone.utc)
        record = {"ts": now.isoformat(), "component": self.component, "level": level, "msg": msg}
        if fields:
            record["fields"] = fields
        append_jsonl(self.logs_dir / f"{self.component}-{now:%Y-%m-%d}.jsonl", record)

    def info(self, msg: str, **fields: Any) -> None:
        self._emit("INFO", msg, fields)

    def ok(self, msg: str, **fields: Any) -> None:
        self._emit("OK", msg, fields)

    def warn(self, msg: str, **fields: Any) -> None:
        self._emit("WARN", msg, fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._emit("ERROR", msg, fields)


def get_logger(component: str, logs_dir: Optional[Path] = None) -> OpsLogger:
    return OpsLogger(component, logs_dir)
