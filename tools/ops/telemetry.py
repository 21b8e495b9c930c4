from __future__ import annotations
import os, uuid, socket
from datetime import datetime, timezone
from pathlib import Path
import orjson as json

TELEMETRY_DIR = os.getenv("TELEMETRY_DIR", "data/logs/telemetry")

def emit(event_type: str, payload: dict, run_id: str | None = None, telemetry_dir: str | os.PathLike | None = None) -> str:
    """
    Appends one telemetry event (JSONL, one file per UTC day) and returns its event_id.
    event_type examples: 'fix_statistics.completed', 'emergency_recovery.recovered'
    """
    event_id = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    doc = {
        "event_id": event_id,
        "event_type": event_type,
        "ts": now.isoformat(),
        "run_id": run_id or os.getenv("GITHUB_RUN_ID") or str(uuid.uuid4()),
        "actor": os.getenv("GITHUB_ACTOR") or os.getenv("USER") or "unknown",
        "host": socket.gethostname(),
        "context": {
            "repo": os.getenv("GITHUB_REPOSITORY"),
            "sha": os.getenv("GITHUB_SHA"),
            "ref": os.getenv("GITHUB_REF"),
            "workflow": os.getenv("GITHUB_WORKFLOW"),
            "job": os.getenv("GITHUB_JOB"),
        },
        "payload": payload,
    }
    out_dir = Path(telemetry_dir or TELEMETRY_DIR)
    out_dir.mkdir(parents=True, exist_ok=True)
    with open(out_dir / f"events-{now:%Y-%m-%d}.jsonl", "ab") as f:
        f.write(json.dumps(doc, default=str))
        f.write(b"\n")
    return event_id
