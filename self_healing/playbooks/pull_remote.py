from __future__ import annotations

import subprocess
from datetime import datetime
from typing import Any, Dict

import requests

from ops.backup_manager import snapshot_copy
from ops.errors import RemoteError
from ops.jsonio import write_json
from ops.settings import Settings
from ops.structure import data_structure_errors


def _truncate(s: str, n: int = 2000) -> str:
    s = s or ""
    if len(s) <= n:
        return s
    return s[:n] + "\n...<truncated>...\n"


def git_pull(settings: Settings) -> Dict[str, Any]:
    timeout = settings.recovery.timeout_seconds
    try:
        proc = subprocess.run(
            ["git", "pull"],
            cwd=str(settings.root),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise RemoteError(f"git pull timed out after {timeout}s") from None
    except OSError as e:
        raise RemoteError(f"git pull could not start: {e}") from e
    if proc.returncode != 0:
        raise RemoteError(f"git pull failed (exit {proc.returncode}): {_truncate(proc.stderr).strip()}")
    return {"mode": "git", "stdout": _truncate(proc.stdout)}


def http_fetch(settings: Settings, now: datetime) -> Dict[str, Any]:
    url = settings.recovery.remote_url
    if not url:
        raise RemoteError("recovery.remote_url is not configured")
    try:
        resp = requests.get(url, timeout=settings.recovery.timeout_seconds)
        resp.raise_for_status()
        payload = resp.json()
    except requests.RequestException as e:
        raise RemoteError(f"fetch from {url} failed: {e}") from e
    except ValueError as e:
        raise RemoteError(f"{url} did not return JSON: {e}") from e

    errors = data_structure_errors(payload)
    if errors:
        raise RemoteError(f"remote copy is not a valid data document: {'; '.join(errors)}")

    path = settings.data_path
    kept = None
    if path.exists():
        kept = str(snapshot_copy(path, settings.backups_dir, "pre-remote", now))
    write_json(path, payload)
    return {"mode": "http", "url": url, "pre_remote_copy": kept}


def apply(settings: Settings, now: datetime) -> Dict[str, Any]:
    """
    Rung 2: fetch the last committed data document from upstream.
    Every failure (disabled, timeout, bad payload) surfaces as RemoteError.
    """
    mode = settings.recovery.remote_mode
    if mode == "none":
        raise RemoteError("remote recovery disabled (recovery.remote_mode: none)")
    result = git_pull(settings) if mode == "git" else http_fetch(settings, now)
    result["changed_files"] = [str(settings.data_path)]
    return result
