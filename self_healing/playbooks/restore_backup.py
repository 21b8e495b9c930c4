from __future__ import annotations

from typing import Any, Dict

from ops.backup_manager import BackupManager


def apply(backups: BackupManager, target: str = "latest") -> Dict[str, Any]:
    """
    Rung 1: put the newest (or a named) backup back in place.
    Raises RestoreError when no usable backup exists.
    """
    if target == "latest":
        result = backups.restore_latest()
    else:
        result = backups.restore_backup(target)
    result["changed_files"] = [str(backups.data_file)]
    return result
