"""
JSON file helpers shared by every ops script.

Writes are atomic: payload goes to "<path>.tmp" first and is moved over the
target with os.replace, so a reader never sees a half-written document.
"""

from __future__ import annotations

import gzip
import json
import os
from pathlib import Path
from typing import Any, Union

import orjson

from ops.errors import DataIOError

PathLike = Union[str, Path]


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False) + "\n"


def read_json(path: PathLike) -> Any:
    """Load a JSON (or .json.gz) file; any failure becomes DataIOError."""
    p = Path(path)
    try:
        if p.suffix == ".gz":
            with gzip.open(p, "rt", encoding="utf-8") as f:
                return json.load(f)
        return json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise DataIOError(p, "file not found") from None
    except (OSError, EOFError) as e:
        raise DataIOError(p, f"unreadable: {e}") from e
    except ValueError as e:
        raise DataIOError(p, f"invalid JSON: {e}") from e


def write_json(path: PathLike, obj: Any) -> None:
    p = Path(path)
    tmp = p.with_name(p.name + ".tmp")
    try:
        ensure_parent(p)
        tmp.write_text(dumps(obj), encoding="utf-8")
        os.replace(tmp, p)
    except OSError as e:
        raise DataIOError(p, f"write failed: {e}") from e


def write_json_gz(path: PathLike, obj: Any) -> None:
    p = Path(path)
    tmp = p.with_name(p.name + ".tmp")
    try:
        ensure_parent(p)
        with gzip.open(tmp, "wt", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False))
        os.replace(tmp, p)
    except OSError as e:
        raise DataIOError(p, f"write failed: {e}") from e


def append_jsonl(path: PathLike, obj: Any) -> None:
    p = Path(path)
    ensure_parent(p)
    with p.open("ab") as f:
        f.write(orjson.dumps(obj, default=str))
        f.write(b"\n")
