"""
Report writers shared by the ops scripts.

- dated JSON report + "<prefix>-latest.json" copy under the reports dir
- Jinja2 text digests (templates live in ops/templates/)
- GitHub Actions step summary / outputs when running in CI
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ops.jsonio import ensure_parent, write_json

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def write_report(reports_dir: Path, prefix: str, report: Dict[str, Any], now: datetime, latest: bool = True) -> Path:
    path = Path(reports_dir) / f"{prefix}-{now:%Y-%m-%d}.json"
    write_json(path, report)
    if latest:
        write_json(Path(reports_dir) / f"{prefix}-latest.json", report)
    return path


def render_text(template: str, **ctx: Any) -> str:
    return _env.get_template(template).render(**ctx)


def write_text(path: Path, text: str) -> Path:
    ensure_parent(path)
    path.write_text(text, encoding="utf-8")
    return path


def gh_set_output(key: str, value: str) -> None:
    """
    Writes outputs for GitHub Actions.

    Multi-line values MUST use the heredoc format, otherwise GitHub rejects the
    output file.
    """
    out = os.environ.get("GITHUB_OUTPUT")
    if not out:
        return

    delim = "EOF_PARKIR_OUTPUT"
    with open(out, "a", encoding="utf-8") as f:
        f.write(f"{key}<<{delim}\n")
        f.write(value)
        if not value.endswith("\n"):
            f.write("\n")
        f.write(f"{delim}\n")


def write_github_summary(title: str, status: str, lines: Iterable[str], extra: Optional[str] = None) -> None:
    summary_path = os.environ.get("GITHUB_STEP_SUMMARY")
    if not summary_path:
        return

    out = [f"## {title} — {status}", ""]
    body = [f"- {ln}" for ln in lines]
    out.extend(body or ["- ✅ No findings."])
    if extra:
        out.extend(["", extra])
    with open(summary_path, "a", encoding="utf-8") as f:
        f.write("\n".join(out) + "\n")
