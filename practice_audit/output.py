"""Output rendering."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from practice_audit import __version__
from practice_audit.engine import Report
from practice_audit.rules.base import Finding

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

_SEVERITY_COLORS = {"error": "red", "warning": "yellow"}


def exit_code(report: Report) -> int:
    """Return 1 when any error-severity finding is present, else 0."""
    return EXIT_FINDINGS if report.error_count else EXIT_OK


def format_report(report: Report, mode: str, *, timestamp: bool = False) -> str:
    """Render a frozen report as ``text`` or ``json``."""
    if mode == "text":
        return render_text(report)
    if mode == "json":
        return render_json(report, timestamp=timestamp)
    raise ValueError(f"Unknown output format '{mode}'. Expected one of: json, text")


def render_text(report: Report) -> str:
    """Render findings grouped by file, ending with the count line."""
    lines: list[str] = []
    current_path: str | None = None
    for finding in report.findings:
        if finding.path != current_path:
            if current_path is not None:
                lines.append("")
            lines.append(click.style(finding.path, bold=True))
            current_path = finding.path
        severity = click.style(finding.severity, fg=_SEVERITY_COLORS[finding.severity])
        lines.append(f"  {finding.line}: {severity} [{finding.rule_id}] {finding.message}")
        lines.append(f"     fix: {finding.remediation}")

    if lines:
        lines.append("")
    lines.append(f"Scanned {report.files_scanned} files with {len(report.rule_ids)} rules.")
    lines.append(f"{report.error_count} errors, {report.warning_count} warnings")
    if report.error_count:
        lines.append(
            click.style(
                f"Exit status {EXIT_FINDINGS}: error-severity findings present.",
                fg="red",
                bold=True,
            )
        )
    else:
        lines.append(
            click.style(
                f"Exit status {EXIT_OK}: no error-severity findings "
                "(warnings do not fail the run).",
                fg="green",
                bold=True,
            )
        )
    return "\n".join(lines)


def render_json(report: Report, *, timestamp: bool = False) -> str:
    """Render stable JSON output for CI and automation."""
    return json.dumps(build_json_payload(report, timestamp=timestamp), sort_keys=True)


def build_json_payload(report: Report, *, timestamp: bool = False) -> dict[str, Any]:
    """Build the machine-readable record for a report."""
    meta: dict[str, Any] = {
        "files_scanned": report.files_scanned,
        "rule_ids": list(report.rule_ids),
        "version": __version__,
    }
    if timestamp:
        meta["generated_at"] = (
            datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        )
    return {
        "findings": [_serialize_finding(item) for item in report.findings],
        "error_count": report.error_count,
        "warning_count": report.warning_count,
        "meta": meta,
    }


def write_report(path: Path, rendered: str) -> None:
    """Atomically write rendered output, replacing any previous report."""
    path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(handle, "w", encoding="utf-8") as file_obj:
            file_obj.write(rendered)
            if not rendered.endswith("\n"):
                file_obj.write("\n")
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _serialize_finding(finding: Finding) -> dict[str, Any]:
    return {
        "rule_id": finding.rule_id,
        "file": finding.path,
        "line": finding.line,
        "severity": finding.severity,
        "message": finding.message,
    }
