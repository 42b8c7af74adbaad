"""
Output rendering and formatting.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TextIO

from .upgrade import (
    NOT_SELECTED,
    UP_TO_DATE,
    VERIFIED,
    WOULD_UPDATE,
    RunReport,
    UpdateCandidate,
)

# Environment options
USE_EMOJI = os.environ.get("CODE_UPDATER_EMOJI", "1") == "1"
USE_COLOR = os.environ.get("CODE_UPDATER_COLOR", "1") == "1" and "NO_COLOR" not in os.environ

# ANSI color codes
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"
RESET = "\033[0m"


def status_icon(status: str) -> str:
    """Get status icon for a report row or candidate state."""
    if not USE_EMOJI:
        return {
            VERIFIED: "✓", UP_TO_DATE: "✓", WOULD_UPDATE: "~",
            NOT_SELECTED: "-", "outdated": "↑", "not installed": "+",
        }.get(status, "x")

    return {
        VERIFIED: "✅", UP_TO_DATE: "✅", WOULD_UPDATE: "🔎",
        NOT_SELECTED: "⏭", "outdated": "⬆", "not installed": "➕",
    }.get(status, "❌")


def colorize(text: str, color: str) -> str:
    """Apply color to text (plain text if colors are disabled)."""
    if not USE_COLOR or not text:
        return text
    return f"{color}{text}{RESET}"


def _table(rows: list[tuple[str, ...]], out: TextIO) -> None:
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    for row in rows:
        print("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip(), file=out)


def render_status(candidates: list[UpdateCandidate], out: TextIO = sys.stdout) -> None:
    """Render detection/resolution results as a table."""
    if not candidates:
        print("No supported tools detected.", file=out)
        return

    rows = [("", "target", "installed", "latest", "state")]
    for c in candidates:
        if c.error:
            state = "unresolved"
        elif c.missing:
            state = "not installed"
        elif c.needs_update:
            state = "outdated"
        else:
            state = UP_TO_DATE
        rows.append((
            status_icon(state),
            c.unit.label,
            c.installed_version or "-",
            c.latest.raw if c.latest else "?",
            state,
        ))
    _table(rows, out)

    for c in candidates:
        if c.error:
            print(colorize(f"! {c.unit.label}: {c.error}", YELLOW), file=out)


def render_report(report: RunReport, out: TextIO = sys.stdout) -> None:
    """Render the per-unit outcome table, summary and recovery instructions."""
    print("", file=out)
    if report.rows:
        rows = [("", "target", "status", "detail")]
        for row in report.rows:
            rows.append((status_icon(row.status), row.label, row.status, row.detail))
        _table(rows, out)
        print("", file=out)

    color = GREEN if report.exit_code == 0 else YELLOW
    print(colorize(f"Summary: {report.summary()}", color), file=out)
    if report.fatal_error:
        print(colorize(f"✗ Run aborted: {report.fatal_error}", RED), file=out)

    render_retained(report.retained_artifacts, out)


def render_retained(paths: list[Path], out: TextIO = sys.stdout) -> None:
    """Explain how to install a retained package by hand."""
    for path in paths:
        print(colorize(f"⚠ Package kept for manual installation: {path}", YELLOW), file=out)
        print(f"  Install it with: <editor> --install-extension \"{path}\"", file=out)
        print("  or use 'Extensions: Install from VSIX...' inside the editor.", file=out)
