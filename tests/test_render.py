"""
Tests for output rendering (code_updater/render.py).
"""

import io
from pathlib import Path
from unittest.mock import patch

import pytest

from code_updater.collectors import VersionInfo
from code_updater.installer import UpdateUnit
from code_updater.render import render_report, render_status, status_icon
from code_updater.upgrade import INSTALL_FAILED, UP_TO_DATE, VERIFIED, RunReport, UpdateCandidate


@pytest.fixture(autouse=True)
def plain_output():
    with patch("code_updater.render.USE_COLOR", False), patch("code_updater.render.USE_EMOJI", False):
        yield


def candidate(name, installed, latest, needs, error="", profile=None):
    return UpdateCandidate(
        unit=UpdateUnit(name.lower(), name, profile),
        installed_version=installed,
        latest=VersionInfo.from_raw(latest) if latest else None,
        needs_update=needs,
        error=error,
    )


class TestStatusIcon:
    def test_plain_icons(self):
        assert status_icon(VERIFIED) == "✓"
        assert status_icon("outdated") == "↑"
        assert status_icon(INSTALL_FAILED) == "x"


class TestRenderStatus:
    """Tests for the status table."""

    def test_table(self):
        out = io.StringIO()
        render_status([
            candidate("Cursor", "0.500.0", "0.576.0", True, profile="default"),
            candidate("Gemini", "0.1.5", "0.1.5", False),
        ], out)

        lines = out.getvalue().splitlines()
        assert lines[0].split() == ["target", "installed", "latest", "state"]
        assert lines[1].split() == ["↑", "Cursor", "[default]", "0.500.0", "0.576.0", "outdated"]
        assert lines[2].split() == ["✓", "Gemini", "0.1.5", "0.1.5", UP_TO_DATE]

    def test_unresolved_shows_error(self):
        out = io.StringIO()
        render_status([candidate("Claude", "1.0.40", None, False, error="npm registry unreachable")], out)
        text = out.getvalue()
        assert "unresolved" in text
        assert "! Claude: npm registry unreachable" in text

    def test_missing_package(self):
        missing = UpdateCandidate(
            unit=UpdateUnit("claude-code", "Claude Code"),
            installed_version=None,
            latest=VersionInfo.from_raw("1.0.50"),
            needs_update=True,
            missing=True,
        )
        out = io.StringIO()
        render_status([missing], out)
        assert out.getvalue().splitlines()[1].split() == ["+", "Claude", "Code", "-", "1.0.50", "not", "installed"]

    def test_empty(self):
        out = io.StringIO()
        render_status([], out)
        assert out.getvalue() == "No supported tools detected.\n"


class TestRenderReport:
    """Tests for the run report."""

    def test_rows_and_summary(self):
        report = RunReport()
        report.add("Cursor [default]", VERIFIED)
        report.add("Cursor [B]", INSTALL_FAILED, "registry locked")
        out = io.StringIO()
        render_report(report, out)

        text = out.getvalue()
        assert "registry locked" in text
        assert "Summary: verified: 1, install-failed: 1" in text

    def test_fatal_error(self):
        report = RunReport(fatal_error="gallery unreachable")
        out = io.StringIO()
        render_report(report, out)
        assert "Summary: nothing to do" in out.getvalue()
        assert "Run aborted: gallery unreachable" in out.getvalue()

    def test_retained_instructions(self):
        path = Path("/tmp/augment.vscode-augment-0.576.0.vsix")
        out = io.StringIO()
        render_report(RunReport(retained_artifacts=[path]), out)
        text = out.getvalue()
        assert f"Package kept for manual installation: {path}" in text
        assert f'--install-extension "{path}"' in text
