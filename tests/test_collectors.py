"""
Tests for version normalization and latest-version resolution (code_updater/collectors.py).
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from code_updater.collectors import (
    FALLBACK,
    GALLERY_QUERY_URL,
    PRIMARY,
    HttpResponse,
    NetworkError,
    ParseError,
    ResolutionError,
    VersionInfo,
    build_gallery_query,
    compare_versions,
    extract_gallery_version,
    max_version,
    needs_update,
    normalize,
    resolve_extension_latest,
    resolve_package_latest,
    scrape_version,
)
from code_updater.common import CommandResult
from code_updater.config import Config, ExtensionConfig, Preferences


def gallery_body(version: str) -> bytes:
    return json.dumps({
        "results": [{"extensions": [{"versions": [{"version": version}]}]}]
    }).encode()


class TestNormalize:
    """Tests for version normalization."""

    def test_strips_platform_suffix(self):
        assert normalize("0.560.0-universal") == "0.560.0"

    def test_strips_leading_v(self):
        assert normalize("v1.2.3") == "1.2.3"

    def test_pads_missing_parts(self):
        assert normalize("1.2") == "1.2.0"
        assert normalize("7") == "7.0.0"

    def test_drops_extra_parts(self):
        assert normalize("1.2.3.4") == "1.2.3"

    def test_leading_zeros(self):
        assert normalize("01.002.0003") == "1.2.3"

    def test_version_followed_by_text(self):
        """Command output like '1.0.43 (Claude Code)' is normalized."""
        assert normalize("1.0.43 (Claude Code)") == "1.0.43"

    def test_unparseable(self):
        assert normalize("bad") is None
        assert normalize("") is None
        assert normalize(None) is None
        assert normalize("unknown") is None

    @pytest.mark.parametrize("raw", ["0.560.0-universal", "v2.0", "3", "1.2.3-beta.1", "10.20.30"])
    def test_idempotent(self, raw):
        once = normalize(raw)
        assert normalize(once) == once


class TestCompareVersions:
    """Tests for version comparison."""

    def test_less_greater_equal(self):
        assert compare_versions("1.0.0", "1.0.1") == -1
        assert compare_versions("2.0.0", "1.99.99") == 1
        assert compare_versions("1.0.0", "1.0.0") == 0

    def test_numeric_not_lexicographic(self):
        assert compare_versions("0.10.0", "0.9.0") == 1

    def test_suffixes_ignored(self):
        assert compare_versions("0.576.0-universal", "0.576.0") == 0

    def test_unparseable_sorts_lowest(self):
        assert compare_versions("bad", "0.0.1") == -1
        assert compare_versions("0.0.1", None) == 1
        assert compare_versions("bad", "worse") == 0


class TestNeedsUpdate:
    """Tests for the update decision."""

    def test_older_installed(self):
        assert needs_update("0.560.0", "0.576.0") is True

    def test_same_version(self):
        assert needs_update("0.576.0", "0.576.0") is False

    def test_same_version_with_suffix(self):
        assert needs_update("0.576.0-universal", "0.576.0") is False

    def test_newer_installed(self):
        assert needs_update("1.1.0", "1.0.0") is False

    def test_not_installed(self):
        assert needs_update(None, "1.0.0") is True

    def test_unknown_installed(self):
        assert needs_update("unknown", "1.0.0") is True

    def test_unparseable_latest_never_updates(self):
        assert needs_update("1.0.0", "garbage") is False


class TestMaxVersion:
    """Tests for picking the highest version."""

    def test_ignores_unparseable(self):
        assert max_version(["1.0.0", "2.0.0", "bad"]) == "2.0.0"

    def test_keeps_raw_string(self):
        assert max_version(["0.9.0", "0.10.0-universal"]) == "0.10.0-universal"

    def test_nothing_parseable(self):
        assert max_version(["bad", ""]) is None
        assert max_version([]) is None


class TestGalleryParsing:
    """Tests for gallery request and response handling."""

    def test_query_shape(self):
        query = build_gallery_query("augment.vscode-augment")
        criteria = query["filters"][0]["criteria"][0]
        assert criteria == {"filterType": 7, "value": "augment.vscode-augment"}
        assert query["filters"][0]["pageSize"] == 1
        assert query["flags"] == 0x200

    def test_extract_version(self):
        assert extract_gallery_version(json.loads(gallery_body("0.576.0"))) == "0.576.0"

    @pytest.mark.parametrize("data", [
        {},
        {"results": []},
        {"results": [{"extensions": []}]},
        {"results": [{"extensions": [{"versions": []}]}]},
        {"results": [{"extensions": [{"versions": [{"version": ""}]}]}]},
        None,
    ])
    def test_extract_version_malformed(self, data):
        with pytest.raises(ParseError):
            extract_gallery_version(data)

    def test_scrape_prefers_json_fragment(self):
        html = 'Version 1.1.1 <script>{"version":"2.2.2"}</script>'
        assert scrape_version(html) == "2.2.2"

    def test_scrape_text_pattern(self):
        assert scrape_version("<td>Version</td> Version 3.4.5 released") == "3.4.5"

    def test_scrape_no_match(self):
        assert scrape_version("<html>nothing here</html>") is None


class TestResolveExtensionLatest:
    """Tests for extension latest-version resolution."""

    def test_primary(self, ctx):
        """Structured query wins when it answers."""
        with patch("code_updater.collectors.http_request", return_value=HttpResponse(200, gallery_body("0.576.0"))):
            info = resolve_extension_latest(ExtensionConfig(), ctx)

        assert info == VersionInfo("0.576.0", "0.576.0", PRIMARY, "gallery query")

    def test_fallback_when_structured_response_is_malformed(self, ctx):
        """Missing extensions[0] falls back to the item page."""
        def fake_request(url, method="GET", **kwargs):
            if url == GALLERY_QUERY_URL:
                return HttpResponse(200, json.dumps({"results": [{"extensions": []}]}).encode())
            return HttpResponse(200, b'<html>{"version":"9.9.9"}</html>')

        with patch("code_updater.collectors.http_request", side_effect=fake_request):
            info = resolve_extension_latest(ExtensionConfig(), ctx)

        assert info.raw == "9.9.9"
        assert info.normalized == "9.9.9"
        assert info.provenance == FALLBACK

    def test_fallback_on_network_error(self, ctx):
        responses = [NetworkError("connection refused"), HttpResponse(200, b"Version 1.2.3")]
        with patch("code_updater.collectors.http_request", side_effect=responses):
            info = resolve_extension_latest(ExtensionConfig(), ctx)
        assert info.raw == "1.2.3"
        assert info.provenance == FALLBACK

    def test_http_error_status_is_failure(self, ctx):
        responses = [HttpResponse(503, b""), HttpResponse(200, b'"version":"1.0.0"')]
        with patch("code_updater.collectors.http_request", side_effect=responses):
            assert resolve_extension_latest(ExtensionConfig(), ctx).provenance == FALLBACK

    def test_both_fail(self, ctx):
        responses = [HttpResponse(500, b""), HttpResponse(200, b"<html></html>")]
        with patch("code_updater.collectors.http_request", side_effect=responses):
            with pytest.raises(ResolutionError) as exc_info:
                resolve_extension_latest(ExtensionConfig(), ctx)
        assert "gallery query" in str(exc_info.value)
        assert "item page" in str(exc_info.value)

    def test_cached_within_ttl(self, make_ctx):
        ctx = make_ctx(config=Config(preferences=Preferences(cache_ttl_seconds=3600)))
        with patch("code_updater.collectors.http_request", return_value=HttpResponse(200, gallery_body("1.0.0"))) as mock_req:
            resolve_extension_latest(ExtensionConfig(), ctx)
            resolve_extension_latest(ExtensionConfig(), ctx)
        assert mock_req.call_count == 1

    def test_no_cache_with_zero_ttl(self, ctx):
        with patch("code_updater.collectors.http_request", return_value=HttpResponse(200, gallery_body("1.0.0"))) as mock_req:
            resolve_extension_latest(ExtensionConfig(), ctx)
            resolve_extension_latest(ExtensionConfig(), ctx)
        assert mock_req.call_count == 2


class TestResolvePackageLatest:
    """Tests for npm package latest-version resolution."""

    def test_registry(self, ctx, claude_code):
        body = json.dumps({"name": "@anthropic-ai/claude-code", "version": "1.0.50"}).encode()
        with patch("code_updater.collectors.http_request", return_value=HttpResponse(200, body)) as mock_req:
            info = resolve_package_latest(claude_code, ctx)

        assert info.raw == "1.0.50"
        assert info.provenance == PRIMARY
        assert mock_req.call_args[0][0] == "https://registry.npmjs.org/@anthropic-ai/claude-code/latest"

    def test_npm_view_fallback(self, ctx, claude_code):
        view = CommandResult(args=("npm",), returncode=0, stdout="1.0.51\n")
        with patch("code_updater.collectors.http_request", side_effect=NetworkError("offline")), \
             patch("code_updater.collectors.run_command", return_value=view) as mock_run:
            info = resolve_package_latest(claude_code, ctx)

        assert info.raw == "1.0.51"
        assert info.provenance == FALLBACK
        assert mock_run.call_args[0][0] == ["npm", "view", "@anthropic-ai/claude-code", "version"]

    def test_both_fail(self, ctx, claude_code):
        failed = CommandResult(args=("npm",), returncode=-1, error_message="Command not found: npm")
        with patch("code_updater.collectors.http_request", return_value=HttpResponse(404, b"")), \
             patch("code_updater.collectors.run_command", return_value=failed):
            with pytest.raises(ResolutionError):
                resolve_package_latest(claude_code, ctx)
