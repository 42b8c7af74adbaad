"""
Tests for profile discovery and fanout (code_updater/profiles.py).
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import IDENTIFIER, make_entry, write_registry

from code_updater.config import ExtensionConfig
from code_updater.profiles import (
    DEFAULT_PROFILE_ID,
    ProfileState,
    build_registry_record,
    discover_profiles,
    fanout_to_profile,
    installed_entry,
    profile_version,
    read_registry,
    remove_stale_entries,
    update_registry,
    warn_registry_schema,
)


def entries_for(registry: Path, identifier: str = IDENTIFIER) -> list[dict]:
    return [r for r in json.loads(registry.read_text()) if r["identifier"]["id"] == identifier]


class TestStorageScan:
    """Tests for storage directory scanning."""

    def test_highest_version_wins(self, tmp_path):
        """Entries {1.0.0, 2.0.0, bad} resolve to 2.0.0."""
        for version in ("1.0.0", "2.0.0", "bad"):
            make_entry(tmp_path, version)

        version, path = installed_entry(tmp_path, IDENTIFIER)
        assert version == "2.0.0"
        assert path.name == f"{IDENTIFIER}-2.0.0"

    def test_raw_suffix_kept(self, tmp_path):
        make_entry(tmp_path, "0.576.0-universal")
        assert installed_entry(tmp_path, IDENTIFIER)[0] == "0.576.0-universal"

    def test_other_extensions_ignored(self, tmp_path):
        make_entry(tmp_path, "9.0.0", identifier="other.ext")
        assert installed_entry(tmp_path, IDENTIFIER) is None

    def test_files_ignored(self, tmp_path):
        (tmp_path / f"{IDENTIFIER}-1.0.0").write_text("not a directory")
        assert installed_entry(tmp_path, IDENTIFIER) is None

    def test_missing_directory(self, tmp_path):
        assert installed_entry(tmp_path / "missing", IDENTIFIER) is None

    def test_case_insensitive_prefix(self, tmp_path):
        make_entry(tmp_path, "1.0.0", identifier="Augment.vscode-augment")
        assert installed_entry(tmp_path, IDENTIFIER)[0] == "1.0.0"


class TestRegistry:
    """Tests for registry reading and rewriting."""

    def test_read_missing(self, tmp_path):
        assert read_registry(tmp_path / "extensions.json") == []

    def test_read_not_array(self, tmp_path):
        path = tmp_path / "extensions.json"
        path.write_text("{}")
        with pytest.raises(ValueError):
            read_registry(path)

    def test_record_shape(self, tmp_path):
        package_dir = tmp_path / f"{IDENTIFIER}-0.576.0"
        record = build_registry_record(ExtensionConfig(), "0.576.0", package_dir, installed_at=1700000000000)

        assert record["identifier"] == {"id": IDENTIFIER, "uuid": "fc0e137d-e132-47ed-9455-c4636fa5b897"}
        assert record["version"] == "0.576.0"
        assert record["location"] == {"$mid": 1, "path": package_dir.as_posix(), "scheme": "file"}
        assert record["relativeLocation"] == package_dir.name
        assert record["metadata"]["installedTimestamp"] == 1700000000000
        assert record["metadata"]["publisherId"] == "7814b14b-491a-4e83-83ac-9222fa835050"
        assert record["metadata"]["publisherDisplayName"] == "augment"
        assert record["metadata"]["source"] == "gallery"

    def test_update_preserves_unrelated_records(self, tmp_path):
        path = write_registry(tmp_path / "extensions.json", [
            {"identifier": {"id": "other.extension"}, "version": "1.0.0"},
            {"identifier": {"id": IDENTIFIER.upper()}, "version": "0.1.0"},
        ])
        update_registry(path, {"identifier": {"id": IDENTIFIER}, "version": "0.2.0"}, IDENTIFIER)

        records = json.loads(path.read_text())
        assert len(records) == 2
        assert records[0]["identifier"]["id"] == "other.extension"
        assert records[1]["version"] == "0.2.0"
        assert not (tmp_path / "extensions.json.tmp").exists()

    def test_profile_version_falls_back_to_registry(self, tmp_path):
        registry = write_registry(tmp_path / "extensions.json", [
            {"identifier": {"id": IDENTIFIER}, "version": "0.3.0"},
        ])
        assert profile_version(tmp_path / "extensions", registry, IDENTIFIER) == "0.3.0"

    def test_profile_version_prefers_storage(self, tmp_path):
        registry = write_registry(tmp_path / "extensions.json", [
            {"identifier": {"id": IDENTIFIER}, "version": "0.3.0"},
        ])
        make_entry(tmp_path / "extensions", "0.4.0")
        assert profile_version(tmp_path / "extensions", registry, IDENTIFIER) == "0.4.0"


class TestDiscoverProfiles:
    """Tests for profile discovery."""

    def test_default_first_then_existing_profiles(self, env, cursor, cursor_layout):
        profiles = discover_profiles(cursor, env, IDENTIFIER)

        assert [p.profile_id for p in profiles] == [DEFAULT_PROFILE_ID, "A", "B"]
        assert profiles[0].is_default
        assert profiles[0].installed_version == "0.500.0"
        assert profiles[1].installed_version == "0.500.0"
        assert profiles[2].installed_version is None
        assert profiles[1].storage_path == cursor_layout["profiles"] / "A" / "extensions"

    def test_no_profiles_dir(self, env, cursor):
        profiles = discover_profiles(cursor, env, IDENTIFIER)
        assert [p.profile_id for p in profiles] == [DEFAULT_PROFILE_ID]

    def test_not_profile_aware(self, env, vscode):
        assert discover_profiles(vscode, env, IDENTIFIER) == []

    def test_discovery_creates_nothing(self, env, cursor, cursor_layout):
        discover_profiles(cursor, env, IDENTIFIER)
        assert not (cursor_layout["profiles"] / "B" / "extensions").exists()
        assert not (cursor_layout["profiles"] / "not-a-profile" / "extensions.json").exists()


class TestFanout:
    """Tests for mirroring an installed package into profiles."""

    def test_two_profiles_end_with_one_entry_each(self, env, cursor, cursor_layout):
        """Profile A (has entry) and B (no entry) both hold exactly one record at the new version."""
        source = make_entry(cursor_layout["default"], "0.576.0")
        (source / "out").mkdir()
        (source / "out" / "extension.js").write_text("// bundle")
        extension = ExtensionConfig()

        for profile in discover_profiles(cursor, env, IDENTIFIER)[1:]:
            fanout_to_profile(profile, source, extension, "0.576.0")

        for name in ("A", "B"):
            profile_dir = cursor_layout["profiles"] / name
            records = entries_for(profile_dir / "extensions.json")
            assert len(records) == 1
            assert records[0]["version"] == "0.576.0"
            assert (profile_dir / "extensions" / f"{IDENTIFIER}-0.576.0" / "out" / "extension.js").exists()

        # Stale version removed, unrelated record kept
        a_dir = cursor_layout["profiles"] / "A"
        assert not (a_dir / "extensions" / f"{IDENTIFIER}-0.500.0").exists()
        assert entries_for(a_dir / "extensions.json", "other.extension")

    def test_dry_run_touches_nothing(self, env, cursor, cursor_layout):
        source = make_entry(cursor_layout["default"], "0.576.0")
        profile = discover_profiles(cursor, env, IDENTIFIER)[2]

        fanout_to_profile(profile, source, ExtensionConfig(), "0.576.0", dry_run=True)

        assert not profile.storage_path.exists()
        assert json.loads(profile.registry_path.read_text()) == []

    def test_malformed_registry_raises(self, tmp_path):
        source = make_entry(tmp_path / "default", "1.0.0")
        registry = tmp_path / "p" / "extensions.json"
        registry.parent.mkdir()
        registry.write_text("not json")
        profile = ProfileState("p", tmp_path / "p" / "extensions", registry)

        with pytest.raises(ValueError):
            fanout_to_profile(profile, source, ExtensionConfig(), "1.0.0")

    def test_remove_stale_entries(self, tmp_path):
        make_entry(tmp_path, "1.0.0")
        make_entry(tmp_path, "2.0.0")
        make_entry(tmp_path, "1.0.0", identifier="other.ext")

        removed = remove_stale_entries(tmp_path, IDENTIFIER)

        assert len(removed) == 2
        assert [p.name for p in tmp_path.iterdir()] == ["other.ext-1.0.0"]


class TestRegistrySchemaWarning:
    """The observed registry layout is announced once per process."""

    def test_warns_once(self):
        with patch("code_updater.profiles._schema_warned", False), \
             patch("code_updater.profiles.logger") as mock_logger:
            warn_registry_schema()
            warn_registry_schema()

        assert mock_logger.warning.call_count == 1
        assert "observed, undocumented layout" in mock_logger.warning.call_args[0][0]
