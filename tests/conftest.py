"""
Shared fixtures: an isolated home directory and run contexts bound to it.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from code_updater.collectors import clear_version_cache
from code_updater.config import Config, Preferences
from code_updater.environment import Environment, RunContext
from code_updater.targets import get_target

IDENTIFIER = "augment.vscode-augment"


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """Clear the version cache and path overrides around every test."""
    for var in ("XDG_CONFIG_HOME", "CURSOR_PATH", "VSCODE_PATH", "ANTIGRAVITY_PATH",
                "CLAUDE_CODE_PATH", "GEMINI_CLI_PATH", "CODE_UPDATER_DEBUG"):
        monkeypatch.delenv(var, raising=False)
    clear_version_cache()
    yield
    clear_version_cache()


@pytest.fixture
def env(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return Environment(platform="linux", home=home)


@pytest.fixture
def make_ctx(env):
    """Factory for run contexts with fast, cache-free preferences."""
    def _make(**kwargs) -> RunContext:
        prefs = kwargs.pop("preferences", Preferences(cache_ttl_seconds=0))
        config = kwargs.pop("config", Config(preferences=prefs))
        return RunContext(config=config, env=env, **kwargs)
    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()


@pytest.fixture
def cursor():
    return get_target("cursor")


@pytest.fixture
def vscode():
    return get_target("vscode")


@pytest.fixture
def claude_code():
    return get_target("claude-code")


def make_entry(storage: Path, version: str, identifier: str = IDENTIFIER) -> Path:
    """Create an ``<identifier>-<version>`` package directory with a manifest."""
    entry = storage / f"{identifier}-{version}"
    entry.mkdir(parents=True)
    (entry / "package.json").write_text(json.dumps({"version": version}))
    return entry


def write_registry(path: Path, records: list) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records))
    return path


@pytest.fixture
def cursor_layout(env):
    """
    Cursor with a default profile and two additional profiles.

    Profile "A" already has an old version installed; profile "B" has none.
    A directory without a registry is not a profile.
    """
    default_storage = env.home / ".cursor" / "extensions"
    make_entry(default_storage, "0.500.0")
    write_registry(default_storage / "extensions.json", [])

    profiles = env.home / ".config" / "Cursor" / "User" / "profiles"
    make_entry(profiles / "A" / "extensions", "0.500.0")
    write_registry(profiles / "A" / "extensions.json", [
        {"identifier": {"id": IDENTIFIER}, "version": "0.500.0"},
        {"identifier": {"id": "other.extension"}, "version": "1.0.0"},
    ])
    write_registry(profiles / "B" / "extensions.json", [])
    (profiles / "not-a-profile").mkdir(parents=True)

    return {"default": default_storage, "profiles": profiles}
