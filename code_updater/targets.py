"""
Install target registry.

Targets are loaded once from the packaged ``catalog/*.json`` files. Each
file describes one install surface: an editor that hosts extensions, or a
command-line tool installed through npm. Host differences (paths, command
templates, output patterns) live in the catalog, not in code.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .environment import Environment

logger = logging.getLogger(__name__)

EXTENSION_HOST = "extension-host"
CLI_PACKAGE = "cli-package"
KINDS = (EXTENSION_HOST, CLI_PACKAGE)

COMMAND_PROBE = "command-probe"
KNOWN_PATH = "known-path"
FILESYSTEM_MARKER = "filesystem-marker"
PACKAGE_LIST = "package-list"
DETECTION_METHODS = (COMMAND_PROBE, KNOWN_PATH, FILESYSTEM_MARKER, PACKAGE_LIST)

CATALOG_DIR = Path(__file__).parent / "catalog"


def expand_path(template: str, env: Environment) -> Path:
    """Expand ``{home}`` and ``{appdata}`` placeholders for the given environment."""
    return Path(template.format(home=str(env.home), appdata=str(env.appdata())))


@dataclass(frozen=True)
class InstallTarget:
    """
    Static descriptor of a supported install surface.

    Attributes:
        id: Stable identifier (catalog file name)
        name: Display name
        kind: EXTENSION_HOST or CLI_PACKAGE
        priority: Lower is preferred; detection results are ordered by it
        detection: Detection strategies, tried in order
        commands: Command templates (``{exe}``, ``{artifact}``, ``{package}``, ``{version}``)
        executable: Executable name looked up on PATH
        env_var: Environment variable overriding the executable path
        profile_aware: Host keeps independent extension sets per profile
        known_paths: Fixed install path per platform
        extensions_dir: Default extension storage directory template
        profiles_dir: Directory holding additional profiles (profile-aware hosts)
        list_pattern: Regex extracting a version from list output; empty when
            the list command does not report versions
        package: npm package name (CLI packages)
        description: One-line description
    """
    id: str
    name: str
    kind: str
    priority: int
    detection: tuple[str, ...]
    commands: dict[str, tuple[str, ...]]
    executable: str
    env_var: str = ""
    profile_aware: bool = False
    known_paths: dict[str, str] = field(default_factory=dict)
    extensions_dir: str = ""
    profiles_dir: str = ""
    list_pattern: str = ""
    package: str = ""
    description: str = ""

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Target '{self.id}': invalid kind {self.kind!r}")
        unknown = [m for m in self.detection if m not in DETECTION_METHODS]
        if unknown:
            raise ValueError(f"Target '{self.id}': unknown detection methods {unknown}")
        if "version" not in self.commands or "install" not in self.commands:
            raise ValueError(f"Target '{self.id}': 'version' and 'install' commands are required")
        if self.profile_aware and self.kind != EXTENSION_HOST:
            raise ValueError(f"Target '{self.id}': only extension hosts can be profile aware")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstallTarget:
        """Create from catalog JSON data."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            kind=data.get("kind", ""),
            priority=int(data.get("priority", 100)),
            detection=tuple(data.get("detection", (COMMAND_PROBE,))),
            commands={k: tuple(v) for k, v in data.get("commands", {}).items()},
            executable=data.get("executable", data["id"]),
            env_var=data.get("env_var", ""),
            profile_aware=bool(data.get("profile_aware", False)),
            known_paths=dict(data.get("known_paths", {})),
            extensions_dir=data.get("extensions_dir", ""),
            profiles_dir=data.get("profiles_dir", ""),
            list_pattern=data.get("list_pattern", ""),
            package=data.get("package", ""),
            description=data.get("description", ""),
        )

    @property
    def is_extension_host(self) -> bool:
        return self.kind == EXTENSION_HOST

    def command(self, name: str, **values: str) -> list[str]:
        """
        Render a command template.

        Args:
            name: Template name ("version", "list", "install", ...)
            **values: Placeholder values; ``package`` defaults to the target's package

        Raises:
            KeyError: If the target has no such command
        """
        values.setdefault("package", self.package)
        return [part.format(**values) for part in self.commands[name]]

    def has_command(self, name: str) -> bool:
        return name in self.commands

    def known_path(self, env: Environment) -> Path | None:
        template = self.known_paths.get(env.platform)
        return expand_path(template, env) if template else None

    def extensions_path(self, env: Environment) -> Path | None:
        return expand_path(self.extensions_dir, env) if self.extensions_dir else None

    def profiles_path(self, env: Environment) -> Path | None:
        if not self.profile_aware or not self.profiles_dir:
            return None
        return expand_path(self.profiles_dir, env)

    def version_regex(self, identifier: str = "") -> re.Pattern[str] | None:
        """Compile the list-output pattern for an identifier (None if unsupported)."""
        if not self.list_pattern:
            return None
        pattern = self.list_pattern.replace("{identifier}", re.escape(identifier))
        pattern = pattern.replace("{package}", re.escape(self.package))
        return re.compile(pattern, re.IGNORECASE)


class TargetCatalog:
    """Loads and serves targets from the catalog directory."""

    def __init__(self, catalog_dir: str | Path | None = None):
        self.catalog_dir = Path(catalog_dir) if catalog_dir else CATALOG_DIR
        self._targets: dict[str, InstallTarget] = {}
        self._load_catalog()

    def _load_catalog(self) -> None:
        """Load all catalog/*.json files, skipping malformed ones."""
        if not self.catalog_dir.exists():
            logger.warning(f"Catalog directory not found: {self.catalog_dir}")
            return

        for json_file in sorted(self.catalog_dir.glob("*.json")):
            try:
                with open(json_file, "r", encoding="utf-8") as f:
                    target = InstallTarget.from_dict(json.load(f))
                self._targets[target.id] = target
                logger.debug(f"Loaded catalog entry: {target.id}")
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Failed to load {json_file}: {e}")

        logger.debug(f"Loaded {len(self._targets)} catalog entries")

    def get(self, target_id: str) -> InstallTarget | None:
        return self._targets.get(target_id)

    def all_targets(self) -> list[InstallTarget]:
        """All targets ordered by priority."""
        return sorted(self._targets.values(), key=lambda t: (t.priority, t.id))

    def ids(self) -> set[str]:
        return set(self._targets)


_catalog: TargetCatalog | None = None


def default_catalog() -> TargetCatalog:
    """The packaged catalog, loaded once per process."""
    global _catalog
    if _catalog is None:
        _catalog = TargetCatalog()
    return _catalog


def load_targets(catalog_dir: str | Path | None = None) -> list[InstallTarget]:
    """Load a catalog directory (packaged catalog when omitted), ordered by priority."""
    if catalog_dir is None:
        return default_catalog().all_targets()
    return TargetCatalog(catalog_dir).all_targets()


def all_targets() -> list[InstallTarget]:
    return default_catalog().all_targets()


def get_target(target_id: str) -> InstallTarget | None:
    return default_catalog().get(target_id)


def filter_targets(ids: list[str] | tuple[str, ...], targets: list[InstallTarget] | None = None) -> list[InstallTarget]:
    """
    Filter targets by id list.

    Args:
        ids: Target ids (case-insensitive)
        targets: Targets to filter (defaults to the packaged catalog)

    Returns:
        Matching targets in priority order
    """
    wanted = {i.lower() for i in ids}
    return [t for t in (targets if targets is not None else all_targets()) if t.id.lower() in wanted]
