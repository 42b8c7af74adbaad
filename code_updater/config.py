"""
Configuration file parsing and management.

Supports YAML configuration files (and plain JSON files).
Merges configurations from multiple sources (project → user → system → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .common import vlog


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".code-updater.yml",                              # Project root (highest priority)
    ".code-updater.yaml",
    os.path.expanduser("~/.config/code-updater/config.yml"),  # User global
    os.path.expanduser("~/.config/code-updater/config.yaml"),
    "/etc/code-updater/config.yml",                   # System global
    "/etc/code-updater/config.yaml",
]

DEFAULT_EXTENSION_ID = "augment.vscode-augment"
DEFAULT_EXTENSION_UUID = "fc0e137d-e132-47ed-9455-c4636fa5b897"
DEFAULT_PUBLISHER_UUID = "7814b14b-491a-4e83-83ac-9222fa835050"


@dataclass(frozen=True)
class TargetConfig:
    """
    Per-target overrides.

    Attributes:
        enabled: Whether the target takes part in detection at all
        path: Explicit executable path (wins over PATH lookup and env vars)
    """
    enabled: bool = True
    path: str | None = None

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TargetConfig:
        """Create TargetConfig from dictionary."""
        return TargetConfig(
            enabled=data.get("enabled", True),
            path=data.get("path"),
        )


@dataclass(frozen=True)
class ExtensionConfig:
    """
    The managed editor extension.

    Attributes:
        identifier: Gallery identifier in ``publisher.name`` form
        uuid: Gallery extension UUID written into profile registries
        publisher_uuid: Gallery publisher UUID written into profile registries
    """
    identifier: str = DEFAULT_EXTENSION_ID
    uuid: str = DEFAULT_EXTENSION_UUID
    publisher_uuid: str = DEFAULT_PUBLISHER_UUID

    def __post_init__(self):
        if "." not in self.identifier:
            raise ValueError(
                f"Invalid extension identifier: {self.identifier}. "
                "Expected 'publisher.name'"
            )

    @property
    def publisher(self) -> str:
        return self.identifier.split(".", 1)[0]

    @property
    def name(self) -> str:
        return self.identifier.split(".", 1)[1]

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ExtensionConfig:
        """Create ExtensionConfig from dictionary."""
        return ExtensionConfig(
            identifier=data.get("identifier", DEFAULT_EXTENSION_ID),
            uuid=data.get("uuid", DEFAULT_EXTENSION_UUID),
            publisher_uuid=data.get("publisher_uuid", DEFAULT_PUBLISHER_UUID),
        )


@dataclass(frozen=True)
class Preferences:
    """
    Timeouts, retry budgets and run policy.

    Attributes:
        probe_timeout_seconds: Timeout for version/list commands during detection
        http_timeout_seconds: Timeout for metadata queries
        download_timeout_seconds: Timeout for a single artifact download attempt
        install_timeout_seconds: Timeout for an editor install command
        package_install_timeout_seconds: Timeout for a package-manager install
        download_attempts: Artifact download attempts before giving up
        download_backoff_seconds: Base delay; attempt N waits N * base
        verify_attempts: Post-install re-detection attempts
        verify_delay_seconds: Base delay between verification attempts
        max_workers: Parallel detection workers
        cache_ttl_seconds: Latest-version cache time-to-live
        retain_on_verify_failure: Keep the artifact when verification fails
        artifact_dir: Download directory (system temp dir when empty)
    """
    probe_timeout_seconds: int = 10
    http_timeout_seconds: int = 10
    download_timeout_seconds: int = 60
    install_timeout_seconds: int = 60
    package_install_timeout_seconds: int = 120
    download_attempts: int = 3
    download_backoff_seconds: float = 2.0
    verify_attempts: int = 3
    verify_delay_seconds: float = 2.0
    max_workers: int = 4
    cache_ttl_seconds: int = 3600
    retain_on_verify_failure: bool = True
    artifact_dir: str = ""

    def __post_init__(self):
        """Validate preferences after initialization."""
        for name in ("probe_timeout_seconds", "http_timeout_seconds"):
            value = getattr(self, name)
            if value < 1 or value > 60:
                raise ValueError(f"Invalid {name}: {value}. Must be between 1 and 60")

        for name in ("download_timeout_seconds", "install_timeout_seconds", "package_install_timeout_seconds"):
            value = getattr(self, name)
            if value < 1 or value > 900:
                raise ValueError(f"Invalid {name}: {value}. Must be between 1 and 900")

        for name in ("download_attempts", "verify_attempts"):
            value = getattr(self, name)
            if value < 1 or value > 10:
                raise ValueError(f"Invalid {name}: {value}. Must be between 1 and 10")

        if self.download_backoff_seconds < 0 or self.verify_delay_seconds < 0:
            raise ValueError("Retry delays must not be negative")

        if self.max_workers < 1 or self.max_workers > 16:
            raise ValueError(
                f"Invalid max_workers: {self.max_workers}. "
                "Must be between 1 and 16"
            )

        if self.cache_ttl_seconds < 0 or self.cache_ttl_seconds > 86400:
            raise ValueError(
                f"Invalid cache_ttl_seconds: {self.cache_ttl_seconds}. "
                "Must be between 0 and 86400"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        defaults = Preferences()
        return Preferences(**{
            name: data.get(name, getattr(defaults, name))
            for name in defaults.__dataclass_fields__
        })


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for the updater.

    Attributes:
        version: Config schema version
        targets: Per-target overrides keyed by target id
        extension: Managed extension
        preferences: Global preferences
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    targets: dict[str, TargetConfig] = field(default_factory=dict)
    extension: ExtensionConfig = field(default_factory=ExtensionConfig)
    preferences: Preferences = field(default_factory=Preferences)
    source: str = ""

    def __post_init__(self):
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        targets = {
            target_id: TargetConfig.from_dict(target_config or {})
            for target_id, target_config in (data.get("targets") or {}).items()
        }

        return Config(
            version=data.get("version", 1),
            targets=targets,
            extension=ExtensionConfig.from_dict(data.get("extension") or {}),
            preferences=Preferences.from_dict(data.get("preferences") or {}),
            source=source,
        )

    def get_target_config(self, target_id: str) -> TargetConfig:
        """
        Get configuration for a specific target.

        Returns:
            TargetConfig for the target, or default TargetConfig if not configured
        """
        return self.targets.get(target_id, TargetConfig())

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        merged_targets = dict(other.targets)
        merged_targets.update(self.targets)

        # Prefer this config's preference values where they differ from defaults
        defaults = Preferences()
        merged_prefs = Preferences(**{
            name: (
                getattr(self.preferences, name)
                if getattr(self.preferences, name) != getattr(defaults, name)
                else getattr(other.preferences, name)
            )
            for name in defaults.__dataclass_fields__
        })

        extension = self.extension if self.extension != ExtensionConfig() else other.extension

        return Config(
            version=self.version,
            targets=merged_targets,
            extension=extension,
            preferences=merged_prefs,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to configuration file (.yml/.yaml or .json)
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .code-updater.yml
    3. User ~/.config/code-updater/config.yml
    4. System /etc/code-updater/config.yml
    5. Default configuration

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    # First config has highest priority
    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config, known_targets: set[str] | None = None) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate
        known_targets: Target ids from the catalog (unknown ids are reported)

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    if known_targets is not None:
        for target_id in sorted(config.targets):
            if target_id not in known_targets:
                warnings.append(f"Unknown target in config: '{target_id}'")

        enabled = [t for t in known_targets if config.get_target_config(t).enabled]
        if known_targets and not enabled:
            warnings.append("All targets are disabled; nothing will be detected")

    for target_id, target_config in config.targets.items():
        if target_config.path and not os.path.exists(target_config.path):
            warnings.append(f"Target '{target_id}': path does not exist ({target_config.path})")

    return warnings
