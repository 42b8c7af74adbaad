"""
Environment detection and the per-run context.

The run context is passed explicitly to detection, installation and
verification so each step can be exercised on its own (tests point
``Environment.home`` at a temporary directory).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .common import is_ci_environment, vlog
from .config import Config

PLATFORMS = ("darwin", "linux", "win32")


@dataclass(frozen=True)
class Environment:
    """
    Detected environment information.

    Attributes:
        platform: Normalized platform key ('darwin', 'linux' or 'win32')
        home: User home directory
        interactive: Whether an operator can answer prompts
        ci: Whether CI indicators are present
    """
    platform: str
    home: Path
    interactive: bool = False
    ci: bool = False

    def __str__(self) -> str:
        mode = "interactive" if self.interactive else "non-interactive"
        ci = ", ci" if self.ci else ""
        return f"{self.platform} ({mode}{ci})"

    def appdata(self) -> Path:
        """Roaming application data directory (Windows) or its equivalent."""
        if self.platform == "win32":
            return Path(os.environ.get("APPDATA") or self.home / "AppData" / "Roaming")
        if self.platform == "darwin":
            return self.home / "Library" / "Application Support"
        return Path(os.environ.get("XDG_CONFIG_HOME") or self.home / ".config")


def normalize_platform(value: str) -> str:
    """Map sys.platform values onto the catalog's platform keys."""
    if value.startswith("win") or value == "cygwin":
        return "win32"
    if value == "darwin":
        return "darwin"
    return "linux"


def detect_environment(override_platform: str | None = None, verbose: bool = False) -> Environment:
    """
    Detect platform, home directory and interactivity.

    Args:
        override_platform: Explicit platform key (mainly for tests)
        verbose: Enable verbose logging

    Raises:
        ValueError: If override value is not a known platform
    """
    if override_platform and override_platform not in PLATFORMS:
        raise ValueError(
            f"Invalid platform override: {override_platform}. "
            f"Must be one of: {', '.join(PLATFORMS)}"
        )

    platform = override_platform or normalize_platform(sys.platform)
    ci = is_ci_environment()
    interactive = sys.stdin.isatty() and sys.stdout.isatty() and not ci

    env = Environment(
        platform=platform,
        home=Path(os.path.expanduser("~")),
        interactive=interactive,
        ci=ci,
    )
    vlog(f"Environment detected: {env}", verbose)
    return env


@dataclass(frozen=True)
class RunContext:
    """
    Everything a single update run needs, passed through each call.

    Attributes:
        config: Merged configuration
        env: Detected environment
        dry_run: Simulate every mutation (no download, install, copy or write)
        force: Reinstall even when already up to date
        select_all_targets: Skip the operator and take every candidate target
        select_all_profiles: Include every discovered profile of profile-aware targets
        install_missing: With select_all_targets, also install CLI packages that are absent
        only: Restrict the run to these target ids (empty means all)
        verbose: Enable verbose logging
    """
    config: Config = field(default_factory=Config)
    env: Environment = field(default_factory=lambda: detect_environment())
    dry_run: bool = False
    force: bool = False
    select_all_targets: bool = False
    select_all_profiles: bool = False
    install_missing: bool = False
    only: tuple[str, ...] = ()
    verbose: bool = False

    @property
    def preferences(self):
        return self.config.preferences
