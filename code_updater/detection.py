"""
Target detection and installed-version lookup.

Every target is probed with the strategies its catalog entry declares, in
order, until one succeeds. A failing target is logged and skipped; it never
aborts detection of the others.
"""

from __future__ import annotations

import json
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .common import run_command
from .profiles import ProfileState, installed_entry
from .targets import COMMAND_PROBE, FILESYSTEM_MARKER, KNOWN_PATH, PACKAGE_LIST, InstallTarget

if TYPE_CHECKING:
    from pathlib import Path

    from .environment import RunContext

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"

# Method of a package that is absent but installable through its package manager
NOT_INSTALLED = "not-installed"

VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


class DetectionError(Exception):
    """Raised when detecting a single target fails; the target is treated as absent."""
    pass


@dataclass(frozen=True)
class Presence:
    """Result of the first successful detection strategy."""
    invocation: str
    method: str
    probe_output: str = ""


@dataclass(frozen=True)
class DetectedInstance:
    """
    A target found on this machine.

    Attributes:
        target: Catalog entry
        invocation: Executable used to drive the target
        method: Detection strategy that succeeded
        installed_version: Version on the default install surface; None when
            absent, UNKNOWN_VERSION when present but unversioned
        profiles: Profile states for profile-aware targets (default first)
    """
    target: InstallTarget
    invocation: str
    method: str
    installed_version: str | None = None
    profiles: tuple[ProfileState, ...] = field(default_factory=tuple)

    @property
    def target_id(self) -> str:
        return self.target.id

    @property
    def missing(self) -> bool:
        return self.method == NOT_INSTALLED

    def profile(self, profile_id: str) -> ProfileState | None:
        return next((p for p in self.profiles if p.profile_id == profile_id), None)

    def to_dict(self) -> dict:
        return {
            "target": self.target.id,
            "invocation": self.invocation,
            "method": self.method,
            "installed_version": self.installed_version,
            "profiles": [p.to_dict() for p in self.profiles],
        }


def resolve_executable(target: InstallTarget, ctx: RunContext) -> str:
    """Executable for a target: configured path, then environment variable, then PATH name."""
    configured = ctx.config.get_target_config(target.id).path
    if configured:
        return configured
    if target.env_var and os.environ.get(target.env_var):
        return os.environ[target.env_var]
    return target.executable


def detect_presence(target: InstallTarget, ctx: RunContext) -> Presence | None:
    """
    Try the target's detection strategies in declared order.

    Returns:
        Presence for the first strategy that succeeds, or None if the target is absent
    """
    executable = resolve_executable(target, ctx)
    timeout = ctx.preferences.probe_timeout_seconds

    for method in target.detection:
        if method == COMMAND_PROBE:
            result = run_command(target.command("version", exe=executable), timeout=timeout)
            if result.ok:
                return Presence(invocation=executable, method=method, probe_output=result.stdout)
            logger.debug(f"{target.id}: command probe failed: {result.error_message}")

        elif method == KNOWN_PATH:
            path = target.known_path(ctx.env)
            if path is not None and path.exists():
                return Presence(invocation=str(path), method=method)

        elif method == FILESYSTEM_MARKER:
            storage = target.extensions_path(ctx.env)
            if storage is not None and storage.is_dir():
                return Presence(invocation=executable, method=method)

        elif method == PACKAGE_LIST:
            version = listed_package_version(target, timeout)
            if version:
                return Presence(invocation=target.command("list")[0], method=method, probe_output=version)

    return None


def get_installed_version(
    target: InstallTarget,
    identifier: str,
    storage_dir: Path | None,
    invocation: str,
    ctx: RunContext,
) -> str | None:
    """
    Installed version of an extension inside an editor.

    Storage entries named ``<identifier>-<version>`` are scanned first and the
    highest parseable version wins. Otherwise the editor's list command is
    consulted. Editors whose list output carries no versions can only confirm
    presence, reported as UNKNOWN_VERSION.

    Returns:
        Raw version, UNKNOWN_VERSION, or None if the extension is not installed
    """
    if storage_dir is not None:
        entry = installed_entry(storage_dir, identifier)
        if entry:
            return entry[0]

    if not target.has_command("list"):
        return None

    result = run_command(
        target.command("list", exe=invocation),
        timeout=ctx.preferences.probe_timeout_seconds,
    )
    if not result.ok:
        logger.debug(f"{target.id}: list command failed: {result.error_message}")
        return None

    pattern = target.version_regex(identifier)
    if pattern is not None:
        match = pattern.search(result.stdout)
        return match.group(1) if match else None

    listed = any(line.strip().lower() == identifier.lower() for line in result.stdout.splitlines())
    if not listed:
        return None
    if storage_dir is not None:
        entry = installed_entry(storage_dir, identifier)
        if entry:
            return entry[0]
    return UNKNOWN_VERSION


def listed_package_version(target: InstallTarget, timeout: float) -> str | None:
    """Version reported for the package by ``npm list --json``, if any."""
    if not target.has_command("list"):
        return None

    # npm exits non-zero for missing packages but still prints JSON
    result = run_command(target.command("list"), timeout=timeout)
    if not result.stdout.strip():
        return None
    try:
        data = json.loads(result.stdout)
        return data.get("dependencies", {}).get(target.package, {}).get("version") or None
    except (ValueError, AttributeError) as e:
        logger.debug(f"{target.id}: npm list JSON unreadable: {e}")
        return None


def package_manager_available(target: InstallTarget, ctx: RunContext) -> bool:
    """Whether the package manager that installs the target can be run."""
    if not target.has_command("manager"):
        return False
    result = run_command(target.command("manager"), timeout=ctx.preferences.probe_timeout_seconds)
    if not result.ok:
        logger.debug(f"{target.id}: package manager unavailable: {result.error_message}")
    return result.ok


def get_package_version(target: InstallTarget, ctx: RunContext, probe_output: str = "") -> str | None:
    """
    Globally installed version of an npm package.

    Reads ``npm list --json`` first, then the plain listing, then the
    version probe output.
    """
    timeout = ctx.preferences.probe_timeout_seconds

    version = listed_package_version(target, timeout)
    if version:
        return version

    pattern = target.version_regex()
    if pattern is not None and target.has_command("list_plain"):
        result = run_command(target.command("list_plain"), timeout=timeout)
        match = pattern.search(result.stdout)
        if match:
            return match.group(1)

    match = VERSION_RE.search(probe_output)
    return match.group(1) if match else None


def detect_target(target: InstallTarget, ctx: RunContext) -> DetectedInstance | None:
    """
    Detect a single target through its kind strategy.

    Raises:
        DetectionError: If anything goes wrong while probing the target
    """
    from .strategies import strategy_for

    try:
        return strategy_for(target).detect(target, ctx)
    except DetectionError:
        raise
    except Exception as e:
        raise DetectionError(f"{target.id}: {e}") from e


def detect_all(targets: list[InstallTarget], ctx: RunContext) -> list[DetectedInstance]:
    """
    Detect all enabled targets in parallel.

    Targets disabled in configuration, or excluded by ``ctx.only``, are not
    probed. Per-target failures are logged and skipped.

    Returns:
        Detected instances ordered by target priority
    """
    selected = [t for t in targets if ctx.config.get_target_config(t.id).enabled]
    if ctx.only:
        wanted = {i.lower() for i in ctx.only}
        selected = [t for t in selected if t.id.lower() in wanted]
    if not selected:
        return []

    instances: list[DetectedInstance] = []
    workers = min(ctx.preferences.max_workers, len(selected))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(detect_target, t, ctx): t for t in selected}
        for future in as_completed(futures):
            target = futures[future]
            try:
                instance = future.result()
            except DetectionError as e:
                logger.warning(f"Skipping {target.name}: {e}")
                continue
            if instance is None:
                logger.debug(f"{target.id}: not found")
                continue
            if instance.missing:
                logger.info(f"{target.name} is not installed (installable through {instance.invocation})")
                instances.append(instance)
                continue
            logger.info(
                f"Found {target.name} via {instance.method} "
                f"(installed: {instance.installed_version or 'none'})"
            )
            instances.append(instance)

    instances.sort(key=lambda i: (i.target.priority, i.target.id))
    return instances
