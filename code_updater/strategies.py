"""
Kind strategies: one object per target kind with a uniform capability set.

Editors hosting an extension and npm-installed command-line packages differ
in how they are detected, where their latest version comes from and how an
update is applied. Those differences are confined to the two strategies
below; everything else works on InstallTarget and DetectedInstance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from .collectors import VersionInfo, resolve_extension_latest, resolve_package_latest
from .common import CommandResult, run_command
from .detection import (
    NOT_INSTALLED,
    DetectedInstance,
    detect_presence,
    get_installed_version,
    get_package_version,
    package_manager_available,
)
from .profiles import ProfileState, discover_profiles, profile_version
from .targets import CLI_PACKAGE, EXTENSION_HOST, InstallTarget

if TYPE_CHECKING:
    from .environment import RunContext

logger = logging.getLogger(__name__)


class ExtensionHostStrategy:
    """Editor that installs the managed extension from a downloaded package."""

    kind = EXTENSION_HOST
    requires_artifact = True

    def version_source(self, target: InstallTarget, ctx: RunContext) -> str:
        return f"gallery:{ctx.config.extension.identifier}"

    def detect(self, target: InstallTarget, ctx: RunContext) -> DetectedInstance | None:
        presence = detect_presence(target, ctx)
        if presence is None:
            return None

        identifier = ctx.config.extension.identifier
        profiles = tuple(discover_profiles(target, ctx.env, identifier))
        if profiles:
            installed = profiles[0].installed_version
            if installed is None:
                installed = get_installed_version(target, identifier, None, presence.invocation, ctx)
        else:
            installed = get_installed_version(
                target, identifier, target.extensions_path(ctx.env), presence.invocation, ctx
            )

        return DetectedInstance(
            target=target,
            invocation=presence.invocation,
            method=presence.method,
            installed_version=installed,
            profiles=profiles,
        )

    def resolve_latest(self, target: InstallTarget, ctx: RunContext) -> VersionInfo:
        return resolve_extension_latest(ctx.config.extension, ctx)

    def install(
        self,
        instance: DetectedInstance,
        version: VersionInfo,
        artifact_path: Path | None,
        ctx: RunContext,
    ) -> CommandResult:
        if artifact_path is None:
            raise ValueError(f"{instance.target.id}: an extension package is required")
        args = instance.target.command("install", exe=instance.invocation, artifact=str(artifact_path))
        logger.debug(f"Running: {' '.join(args)}")
        return run_command(args, timeout=ctx.preferences.install_timeout_seconds)

    def observe_version(
        self,
        instance: DetectedInstance,
        profile: ProfileState | None,
        ctx: RunContext,
    ) -> str | None:
        identifier = ctx.config.extension.identifier
        if profile is not None:
            return profile_version(profile.storage_path, profile.registry_path, identifier)
        return get_installed_version(
            instance.target,
            identifier,
            instance.target.extensions_path(ctx.env),
            instance.invocation,
            ctx,
        )


class CliPackageStrategy:
    """Command-line tool installed globally through npm."""

    kind = CLI_PACKAGE
    requires_artifact = False

    def version_source(self, target: InstallTarget, ctx: RunContext) -> str:
        return f"npm:{target.package}"

    def detect(self, target: InstallTarget, ctx: RunContext) -> DetectedInstance | None:
        """Detect the package; an absent package is still reported when npm can install it."""
        presence = detect_presence(target, ctx)
        if presence is None:
            if not package_manager_available(target, ctx):
                return None
            return DetectedInstance(target=target, invocation=target.command("manager")[0], method=NOT_INSTALLED)
        return DetectedInstance(
            target=target,
            invocation=presence.invocation,
            method=presence.method,
            installed_version=get_package_version(target, ctx, presence.probe_output),
        )

    def resolve_latest(self, target: InstallTarget, ctx: RunContext) -> VersionInfo:
        return resolve_package_latest(target, ctx)

    def install(
        self,
        instance: DetectedInstance,
        version: VersionInfo,
        artifact_path: Path | None,
        ctx: RunContext,
    ) -> CommandResult:
        args = instance.target.command("install", version=version.raw)
        logger.debug(f"Running: {' '.join(args)}")
        return run_command(args, timeout=ctx.preferences.package_install_timeout_seconds)

    def observe_version(
        self,
        instance: DetectedInstance,
        profile: ProfileState | None,
        ctx: RunContext,
    ) -> str | None:
        return get_package_version(instance.target, ctx)


_STRATEGIES = {
    EXTENSION_HOST: ExtensionHostStrategy(),
    CLI_PACKAGE: CliPackageStrategy(),
}


def strategy_for(target: InstallTarget) -> ExtensionHostStrategy | CliPackageStrategy:
    """Strategy for a target's kind."""
    return _STRATEGIES[target.kind]


def resolve_latest(target: InstallTarget, ctx: RunContext) -> VersionInfo:
    """
    Latest available version for a target.

    Raises:
        ResolutionError: If both the primary and the fallback source fail
    """
    return strategy_for(target).resolve_latest(target, ctx)
