"""
Artifact acquisition and update installation.

An extension update downloads one package per run, installs it into the
default profile of each selected editor through the editor CLI, and then
mirrors it into the remaining selected profiles. Command-line packages are
installed through npm. Every selected unit ends with exactly one outcome.
"""

from __future__ import annotations

import logging
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .collectors import GALLERY_DOWNLOAD_URL, NetworkError, VersionInfo, http_request, normalize
from .common import format_error
from .config import ExtensionConfig
from .detection import DetectedInstance
from .environment import RunContext
from .profiles import DEFAULT_PROFILE_ID, fanout_to_profile, scan_storage
from .strategies import strategy_for

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"
DRY_RUN = "dry-run"


class InstallError(Exception):
    """
    Base exception for installation errors.

    Attributes:
        message: Human-readable error message
        retryable: Whether this error can be retried
        remediation: Suggested fix for the error
    """
    def __init__(
        self,
        message: str,
        retryable: bool = False,
        remediation: str | None = None,
    ):
        self.message = message
        self.retryable = retryable
        self.remediation = remediation
        super().__init__(message)


class DownloadError(InstallError):
    """Raised when the extension package cannot be downloaded; aborts the run."""
    pass


class FanoutError(InstallError):
    """Raised when mirroring into one profile fails; affects that profile only."""
    pass


@dataclass(frozen=True)
class UpdateUnit:
    """
    Smallest independently updatable thing: a target, or one profile of it.

    Attributes:
        target_id: Catalog id
        target_name: Display name
        profile_id: Profile of a profile-aware target (None otherwise)
    """
    target_id: str
    target_name: str
    profile_id: str | None = None

    @property
    def label(self) -> str:
        if self.profile_id is None:
            return self.target_name
        return f"{self.target_name} [{self.profile_id}]"

    @property
    def is_fanout(self) -> bool:
        return self.profile_id is not None and self.profile_id != DEFAULT_PROFILE_ID


@dataclass(frozen=True)
class UpdatePlan:
    """
    Units selected for one update, all sharing the same desired version.

    Attributes:
        units: Selected units (in report order)
        version: Desired version
        requires_artifact: Whether a downloaded package must be installed
    """
    units: tuple[UpdateUnit, ...]
    version: VersionInfo
    requires_artifact: bool = False

    def target_ids(self) -> list[str]:
        seen: list[str] = []
        for unit in self.units:
            if unit.target_id not in seen:
                seen.append(unit.target_id)
        return seen


@dataclass(frozen=True)
class InstallOutcome:
    """
    Install result for one unit.

    Attributes:
        unit: The unit
        status: SUCCEEDED, FAILED, SKIPPED or DRY_RUN
        detail: Error detail or note
        attempts: Attempts made
    """
    unit: UpdateUnit
    status: str
    detail: str = ""
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "unit": self.unit.label,
            "status": self.status,
            "detail": self.detail,
            "attempts": self.attempts,
        }


class Artifact:
    """A downloaded package owned by the current run."""

    def __init__(self, path: Path):
        self.path = path
        self.retained = False

    def retain(self) -> None:
        """Keep the file after the scope exits (manual recovery)."""
        self.retained = True


@contextmanager
def artifact_scope(path: Path) -> Iterator[Artifact]:
    """
    Scope owning a downloaded artifact.

    The file is deleted on every exit path unless ``retain()`` was called.
    """
    artifact = Artifact(path)
    try:
        yield artifact
    finally:
        if artifact.retained:
            logger.info(f"Keeping package for manual installation: {artifact.path}")
        elif artifact.path.exists():
            try:
                artifact.path.unlink()
                logger.debug(f"Removed {artifact.path}")
            except OSError as e:
                logger.warning(f"Could not remove {artifact.path}: {e}")


def artifact_directory(ctx: RunContext, create: bool = True) -> Path:
    """
    Download directory: configured artifact_dir or the system temp directory.

    Args:
        ctx: Run context
        create: Create a configured directory that does not exist yet

    Raises:
        DownloadError: If the configured directory cannot be created
    """
    if not ctx.preferences.artifact_dir:
        return Path(tempfile.gettempdir())
    path = Path(ctx.preferences.artifact_dir).expanduser()
    if create:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadError(
                f"Cannot create download directory {path}: {e}",
                remediation=format_error(e),
            ) from e
    return path


def artifact_name(extension: ExtensionConfig, version: str) -> str:
    return f"{extension.identifier}-{version}.vsix"


def download_artifact(extension: ExtensionConfig, version: str, dest_dir: Path, ctx: RunContext) -> Path:
    """
    Download the extension package for a version.

    Attempt N that fails waits N * download_backoff_seconds before the next
    one. An attempt succeeds only with a 2xx status and a non-empty body.

    Returns:
        Path of the written package

    Raises:
        DownloadError: When every attempt failed or the package cannot be written
    """
    prefs = ctx.preferences
    url = GALLERY_DOWNLOAD_URL.format(publisher=extension.publisher, name=extension.name, version=version)
    destination = dest_dir / artifact_name(extension, version)

    last_error = ""
    for attempt in range(1, prefs.download_attempts + 1):
        logger.info(f"Downloading {extension.identifier} {version} (attempt {attempt}/{prefs.download_attempts})")
        try:
            response = http_request(
                url,
                headers={"Accept": "application/octet-stream"},
                timeout=prefs.download_timeout_seconds,
            )
            if not response.ok:
                last_error = f"HTTP {response.status}"
            elif not response.body:
                last_error = "empty response body"
            else:
                try:
                    destination.write_bytes(response.body)
                except OSError as e:
                    raise DownloadError(
                        f"Cannot write {destination}: {e}",
                        remediation=format_error(e),
                    ) from e
                logger.info(f"Downloaded {len(response.body)} bytes to {destination}")
                return destination
        except NetworkError as e:
            last_error = str(e)

        logger.warning(f"Download attempt {attempt} failed: {last_error}")
        if attempt < prefs.download_attempts:
            delay = attempt * prefs.download_backoff_seconds
            logger.debug(f"Retrying after {delay:.1f}s")
            time.sleep(delay)

    raise DownloadError(
        f"Could not download {extension.identifier} {version} after "
        f"{prefs.download_attempts} attempts: {last_error}",
        retryable=True,
        remediation="Check your internet connection and re-run the update",
    )


def materialized_tree(instance: DetectedInstance, version: VersionInfo, ctx: RunContext) -> Path | None:
    """The ``<identifier>-<version>`` tree the default install produced, if present."""
    storage = instance.target.extensions_path(ctx.env)
    if storage is None:
        return None
    for raw, entry in scan_storage(storage, ctx.config.extension.identifier):
        if normalize(raw) == version.normalized:
            return entry
    return None


def _fanout_unit(
    instance: DetectedInstance,
    unit: UpdateUnit,
    source: Path,
    version: VersionInfo,
    ctx: RunContext,
) -> None:
    """
    Raises:
        FanoutError: If the profile is unknown or the copy/registry write fails
    """
    profile = instance.profile(unit.profile_id)
    if profile is None:
        raise FanoutError(f"Profile {unit.profile_id} was not discovered")
    try:
        fanout_to_profile(profile, source, ctx.config.extension, version.raw, dry_run=ctx.dry_run)
    except (OSError, ValueError) as e:
        raise FanoutError(
            f"{unit.label}: {format_error(e, ctx.verbose)}",
            remediation=f"Install manually into profile {unit.profile_id}",
        ) from e


def _install_target(
    instance: DetectedInstance,
    units: list[UpdateUnit],
    plan: UpdatePlan,
    artifact_path: Path | None,
    ctx: RunContext,
) -> list[InstallOutcome]:
    strategy = strategy_for(instance.target)
    primary = [u for u in units if not u.is_fanout]
    fanout = [u for u in units if u.is_fanout]
    success_status = DRY_RUN if ctx.dry_run else SUCCEEDED

    source = None if ctx.dry_run else materialized_tree(instance, plan.version, ctx)
    outcomes: list[InstallOutcome] = []

    if primary or source is None:
        if ctx.dry_run:
            args = instance.target.command(
                "install",
                exe=instance.invocation,
                artifact=str(artifact_path or ""),
                version=plan.version.raw,
            )
            logger.info(f"[dry-run] Would run: {' '.join(args)}")
        else:
            result = strategy.install(instance, plan.version, artifact_path, ctx)
            if not result.ok:
                detail = result.error_message or "install command failed"
                logger.error(f"{instance.target.name}: install failed: {detail}")
                return [InstallOutcome(unit=u, status=FAILED, detail=detail) for u in units]
            logger.info(f"{instance.target.name}: installed {plan.version.raw}")
        outcomes.extend(InstallOutcome(unit=u, status=success_status) for u in primary)

    if not fanout:
        return outcomes

    if ctx.dry_run:
        source = instance.target.extensions_path(ctx.env) / f"{ctx.config.extension.identifier}-{plan.version.raw}"
    else:
        source = materialized_tree(instance, plan.version, ctx)
    if source is None:
        detail = "installed package not found in default extension storage"
        logger.error(f"{instance.target.name}: {detail}")
        return outcomes + [InstallOutcome(unit=u, status=FAILED, detail=detail) for u in fanout]

    for unit in fanout:
        try:
            _fanout_unit(instance, unit, source, plan.version, ctx)
            outcomes.append(InstallOutcome(unit=unit, status=success_status))
        except FanoutError as e:
            logger.error(str(e))
            outcomes.append(InstallOutcome(unit=unit, status=FAILED, detail=e.message))
    return outcomes


def install(
    plan: UpdatePlan,
    artifact_path: Path | None,
    instances: list[DetectedInstance],
    ctx: RunContext,
) -> list[InstallOutcome]:
    """
    Apply a plan to the detected instances.

    Targets are processed sequentially. A failed default install marks every
    selected unit of that target failed without attempting fanout; a failed
    profile only fails that profile.

    Returns:
        One outcome per unit in the plan
    """
    by_target = {i.target.id: i for i in instances}
    outcomes: list[InstallOutcome] = []

    for target_id in plan.target_ids():
        units = [u for u in plan.units if u.target_id == target_id]
        instance = by_target.get(target_id)
        if instance is None:
            outcomes.extend(InstallOutcome(unit=u, status=SKIPPED, detail="target not detected") for u in units)
            continue
        outcomes.extend(_install_target(instance, units, plan, artifact_path, ctx))

    return outcomes
