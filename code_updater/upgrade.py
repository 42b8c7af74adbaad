"""
Update orchestration.

A run detects targets, resolves the latest version once per version source,
lets the operator (or policy) pick what to update, then installs and
verifies each plan. Only resolution and download failures abort a run;
every other failure is recorded against its unit in the report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .collectors import ResolutionError, VersionInfo, needs_update
from .detection import DetectedInstance, detect_all
from .environment import RunContext
from .installer import (
    DRY_RUN,
    FAILED,
    SKIPPED,
    Artifact,
    DownloadError,
    InstallOutcome,
    UpdatePlan,
    UpdateUnit,
    artifact_directory,
    artifact_name,
    artifact_scope,
    download_artifact,
    install,
)
from .profiles import warn_registry_schema
from .selection import PromptChooser
from .strategies import strategy_for
from .targets import InstallTarget, all_targets
from .verify import VerificationOutcome, verify

logger = logging.getLogger(__name__)

# Report row statuses
UP_TO_DATE = "up-to-date"
VERIFIED = "verified"
VERIFICATION_FAILED = "verification-failed"
INSTALL_FAILED = "install-failed"
NOT_SELECTED = "skipped"
WOULD_UPDATE = "dry-run"

FAILURE_STATUSES = (INSTALL_FAILED, VERIFICATION_FAILED)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


@dataclass(frozen=True)
class UpdateCandidate:
    """
    A unit with its installed and latest versions.

    Attributes:
        unit: Target or profile
        installed_version: Installed version (None if absent)
        latest: Latest available version (None when resolution failed)
        needs_update: Whether latest is newer than installed
        error: Resolution failure detail (status checks only)
        missing: Package is not installed but can be installed
    """
    unit: UpdateUnit
    installed_version: str | None
    latest: VersionInfo | None
    needs_update: bool
    error: str = ""
    missing: bool = False

    def version_jump_description(self) -> str:
        """Human-readable version change."""
        latest = self.latest.raw if self.latest else "?"
        return f"{self.installed_version or 'not installed'} → {latest}"

    def to_dict(self) -> dict:
        return {
            "unit": self.unit.label,
            "installed_version": self.installed_version,
            "latest": self.latest.to_dict() if self.latest else None,
            "needs_update": self.needs_update,
            "error": self.error,
            "missing": self.missing,
        }


@dataclass(frozen=True)
class ReportRow:
    label: str
    status: str
    detail: str = ""


@dataclass
class RunReport:
    """
    Aggregated result of a run.

    Attributes:
        rows: One row per unit, in processing order
        retained_artifacts: Packages kept for manual installation
        fatal_error: Error that aborted the run, if any
    """
    rows: list[ReportRow] = field(default_factory=list)
    retained_artifacts: list[Path] = field(default_factory=list)
    fatal_error: str | None = None

    def add(self, label: str, status: str, detail: str = "") -> None:
        self.rows.append(ReportRow(label=label, status=status, detail=detail))

    @property
    def failures(self) -> list[ReportRow]:
        return [r for r in self.rows if r.status in FAILURE_STATUSES]

    @property
    def exit_code(self) -> int:
        if self.fatal_error:
            return EXIT_FATAL
        if self.failures:
            return EXIT_PARTIAL
        return EXIT_OK

    def summary(self) -> str:
        """Human-readable summary."""
        counts: dict[str, int] = {}
        for row in self.rows:
            counts[row.status] = counts.get(row.status, 0) + 1
        parts = [f"{status}: {count}" for status, count in counts.items()]
        return ", ".join(parts) if parts else "nothing to do"


def resolve_sources(instances: list[DetectedInstance], ctx: RunContext) -> dict[str, VersionInfo]:
    """
    Resolve the latest version once per version source.

    All editors share the extension's source; each CLI package has its own.

    Raises:
        ResolutionError: If any source cannot be resolved
    """
    latest: dict[str, VersionInfo] = {}
    for instance in instances:
        strategy = strategy_for(instance.target)
        source = strategy.version_source(instance.target, ctx)
        if source not in latest:
            latest[source] = strategy.resolve_latest(instance.target, ctx)
    return latest


def build_candidates(
    instances: list[DetectedInstance],
    latest: dict[str, VersionInfo],
    ctx: RunContext,
) -> list[UpdateCandidate]:
    """One candidate per unit: each profile of profile-aware targets, otherwise the target."""
    candidates = []
    for instance in instances:
        target = instance.target
        version = latest.get(strategy_for(target).version_source(target, ctx))
        if instance.profiles:
            units = [
                (
                    UpdateUnit(target.id, target.name, profile.profile_id),
                    instance.installed_version if profile.is_default else profile.installed_version,
                )
                for profile in instance.profiles
            ]
        else:
            units = [(UpdateUnit(target.id, target.name), instance.installed_version)]

        for unit, installed in units:
            candidates.append(UpdateCandidate(
                unit=unit,
                installed_version=installed,
                latest=version,
                needs_update=version is not None and needs_update(installed, version.raw),
                missing=instance.missing,
            ))
    return candidates


def select_candidates(pending: list[UpdateCandidate], ctx: RunContext, chooser) -> list[UpdateCandidate]:
    """
    Decide which pending candidates to update.

    Targets come from ``select_all_targets`` or the chooser. Profiles other
    than the default are added with ``select_all_profiles`` or when the
    operator confirms them. Packages that are not installed yet are only
    picked by ``select_all_targets`` together with ``install_missing``.
    """
    primary = [c for c in pending if not c.unit.is_fanout]
    extra = [c for c in pending if c.unit.is_fanout]

    if ctx.select_all_targets:
        chosen = {c.unit.target_id for c in pending if ctx.install_missing or not c.missing}
    else:
        per_target: dict[str, UpdateCandidate] = {}
        for candidate in primary + extra:
            per_target.setdefault(candidate.unit.target_id, candidate)
        picked = chooser.choose_targets(list(per_target.values())) if per_target else []
        if picked is None:
            logger.info("Selection cancelled")
            return []
        chosen = {c.unit.target_id for c in picked}

    selected = [c for c in primary if c.unit.target_id in chosen]
    extra = [c for c in extra if c.unit.target_id in chosen]
    if extra:
        if ctx.select_all_profiles:
            selected.extend(extra)
        elif not ctx.select_all_targets and chooser.confirm_profiles(extra):
            selected.extend(extra)
        else:
            logger.info(f"Leaving {len(extra)} additional profile(s) unchanged (use --all-profiles)")

    order = {id(c): i for i, c in enumerate(pending)}
    return sorted(selected, key=lambda c: order[id(c)])


def _record(
    report: RunReport,
    outcomes: list[InstallOutcome],
    verifications: list[VerificationOutcome],
    version: VersionInfo,
) -> None:
    verified_by_unit = {v.unit: v for v in verifications}
    for outcome in outcomes:
        label = outcome.unit.label
        if outcome.status == FAILED:
            report.add(label, INSTALL_FAILED, outcome.detail)
        elif outcome.status == SKIPPED:
            report.add(label, NOT_SELECTED, outcome.detail)
        elif outcome.status == DRY_RUN:
            report.add(label, WOULD_UPDATE, f"would install {version.raw}")
        else:
            verification = verified_by_unit.get(outcome.unit)
            if verification is not None and verification.verified:
                report.add(label, VERIFIED, verification.observed_version or version.raw)
            else:
                report.add(label, VERIFICATION_FAILED, verification.detail if verification else "not verified")


def apply_plan(
    plan: UpdatePlan,
    instances: list[DetectedInstance],
    ctx: RunContext,
    report: RunReport,
    artifact: Artifact | None = None,
) -> None:
    """
    Install and verify one plan, recording the results in the report.

    Args:
        plan: Units sharing one version source
        instances: Detected instances
        ctx: Run context
        report: Report receiving one row per unit
        artifact: Downloaded package (required for extension plans outside dry runs)
    """
    if any(u.is_fanout for u in plan.units):
        warn_registry_schema()

    if plan.requires_artifact and ctx.dry_run:
        extension = ctx.config.extension
        path = artifact_directory(ctx, create=False) / artifact_name(extension, plan.version.raw)
        logger.info(f"[dry-run] Would download {extension.identifier} {plan.version.raw} to {path}")
        _record(report, install(plan, path, instances, ctx), [], plan.version)
        return

    if plan.requires_artifact and artifact is None:
        raise ValueError("Extension plans need a downloaded package")

    outcomes = install(plan, artifact.path if artifact else None, instances, ctx)
    verifications = [] if ctx.dry_run else verify(outcomes, plan.version, instances, ctx)
    unverified = any(not v.verified for v in verifications)
    if artifact is not None and unverified and ctx.preferences.retain_on_verify_failure:
        artifact.retain()
        report.retained_artifacts.append(artifact.path)
    _record(report, outcomes, verifications, plan.version)


def _abort_plans(report: RunReport, plans: list[UpdatePlan], error: DownloadError) -> None:
    logger.error(error.message)
    if error.remediation:
        logger.info(error.remediation)
    for plan in plans:
        for unit in plan.units:
            report.add(unit.label, INSTALL_FAILED, "run aborted: download failed")
    report.fatal_error = error.message


def run_update(ctx: RunContext, targets: list[InstallTarget] | None = None, chooser=None) -> RunReport:
    """
    Run a complete update.

    Args:
        ctx: Run context
        targets: Targets to consider (packaged catalog when omitted)
        chooser: Object with ``choose_targets`` and ``confirm_profiles``
            (terminal prompts when omitted)

    Returns:
        RunReport; ``fatal_error`` is set when resolution or download failed
    """
    report = RunReport()
    chooser = chooser or PromptChooser()

    instances = detect_all(targets if targets is not None else all_targets(), ctx)
    if not instances:
        logger.warning("No supported tools detected")
        return report

    try:
        latest = resolve_sources(instances, ctx)
    except ResolutionError as e:
        logger.error(str(e))
        report.fatal_error = str(e)
        return report

    pending = []
    for candidate in build_candidates(instances, latest, ctx):
        if candidate.needs_update or ctx.force:
            pending.append(candidate)
        else:
            report.add(candidate.unit.label, UP_TO_DATE, candidate.installed_version or "")

    selected = select_candidates(pending, ctx, chooser)
    selected_units = {c.unit for c in selected}
    for candidate in pending:
        if candidate.unit not in selected_units:
            report.add(candidate.unit.label, NOT_SELECTED, "not installed" if candidate.missing else "not selected")

    # One plan per version source, in priority order
    groups: dict[str, list[UpdateCandidate]] = {}
    for candidate in selected:
        instance = next(i for i in instances if i.target.id == candidate.unit.target_id)
        source = strategy_for(instance.target).version_source(instance.target, ctx)
        groups.setdefault(source, []).append(candidate)

    plans = []
    for source, group in groups.items():
        target = next(i.target for i in instances if i.target.id == group[0].unit.target_id)
        plans.append(UpdatePlan(
            units=tuple(c.unit for c in group),
            version=latest[source],
            requires_artifact=strategy_for(target).requires_artifact,
        ))

    # The package is acquired before anything is installed
    artifact_plan = next((p for p in plans if p.requires_artifact), None)
    if artifact_plan is None or ctx.dry_run:
        for plan in plans:
            apply_plan(plan, instances, ctx, report)
        return report

    extension = ctx.config.extension
    try:
        path = download_artifact(extension, artifact_plan.version.raw, artifact_directory(ctx), ctx)
    except DownloadError as e:
        _abort_plans(report, plans, e)
        return report

    with artifact_scope(path) as artifact:
        for plan in plans:
            apply_plan(plan, instances, ctx, report, artifact if plan.requires_artifact else None)
    return report


def check_status(ctx: RunContext, targets: list[InstallTarget] | None = None) -> list[UpdateCandidate]:
    """
    Detect and resolve without changing anything.

    Resolution failures are attached to the affected candidates instead of
    aborting.
    """
    instances = detect_all(targets if targets is not None else all_targets(), ctx)

    latest: dict[str, VersionInfo] = {}
    errors: dict[str, str] = {}
    for instance in instances:
        strategy = strategy_for(instance.target)
        source = strategy.version_source(instance.target, ctx)
        if source in latest or source in errors:
            continue
        try:
            latest[source] = strategy.resolve_latest(instance.target, ctx)
        except ResolutionError as e:
            errors[source] = str(e)

    candidates = []
    for candidate in build_candidates(instances, latest, ctx):
        instance = next(i for i in instances if i.target.id == candidate.unit.target_id)
        source = strategy_for(instance.target).version_source(instance.target, ctx)
        if source in errors:
            candidate = UpdateCandidate(
                unit=candidate.unit,
                installed_version=candidate.installed_version,
                latest=None,
                needs_update=False,
                error=errors[source],
            )
        candidates.append(candidate)
    return candidates
