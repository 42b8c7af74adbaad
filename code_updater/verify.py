"""
Post-install verification.

Installers may finish writing files after the command returns, so each unit
is re-observed a bounded number of times with a growing delay.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .collectors import VersionInfo, normalize
from .detection import DetectedInstance
from .environment import RunContext
from .installer import InstallOutcome, UpdateUnit
from .strategies import strategy_for

logger = logging.getLogger(__name__)


class VerificationError(Exception):
    """Raised when a unit never reports the expected version."""

    def __init__(self, message: str, observed_version: str | None = None, attempts: int = 0):
        self.observed_version = observed_version
        self.attempts = attempts
        super().__init__(message)


@dataclass(frozen=True)
class VerificationOutcome:
    """
    Verification result for one unit.

    Attributes:
        unit: The unit
        verified: Whether the expected version was observed
        observed_version: Last observed version
        attempts: Observations made
        detail: Failure detail
    """
    unit: UpdateUnit
    verified: bool
    observed_version: str | None = None
    attempts: int = 0
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "unit": self.unit.label,
            "verified": self.verified,
            "observed_version": self.observed_version,
            "attempts": self.attempts,
            "detail": self.detail,
        }


def verify_unit(
    unit: UpdateUnit,
    expected_version: VersionInfo,
    instance: DetectedInstance,
    ctx: RunContext,
) -> VerificationOutcome:
    """
    Re-observe a unit until it reports the expected version.

    Raises:
        VerificationError: When the attempts are exhausted
    """
    strategy = strategy_for(instance.target)
    profile = instance.profile(unit.profile_id) if unit.profile_id else None
    attempts = ctx.preferences.verify_attempts

    observed = None
    for attempt in range(1, attempts + 1):
        time.sleep(attempt * ctx.preferences.verify_delay_seconds)
        observed = strategy.observe_version(instance, profile, ctx)
        if observed is not None and normalize(observed) == expected_version.normalized:
            logger.info(f"{unit.label}: verified {observed} (attempt {attempt})")
            return VerificationOutcome(unit=unit, verified=True, observed_version=observed, attempts=attempt)
        logger.debug(f"{unit.label}: observed {observed or 'nothing'}, expected {expected_version.raw}")

    raise VerificationError(
        f"{unit.label}: expected {expected_version.raw}, found {observed or 'nothing'}",
        observed_version=observed,
        attempts=attempts,
    )


def verify(
    outcomes: list[InstallOutcome],
    expected_version: VersionInfo,
    instances: list[DetectedInstance],
    ctx: RunContext,
) -> list[VerificationOutcome]:
    """
    Verify every unit whose install succeeded.

    Returns:
        One VerificationOutcome per succeeded install outcome
    """
    by_target = {i.target.id: i for i in instances}
    results = []
    for outcome in outcomes:
        if not outcome.succeeded:
            continue
        instance = by_target[outcome.unit.target_id]
        try:
            results.append(verify_unit(outcome.unit, expected_version, instance, ctx))
        except VerificationError as e:
            logger.error(f"Verification failed: {e}")
            results.append(VerificationOutcome(
                unit=outcome.unit,
                verified=False,
                observed_version=e.observed_version,
                attempts=e.attempts,
                detail=str(e),
            ))
    return results
