"""
code_updater - keep an editor extension and AI coding CLIs up to date.

Detects installed editors (with their user profiles) and npm-installed
command-line tools, resolves the latest published versions and applies
verified updates.
"""

__version__ = "1.0.0"

from .collectors import (  # noqa: E402
    CollectionError,
    NetworkError,
    ParseError,
    ResolutionError,
    VersionInfo,
    clear_version_cache,
    compare_versions,
    needs_update,
    normalize,
)
from .config import Config, ExtensionConfig, Preferences, TargetConfig, load_config  # noqa: E402
from .detection import DetectedInstance, DetectionError, detect_all, get_installed_version  # noqa: E402
from .environment import Environment, RunContext, detect_environment  # noqa: E402
from .installer import (  # noqa: E402
    DownloadError,
    FanoutError,
    InstallError,
    InstallOutcome,
    UpdatePlan,
    UpdateUnit,
    artifact_scope,
    download_artifact,
    install,
)
from .profiles import ProfileState, discover_profiles  # noqa: E402
from .strategies import CliPackageStrategy, ExtensionHostStrategy, resolve_latest, strategy_for  # noqa: E402
from .targets import InstallTarget, all_targets, filter_targets, get_target, load_targets  # noqa: E402
from .upgrade import RunReport, UpdateCandidate, check_status, run_update  # noqa: E402
from .verify import VerificationError, VerificationOutcome, verify  # noqa: E402

__all__ = [
    "__version__",
    # Versions
    "CollectionError",
    "NetworkError",
    "ParseError",
    "ResolutionError",
    "VersionInfo",
    "clear_version_cache",
    "compare_versions",
    "needs_update",
    "normalize",
    "resolve_latest",
    # Configuration
    "Config",
    "ExtensionConfig",
    "Preferences",
    "TargetConfig",
    "load_config",
    "Environment",
    "RunContext",
    "detect_environment",
    # Targets and detection
    "InstallTarget",
    "all_targets",
    "filter_targets",
    "get_target",
    "load_targets",
    "CliPackageStrategy",
    "ExtensionHostStrategy",
    "strategy_for",
    "DetectedInstance",
    "DetectionError",
    "ProfileState",
    "detect_all",
    "discover_profiles",
    "get_installed_version",
    # Installation
    "DownloadError",
    "FanoutError",
    "InstallError",
    "InstallOutcome",
    "UpdatePlan",
    "UpdateUnit",
    "artifact_scope",
    "download_artifact",
    "install",
    "VerificationError",
    "VerificationOutcome",
    "verify",
    # Orchestration
    "RunReport",
    "UpdateCandidate",
    "check_status",
    "run_update",
]
