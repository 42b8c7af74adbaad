"""
Editor profile discovery and profile fanout.

Profile-aware editors keep an independent extension set per user profile,
each with its own storage directory and ``extensions.json`` registry. An
extension installed through the editor CLI only lands in the default
profile; fanout mirrors the installed package tree into every other
selected profile and rewrites that profile's registry.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .collectors import max_version
from .config import ExtensionConfig
from .environment import Environment
from .targets import InstallTarget

logger = logging.getLogger(__name__)

REGISTRY_FILE = "extensions.json"
DEFAULT_PROFILE_ID = "default"

# Registry record layout as observed in shipped editor builds; not a
# published format, so every patching run warns about it once.
REGISTRY_SCHEMA_OBSERVED = "extensions.json records (identifier, version, location, relativeLocation, metadata)"

_schema_warned = False


@dataclass(frozen=True)
class ProfileState:
    """
    One isolated extension set of a profile-aware editor.

    Attributes:
        profile_id: Profile directory name ("default" for the main profile)
        storage_path: Directory holding ``<identifier>-<version>`` entries
        registry_path: The profile's ``extensions.json``
        installed_version: Version of the managed extension (None if absent)
        is_default: Whether this is the default profile
    """
    profile_id: str
    storage_path: Path
    registry_path: Path
    installed_version: str | None = None
    is_default: bool = False

    def to_dict(self) -> dict:
        return {
            "profile_id": self.profile_id,
            "storage_path": str(self.storage_path),
            "registry_path": str(self.registry_path),
            "installed_version": self.installed_version,
            "is_default": self.is_default,
        }


def warn_registry_schema() -> None:
    """Log the registry schema warning (once per process)."""
    global _schema_warned
    if not _schema_warned:
        logger.warning(
            f"Profile registries are patched using an observed, undocumented layout: "
            f"{REGISTRY_SCHEMA_OBSERVED}. Re-check after editor upgrades."
        )
        _schema_warned = True


def scan_storage(storage_dir: Path, identifier: str) -> list[tuple[str, Path]]:
    """
    List ``<identifier>-<version>`` entries in a storage directory.

    Returns:
        (raw version suffix, entry path) pairs; empty if the directory is missing
    """
    prefix = f"{identifier}-".lower()
    try:
        entries = list(storage_dir.iterdir())
    except OSError:
        return []
    return [
        (entry.name[len(prefix):], entry)
        for entry in entries
        if entry.is_dir() and entry.name.lower().startswith(prefix)
    ]


def installed_entry(storage_dir: Path, identifier: str) -> tuple[str, Path] | None:
    """Highest-versioned entry for identifier; unparseable suffixes are ignored."""
    entries = scan_storage(storage_dir, identifier)
    best = max_version([version for version, _ in entries])
    if best is None:
        return None
    return next(entry for entry in entries if entry[0] == best)


def read_registry(registry_path: Path) -> list[dict[str, Any]]:
    """
    Read a profile registry.

    Returns:
        Registry records (empty list if the file does not exist)

    Raises:
        ValueError: If the file is not a JSON array
    """
    if not registry_path.exists():
        return []
    with open(registry_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{registry_path} does not contain a JSON array")
    return data


def record_id(record: Any) -> str:
    if not isinstance(record, dict):
        return ""
    identifier = record.get("identifier")
    if not isinstance(identifier, dict):
        return ""
    return str(identifier.get("id", ""))


def registry_version(records: list[dict[str, Any]], identifier: str) -> str | None:
    """Version recorded for identifier in a registry (None if not listed)."""
    for record in records:
        if record_id(record).lower() == identifier.lower():
            return record.get("version") or None
    return None


def profile_version(storage_dir: Path, registry_path: Path, identifier: str) -> str | None:
    """Installed version from the storage directory, then from the registry record."""
    entry = installed_entry(storage_dir, identifier)
    if entry:
        return entry[0]
    try:
        return registry_version(read_registry(registry_path), identifier)
    except (OSError, ValueError) as e:
        logger.debug(f"Unreadable registry {registry_path}: {e}")
        return None


def discover_profiles(target: InstallTarget, env: Environment, identifier: str) -> list[ProfileState]:
    """
    Discover the profiles of a profile-aware target.

    The default profile is the target's extensions directory. Additional
    profiles are subdirectories of the profiles directory that already hold
    a registry; nothing is created here.

    Returns:
        Profile states, default profile first
    """
    storage = target.extensions_path(env)
    if not target.profile_aware or storage is None:
        return []

    default_registry = storage / REGISTRY_FILE
    profiles = [ProfileState(
        profile_id=DEFAULT_PROFILE_ID,
        storage_path=storage,
        registry_path=default_registry,
        installed_version=profile_version(storage, default_registry, identifier),
        is_default=True,
    )]

    profiles_dir = target.profiles_path(env)
    if profiles_dir is None or not profiles_dir.is_dir():
        return profiles

    for profile_dir in sorted(profiles_dir.iterdir()):
        registry = profile_dir / REGISTRY_FILE
        if not profile_dir.is_dir() or not registry.is_file():
            continue
        profile_storage = profile_dir / "extensions"
        profiles.append(ProfileState(
            profile_id=profile_dir.name,
            storage_path=profile_storage,
            registry_path=registry,
            installed_version=profile_version(profile_storage, registry, identifier),
        ))

    logger.debug(f"{target.id}: discovered {len(profiles)} profile(s)")
    return profiles


def _location_path(path: Path) -> str:
    posix = path.as_posix()
    return posix if posix.startswith("/") else f"/{posix}"


def build_registry_record(
    extension: ExtensionConfig,
    version: str,
    package_dir: Path,
    installed_at: int | None = None,
) -> dict[str, Any]:
    """
    Registry record for an installed extension package.

    Args:
        extension: Managed extension
        version: Installed version
        package_dir: The ``<identifier>-<version>`` directory in profile storage
        installed_at: Install timestamp in milliseconds (now when omitted)
    """
    return {
        "identifier": {"id": extension.identifier, "uuid": extension.uuid},
        "version": version,
        "location": {"$mid": 1, "path": _location_path(package_dir), "scheme": "file"},
        "relativeLocation": package_dir.name,
        "metadata": {
            "isApplicationScoped": False,
            "isMachineScoped": False,
            "isBuiltin": False,
            "installedTimestamp": installed_at if installed_at is not None else int(time.time() * 1000),
            "pinned": False,
            "source": "gallery",
            "id": extension.uuid,
            "publisherId": extension.publisher_uuid,
            "publisherDisplayName": extension.publisher,
            "targetPlatform": "undefined",
            "updated": True,
            "private": False,
            "isPreReleaseVersion": True,
            "hasPreReleaseVersion": True,
            "preRelease": True,
        },
    }


def update_registry(registry_path: Path, record: dict[str, Any], identifier: str) -> None:
    """
    Replace identifier's record in a registry, keeping unrelated records.

    The file is rewritten in full through a temporary file.
    """
    records = [r for r in read_registry(registry_path) if record_id(r).lower() != identifier.lower()]
    records.append(record)

    tmp_path = registry_path.with_name(registry_path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(records, f, indent=2)
    os.replace(tmp_path, registry_path)


def remove_stale_entries(storage_dir: Path, identifier: str) -> list[Path]:
    """Delete every ``<identifier>-*`` directory in storage; returns what was removed."""
    removed = []
    for _, entry in scan_storage(storage_dir, identifier):
        shutil.rmtree(entry)
        removed.append(entry)
    return removed


def fanout_to_profile(
    profile: ProfileState,
    source_dir: Path,
    extension: ExtensionConfig,
    version: str,
    dry_run: bool = False,
) -> Path:
    """
    Mirror an installed package tree into one profile.

    Args:
        profile: Target profile (must already exist)
        source_dir: Materialized ``<identifier>-<version>`` tree in default storage
        extension: Managed extension
        version: Installed version
        dry_run: Log the steps without touching the file system

    Returns:
        Path of the package directory inside the profile

    Raises:
        OSError: Copy or write failure
        ValueError: Existing registry is malformed
    """
    destination = profile.storage_path / source_dir.name
    if dry_run:
        logger.info(f"[dry-run] Would copy {source_dir} -> {destination} and update {profile.registry_path}")
        return destination

    profile.storage_path.mkdir(parents=True, exist_ok=True)
    for stale in remove_stale_entries(profile.storage_path, extension.identifier):
        logger.debug(f"Removed stale entry {stale}")
    shutil.copytree(source_dir, destination)

    warn_registry_schema()
    update_registry(
        profile.registry_path,
        build_registry_record(extension, version, destination),
        extension.identifier,
    )
    logger.info(f"Profile {profile.profile_id}: installed {extension.identifier} {version}")
    return destination
