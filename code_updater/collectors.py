"""
Latest-version resolution and version normalization.

Each source has a primary structured query and a fallback. The extension
gallery is queried through its JSON API first and its human-facing item
page second; npm packages use the registry API first and ``npm view``
second. A ResolutionError is raised only when both fail.
"""

from __future__ import annotations

import json
import logging
import re
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from packaging.version import Version

from .common import run_command
from .config import ExtensionConfig

if TYPE_CHECKING:
    from .environment import RunContext
    from .targets import InstallTarget

logger = logging.getLogger(__name__)

USER_AGENT = "code-updater/1.0"

GALLERY_QUERY_URL = "https://marketplace.visualstudio.com/_apis/public/gallery/extensionquery"
GALLERY_ITEM_URL = "https://marketplace.visualstudio.com/items?itemName={identifier}"
GALLERY_DOWNLOAD_URL = (
    "https://marketplace.visualstudio.com/_apis/public/gallery/publishers/"
    "{publisher}/vsextensions/{name}/{version}/vspackage"
)
NPM_LATEST_URL = "https://registry.npmjs.org/{package}/latest"

# Gallery filter type 7 = extension name (publisher.name)
GALLERY_FILTER_EXTENSION_NAME = 7
GALLERY_FLAGS = 0x200

# Tried in order, first match wins: JSON-like fragment before looser text.
SCRAPE_PATTERNS = (
    re.compile(r'"version"\s*:\s*"([^"]+)"'),
    re.compile(r'Version\s+([0-9]+\.[0-9]+\.[0-9]+)', re.IGNORECASE),
)

PRIMARY = "primary"
FALLBACK = "fallback"

SEMVER_CORE_RE = re.compile(r"^\s*[vV]?(\d+)(?:\.(\d+))?(?:\.(\d+))?")


class CollectionError(Exception):
    """Raised when version collection fails."""
    pass


class NetworkError(CollectionError):
    """Raised when network requests fail."""
    pass


class ParseError(CollectionError):
    """Raised when a response does not have the expected shape."""
    pass


class ResolutionError(CollectionError):
    """Raised when neither the primary nor the fallback source yields a version."""
    pass


def normalize(version: str | None) -> str | None:
    """
    Coerce a version string to MAJOR.MINOR.PATCH.

    A leading "v" and anything after the numeric core (platform qualifiers,
    pre-release tags) are dropped; missing minor/patch parts become 0.

    Args:
        version: Raw version (e.g. "0.560.0-universal", "v1.2")

    Returns:
        Normalized version (e.g. "0.560.0", "1.2.0") or None if unparseable
    """
    if not version:
        return None
    match = SEMVER_CORE_RE.match(str(version))
    if not match:
        return None
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return f"{major}.{minor}.{patch}"


def _sort_key(version: str | None) -> Version | None:
    normalized = normalize(version)
    return Version(normalized) if normalized else None


def compare_versions(v1: str | None, v2: str | None) -> int:
    """
    Compare two version strings by their normalized form.

    Unparseable versions sort below every parseable one.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    k1, k2 = _sort_key(v1), _sort_key(v2)
    if k1 is None or k2 is None:
        if k1 is None and k2 is None:
            return 0
        return -1 if k1 is None else 1
    if k1 < k2:
        return -1
    if k1 > k2:
        return 1
    return 0


def needs_update(installed: str | None, latest: str | None) -> bool:
    """
    Decide whether an installed version should be replaced by latest.

    Absent or unparseable installed versions always need an update; an
    unparseable latest version never triggers one.
    """
    if normalize(latest) is None:
        return False
    if normalize(installed) is None:
        return True
    return compare_versions(latest, installed) > 0


def max_version(versions: list[str]) -> str | None:
    """Return the raw string of the highest parseable version (None if none parse)."""
    parseable = [v for v in versions if normalize(v) is not None]
    if not parseable:
        return None
    return max(parseable, key=lambda v: Version(normalize(v)))


@dataclass(frozen=True)
class VersionInfo:
    """
    A version as reported by a source.

    Attributes:
        raw: Version string exactly as reported (kept for display)
        normalized: Normalized form used for comparison (None if unparseable)
        provenance: PRIMARY or FALLBACK
        source: Human-readable source label
    """
    raw: str
    normalized: str | None
    provenance: str = PRIMARY
    source: str = ""

    @classmethod
    def from_raw(cls, raw: str, provenance: str = PRIMARY, source: str = "") -> VersionInfo:
        raw = raw.strip()
        return cls(raw=raw, normalized=normalize(raw), provenance=provenance, source=source)

    def to_dict(self) -> dict:
        return {
            "raw": self.raw,
            "normalized": self.normalized,
            "provenance": self.provenance,
            "source": self.source,
        }


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def http_request(
    url: str,
    method: str = "GET",
    data: bytes | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 10,
) -> HttpResponse:
    """
    Perform an HTTP request.

    Non-2xx responses are returned (not raised) so callers can validate the
    status themselves.

    Raises:
        NetworkError: If the request cannot be completed (DNS, refused, timeout)
    """
    request_headers = {"User-Agent": USER_AGENT}
    if headers:
        request_headers.update(headers)

    req = urllib.request.Request(url, data=data, headers=request_headers, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return HttpResponse(status=response.status, body=response.read())
    except urllib.error.HTTPError as e:
        return HttpResponse(status=e.code, body=e.read() or b"")
    except (urllib.error.URLError, OSError) as e:
        raise NetworkError(f"Failed to fetch {url}: {e}") from e


def build_gallery_query(identifier: str) -> dict[str, Any]:
    """Gallery filter query for a single extension."""
    return {
        "filters": [{
            "criteria": [{"filterType": GALLERY_FILTER_EXTENSION_NAME, "value": identifier}],
            "pageNumber": 1,
            "pageSize": 1,
            "sortBy": 0,
            "sortOrder": 0,
        }],
        "assetTypes": [],
        "flags": GALLERY_FLAGS,
    }


def extract_gallery_version(data: Any) -> str:
    """
    Pull ``results[0].extensions[0].versions[0].version`` out of a gallery response.

    Raises:
        ParseError: If any link of the chain is missing or empty
    """
    try:
        version = data["results"][0]["extensions"][0]["versions"][0]["version"]
    except (KeyError, IndexError, TypeError) as e:
        raise ParseError(f"Unexpected gallery response shape: {e!r}") from e
    if not isinstance(version, str) or not version.strip():
        raise ParseError("Gallery response has an empty version")
    return version.strip()


def query_gallery(identifier: str, timeout: float = 10) -> str:
    """
    Structured gallery query for the latest version of an extension.

    Raises:
        NetworkError: Request failed
        ParseError: Response status or shape invalid
    """
    body = json.dumps(build_gallery_query(identifier)).encode("utf-8")
    response = http_request(
        GALLERY_QUERY_URL,
        method="POST",
        data=body,
        headers={
            "Content-Type": "application/json",
            "Accept": "application/json;api-version=3.0-preview.1",
        },
        timeout=timeout,
    )
    if not response.ok:
        raise ParseError(f"Gallery query failed with HTTP {response.status}")
    try:
        data = json.loads(response.body)
    except ValueError as e:
        raise ParseError(f"Gallery query returned invalid JSON: {e}") from e
    return extract_gallery_version(data)


def scrape_version(html: str) -> str | None:
    """Apply SCRAPE_PATTERNS in order; return the first match."""
    for pattern in SCRAPE_PATTERNS:
        match = pattern.search(html)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def scrape_item_page(identifier: str, timeout: float = 10) -> str:
    """
    Fallback: read the version off the gallery item page.

    Raises:
        NetworkError: Request failed
        ParseError: Page unavailable or no pattern matched
    """
    response = http_request(
        GALLERY_ITEM_URL.format(identifier=identifier),
        headers={"User-Agent": "Mozilla/5.0"},
        timeout=timeout,
    )
    if not response.ok:
        raise ParseError(f"Item page returned HTTP {response.status}")
    version = scrape_version(response.body.decode("utf-8", errors="ignore"))
    if not version:
        raise ParseError("No version found on item page")
    return version


def query_npm_registry(package: str, timeout: float = 10) -> str:
    """
    Latest version of an npm package from the registry API.

    Raises:
        NetworkError: Request failed
        ParseError: Response status or shape invalid
    """
    response = http_request(
        NPM_LATEST_URL.format(package=package),
        headers={"Accept": "application/json"},
        timeout=timeout,
    )
    if not response.ok:
        raise ParseError(f"npm registry returned HTTP {response.status}")
    try:
        version = json.loads(response.body).get("version", "")
    except (ValueError, AttributeError) as e:
        raise ParseError(f"npm registry returned invalid JSON: {e}") from e
    if not version:
        raise ParseError(f"npm registry has no version for {package}")
    return version


# Latest-version cache: key -> (info, fetched_at)
_version_cache: dict[str, tuple[VersionInfo, float]] = {}


def clear_version_cache() -> None:
    """Clear the latest-version cache."""
    _version_cache.clear()


def _cached(key: str, ttl: int) -> VersionInfo | None:
    entry = _version_cache.get(key)
    if entry and ttl > 0 and time.time() - entry[1] < ttl:
        logger.debug(f"Using cached version for {key}: {entry[0].raw}")
        return entry[0]
    return None


def _resolve(key: str, primary, fallback, ttl: int) -> VersionInfo:
    """Run primary then fallback; each must yield a parseable version."""
    cached = _cached(key, ttl)
    if cached:
        return cached

    errors = []
    for provenance, (label, fetch) in ((PRIMARY, primary), (FALLBACK, fallback)):
        try:
            info = VersionInfo.from_raw(fetch(), provenance=provenance, source=label)
        except CollectionError as e:
            logger.warning(f"{key}: {label} failed: {e}")
            errors.append(f"{label}: {e}")
            continue
        if info.normalized is None:
            logger.warning(f"{key}: {label} returned unparseable version {info.raw!r}")
            errors.append(f"{label}: unparseable version {info.raw!r}")
            continue
        logger.info(f"Latest version of {key}: {info.raw} (via {label})")
        _version_cache[key] = (info, time.time())
        return info

    raise ResolutionError(f"Could not resolve latest version of {key}: " + "; ".join(errors))


def resolve_extension_latest(extension: ExtensionConfig, ctx: RunContext) -> VersionInfo:
    """
    Latest published version of the managed extension.

    Raises:
        ResolutionError: If both the gallery query and the item page fail
    """
    timeout = ctx.preferences.http_timeout_seconds
    return _resolve(
        f"gallery:{extension.identifier}",
        ("gallery query", lambda: query_gallery(extension.identifier, timeout)),
        ("item page", lambda: scrape_item_page(extension.identifier, timeout)),
        ctx.preferences.cache_ttl_seconds,
    )


def _npm_view(target: InstallTarget, timeout: float) -> str:
    result = run_command(target.command("latest"), timeout=timeout)
    if not result.ok:
        raise NetworkError(result.error_message or "npm view failed")
    version = result.stdout.strip().splitlines()[-1:] or [""]
    if not version[0].strip():
        raise ParseError("npm view returned no version")
    return version[0].strip()


def resolve_package_latest(target: InstallTarget, ctx: RunContext) -> VersionInfo:
    """
    Latest published version of a CLI package.

    Raises:
        ResolutionError: If both the registry API and ``npm view`` fail
    """
    timeout = ctx.preferences.http_timeout_seconds
    return _resolve(
        f"npm:{target.package}",
        ("npm registry", lambda: query_npm_registry(target.package, timeout)),
        ("npm view", lambda: _npm_view(target, timeout)),
        ctx.preferences.cache_ttl_seconds,
    )
