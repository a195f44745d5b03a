"""Version comparison for npm style version strings."""

import re

from packaging.version import InvalidVersion, Version

_RANGE_PREFIX = re.compile(r"^[\^~=v\s]+")


def clean_version(spec: str) -> str:
    """Strip a leading range operator such as ``^`` or ``~``."""
    return _RANGE_PREFIX.sub("", spec.strip())


def _numeric_parts(version: str) -> list[int]:
    parts = []
    for part in version.split("-")[0].split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    return parts


def compare_versions(left: str, right: str) -> int:
    """Compare two versions, returning -1, 0 or 1.

    Uses ``packaging`` when both sides parse, otherwise falls back to a
    numeric comparison of the release segment.
    """
    left, right = clean_version(left), clean_version(right)
    try:
        a, b = Version(left), Version(right)
    except InvalidVersion:
        a_parts, b_parts = _numeric_parts(left), _numeric_parts(right)
        width = max(len(a_parts), len(b_parts))
        a_parts += [0] * (width - len(a_parts))
        b_parts += [0] * (width - len(b_parts))
        a, b = a_parts, b_parts  # type: ignore[assignment]
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def max_version(versions: list[str]) -> str | None:
    """Highest version in the list, or None when empty."""
    best = None
    for version in versions:
        if best is None or compare_versions(version, best) > 0:
            best = version
    return best


def is_affected(version: str, events: list[dict]) -> bool:
    """Check a version against an OSV ``SEMVER``/``ECOSYSTEM`` range.

    Events are processed in order: ``introduced`` opens a window,
    ``fixed`` closes it exclusively, ``last_affected`` closes it inclusively.
    """
    affected = False
    for event in events:
        if "introduced" in event:
            introduced = event["introduced"]
            if introduced == "0" or compare_versions(version, introduced) >= 0:
                affected = True
        elif "fixed" in event:
            if compare_versions(version, event["fixed"]) >= 0:
                affected = False
        elif "last_affected" in event:
            if compare_versions(version, event["last_affected"]) > 0:
                affected = False
        elif "limit" in event:
            if compare_versions(version, event["limit"]) >= 0:
                affected = False
    return affected
