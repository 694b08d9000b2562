"""
Version comparison utilities for depbump.

This module provides helpers for parsing npm-style semantic versions and
classifying version changes, built on :mod:`semantic_version`.
"""

from __future__ import annotations

from typing import Optional

from semantic_version import Version


def parse_version(value: Optional[str]) -> Optional[Version]:
    """Parse a full semantic version, tolerating a leading ``v``.

    Returns:
        The parsed :class:`~semantic_version.Version`, or ``None`` when
        ``value`` is empty or not a valid ``MAJOR.MINOR.PATCH`` version.

    Examples:
        >>> parse_version("v1.2.3")
        Version('1.2.3')
        >>> parse_version("1.2") is None
        True
    """
    if not value:
        return None

    text = value.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]

    try:
        return Version(text)
    except ValueError:
        return None


def strip_build(version: Version) -> Version:
    """Return ``version`` without build metadata."""
    if not version.build:
        return version
    return Version(
        major=version.major,
        minor=version.minor,
        patch=version.patch,
        prerelease=version.prerelease,
    )


def get_update_type(
    current_version: Optional[str],
    target_version: Optional[str],
) -> str:
    """Determine the semantic update type between two versions.

    Args:
        current_version: Lowest version permitted by the current specifier.
        target_version: Proposed version.

    Returns:
        One of ``"major"``, ``"minor"``, ``"patch"``, ``"prerelease"``,
        ``"same"``, ``"downgrade"`` or ``"unknown"``.

    Examples:
        >>> get_update_type("1.0.0", "2.0.0")
        'major'
        >>> get_update_type("1.2.3", "1.2.3")
        'same'
    """
    current = parse_version(current_version)
    target = parse_version(target_version)

    if current is None or target is None:
        return "unknown"

    if target == current:
        return "same"

    if target < current:
        return "downgrade"

    # 0.x releases treat the minor as the breaking component
    if current.major != target.major:
        return "major"
    if current.minor != target.minor:
        return "major" if current.major == 0 else "minor"
    if current.patch != target.patch:
        return "patch"

    return "prerelease"
