"""
Run-wide options for depbump.

:class:`UpgradeOptions` is the immutable context threaded through every
component call: which policy to apply, which sections and packages to
consider, registry settings, timeouts and doctor commands.
"""

from __future__ import annotations

from enum import Enum
from fnmatch import fnmatchcase
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple, Union

from depbump.exceptions import ConfigError
from depbump.models.decision import DependencySection
from depbump.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_REGISTRY,
    DEFAULT_SECTIONS,
    DEFAULT_TIMEOUT,
    DEPENDENCY_SECTIONS,
)

__all__ = [
    "Policy",
    "TargetPolicy",
    "UpgradeOptions",
    "parse_policy",
    "parse_sections",
]


class TargetPolicy(str, Enum):
    """Built-in rules for selecting an upgrade target."""

    LATEST = "latest"
    NEWEST = "newest"
    GREATEST = "greatest"
    MINOR = "minor"
    PATCH = "patch"
    SEMVER = "semver"


#: A built-in policy or the name of a dist-tag.
Policy = Union[TargetPolicy, str]


def parse_policy(value: Union[str, TargetPolicy]) -> Policy:
    """Parse a ``--target`` value.

    Built-in names map to :class:`TargetPolicy`; ``@next`` and any other
    bare name are treated as dist-tags.

    Raises:
        ConfigError: The value is empty.

    Examples:
        >>> parse_policy("minor")
        <TargetPolicy.MINOR: 'minor'>
        >>> parse_policy("@next")
        'next'
    """
    if isinstance(value, TargetPolicy):
        return value

    text = value.strip()
    if text.startswith("@"):
        text = text[1:]
    if not text:
        raise ConfigError(f"Invalid target: {value!r}", option="target")

    try:
        return TargetPolicy(text)
    except ValueError:
        return text


def parse_sections(values: Union[str, Tuple[str, ...], list, None]) -> Tuple[DependencySection, ...]:
    """Parse ``--dep`` values (``prod,dev`` or manifest keys) into sections.

    Raises:
        ConfigError: A value names no known section.
    """
    if not values:
        return tuple(DependencySection(DEPENDENCY_SECTIONS[s]) for s in DEFAULT_SECTIONS)

    if isinstance(values, str):
        values = (values,)

    sections = []
    for value in values:
        for item in value.split(","):
            name = item.strip()
            if not name:
                continue
            key = DEPENDENCY_SECTIONS.get(name, name)
            try:
                section = DependencySection(key)
            except ValueError as exc:
                raise ConfigError(
                    f"Unknown dependency section: {name!r}",
                    option="dep",
                ) from exc
            if section not in sections:
                sections.append(section)
    return tuple(sections)


@dataclass(frozen=True)
class UpgradeOptions:
    """Immutable run-wide configuration.

    Attributes:
        target: Default policy for every dependency.
        targets: Per-package policy overrides.
        sections: Manifest sections to inspect.
        filter: Glob patterns a dependency name must match (any).
        reject: Glob patterns excluding a dependency name.
        pre: Include prerelease versions.
        deprecated: Include deprecated versions.
        remove_range: Render exact pins instead of preserving range style.
        registry: Registry base URL.
        registry_token: Bearer token for a private registry.
        strict_ssl: Verify the registry TLS certificate.
        concurrency: Maximum concurrent registry lookups.
        timeout: Global run deadline in seconds (``None`` disables it).
        package_manager: Installer to drive; detected from lockfiles if unset.
        doctor_install: Install command override for doctor mode.
        doctor_test: Verification command for doctor mode.
        preflight: Verify the untouched project before trying upgrades.
        deep: Inspect every ``package.json`` below the root.
        workspaces: Inspect workspace manifests only.
        with_workspaces: Inspect the root manifest and its workspaces.
        workspace: Inspect only the named workspaces.
        merge_config: Combine a package directory's ``depbump.toml`` lists
            with the run's instead of replacing them.
    """

    target: Policy = TargetPolicy.LATEST
    targets: Mapping[str, Policy] = field(default_factory=dict)
    sections: Tuple[DependencySection, ...] = field(default_factory=lambda: parse_sections(None))
    filter: Tuple[str, ...] = ()
    reject: Tuple[str, ...] = ()
    pre: bool = False
    deprecated: bool = False
    remove_range: bool = False
    registry: str = DEFAULT_REGISTRY
    registry_token: Optional[str] = field(default=None, repr=False)
    strict_ssl: bool = True
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: Optional[float] = None
    request_timeout: int = DEFAULT_TIMEOUT
    package_manager: Optional[str] = None
    doctor_install: Optional[str] = None
    doctor_test: Optional[str] = "npm test"
    preflight: bool = True
    deep: bool = False
    workspaces: bool = False
    with_workspaces: bool = False
    workspace: Tuple[str, ...] = ()
    merge_config: bool = False

    @property
    def uses_workspaces(self) -> bool:
        return self.workspaces or self.with_workspaces or bool(self.workspace)

    def policy_for(self, name: str) -> Policy:
        """Return the policy that applies to ``name``."""
        for pattern, policy in self.targets.items():
            if pattern == name or fnmatchcase(name, pattern):
                return policy
        return self.target

    def selects(self, name: str) -> bool:
        """Return True if ``name`` passes the filter and reject patterns."""
        if self.filter and not any(fnmatchcase(name, p) for p in self.filter):
            return False
        return not any(fnmatchcase(name, p) for p in self.reject)
