"""
Version catalog model for depbump.

A :class:`VersionCatalog` is the immutable view of one npm packument that
the policy evaluator works against: every published version in semantic
precedence order, the dist-tag map, deprecation flags and publish times.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from semantic_version import Version

from depbump.utils.version_utils import parse_version

__all__ = ["VersionCatalog"]


@dataclass(frozen=True)
class VersionCatalog:
    """Published versions and tag pointers for a single package.

    Attributes:
        name: Package name as requested from the registry.
        versions: Every parseable published version, ascending.
        tags: Dist-tag name mapped to the version it points at.
        deprecated: Versions flagged as deprecated.
        published: Version string mapped to its ISO-8601 publish time.

    Example::

        >>> catalog = VersionCatalog.from_versions("left-pad", ["1.0.0", "1.1.0"])
        >>> catalog.max_version()
        Version('1.1.0')
    """

    name: str
    versions: Tuple[Version, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)
    deprecated: FrozenSet[str] = frozenset()
    published: Mapping[str, str] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_versions(
        cls,
        name: str,
        versions: Any,
        *,
        tags: Optional[Mapping[str, str]] = None,
        deprecated: Optional[Any] = None,
        published: Optional[Mapping[str, str]] = None,
    ) -> "VersionCatalog":
        """Build a catalog from raw version strings.

        Unparseable identifiers are dropped and the remainder sorted by
        semantic precedence.
        """
        parsed = {}
        for raw in versions:
            version = parse_version(raw)
            if version is not None:
                parsed[str(version)] = version

        return cls(
            name=name,
            versions=tuple(sorted(parsed.values())),
            tags=dict(tags or {}),
            deprecated=frozenset(deprecated or ()),
            published=dict(published or {}),
        )

    @classmethod
    def from_packument(cls, name: str, document: Mapping[str, Any]) -> "VersionCatalog":
        """Build a catalog from an npm registry packument."""
        raw_versions: Dict[str, Any] = document.get("versions") or {}
        deprecated = [
            version
            for version, manifest in raw_versions.items()
            if isinstance(manifest, dict) and manifest.get("deprecated")
        ]

        # "created" and "modified" share the time map with real versions
        times = {
            version: stamp
            for version, stamp in (document.get("time") or {}).items()
            if version in raw_versions and isinstance(stamp, str)
        }

        tags = {
            tag: version
            for tag, version in (document.get("dist-tags") or {}).items()
            if isinstance(version, str)
        }

        return cls.from_versions(
            name,
            raw_versions.keys(),
            tags=tags,
            deprecated=deprecated,
            published=times,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return not self.versions

    def tag(self, name: str) -> Optional[Version]:
        """Return the version a dist-tag points at, if published."""
        raw = self.tags.get(name)
        version = parse_version(raw)
        if version is None:
            return None
        return version if self.has_version(version) else None

    def has_version(self, version: Version) -> bool:
        return str(version) in self._index

    def is_deprecated(self, version: Version) -> bool:
        return str(version) in self.deprecated

    def published_at(self, version: Version) -> Optional[str]:
        return self.published.get(str(version))

    def max_version(self) -> Optional[Version]:
        return self.versions[-1] if self.versions else None

    @property
    def _index(self) -> FrozenSet[str]:
        return frozenset(str(version) for version in self.versions)

    def __len__(self) -> int:
        return len(self.versions)
