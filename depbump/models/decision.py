"""
Upgrade decision model for depbump.

An :class:`UpgradeDecision` is the outcome of evaluating one dependency
entry: what it is declared as, what it should become and why.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional

from depbump.utils.version_utils import get_update_type

__all__ = [
    "DecisionStatus",
    "DependencyKey",
    "DependencySection",
    "UpgradeDecision",
]


class DependencySection(str, Enum):
    """Manifest sections that declare dependencies."""

    DEPENDENCIES = "dependencies"
    DEV_DEPENDENCIES = "devDependencies"
    PEER_DEPENDENCIES = "peerDependencies"
    OPTIONAL_DEPENDENCIES = "optionalDependencies"
    RESOLUTIONS = "resolutions"
    OVERRIDES = "overrides"

    @property
    def is_peer(self) -> bool:
        return self is DependencySection.PEER_DEPENDENCIES


class DecisionStatus(str, Enum):
    """Outcome of evaluating one dependency."""

    UPGRADE = "upgrade"
    UNCHANGED = "unchanged"
    NON_REGISTRY = "non-registry"
    NOT_FOUND = "not-found"
    INVALID = "invalid"
    FAILED = "failed"


class DependencyKey(NamedTuple):
    """Identifies a dependency entry within a manifest."""

    section: DependencySection
    name: str

    def __str__(self) -> str:
        return f"{self.section.value}:{self.name}"


@dataclass(frozen=True)
class UpgradeDecision:
    """The result of evaluating a single dependency.

    Attributes:
        name: Dependency name as declared.
        section: Manifest section the entry lives in.
        from_specifier: The declared specifier.
        to_specifier: The specifier to write; equals ``from_specifier``
            unless ``status`` is ``upgrade``.
        to_version: The selected target version, when one was resolved.
        status: Decision outcome.
        message: Human-readable detail for warnings and failures.
    """

    name: str
    section: DependencySection
    from_specifier: str
    to_specifier: str
    to_version: Optional[str] = None
    status: DecisionStatus = DecisionStatus.UNCHANGED
    message: Optional[str] = None
    from_version: Optional[str] = None

    @property
    def key(self) -> DependencyKey:
        return DependencyKey(self.section, self.name)

    @property
    def unchanged(self) -> bool:
        return self.status is not DecisionStatus.UPGRADE

    @property
    def is_error(self) -> bool:
        return self.status in (
            DecisionStatus.NOT_FOUND,
            DecisionStatus.INVALID,
            DecisionStatus.FAILED,
        )

    @property
    def update_type(self) -> str:
        """Semantic size of the change (``major``, ``minor``, ``patch``...)."""
        if self.unchanged:
            return "same"
        return get_update_type(self.from_version, self.to_version)

    def to_json(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "name": self.name,
            "section": self.section.value,
            "from": self.from_specifier,
            "to": self.to_specifier,
            "version": self.to_version,
            "status": self.status.value,
            "change": None if self.unchanged else self.update_type,
            "message": self.message,
        }

    def __str__(self) -> str:
        if self.unchanged:
            return f"{self.name} {self.from_specifier} ({self.status.value})"
        return f"{self.name} {self.from_specifier} → {self.to_specifier}"
