"""
Unified data model exports for depbump.

This module re-exports the core data models to provide a stable and
convenient public API. Users can import models directly from
``depbump.models`` instead of individual submodules.

Example:
    >>> from depbump.models import ManifestDocument, parse_specifier
"""

from __future__ import annotations

from depbump.models.catalog import VersionCatalog
from depbump.models.manifest import ManifestDocument
from depbump.models.options import TargetPolicy, UpgradeOptions, parse_policy
from depbump.models.specifier import Specifier, SpecifierKind, parse_specifier
from depbump.models.decision import (
    DecisionStatus,
    DependencyKey,
    DependencySection,
    UpgradeDecision,
)

__all__ = [
    "DecisionStatus",
    "DependencyKey",
    "DependencySection",
    "ManifestDocument",
    "Specifier",
    "SpecifierKind",
    "TargetPolicy",
    "UpgradeDecision",
    "UpgradeOptions",
    "VersionCatalog",
    "parse_policy",
    "parse_specifier",
]
