"""Manifest diffing for depbump.

Runs the policy evaluator over every selected dependency of one
``package.json``. Catalogs are fetched concurrently up front; evaluation
itself is synchronous and independent per dependency.

Typical usage::

    async with HTTPClient() as http:
        registry = NpmRegistry(http)
        differ = ManifestDiffer(registry, options)
        result = await differ.diff(ManifestDocument.load("package.json"))

        for decision in result.upgrades:
            print(decision)
        result.apply().write()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from depbump.core.policy import evaluate
from depbump.utils.logger import get_logger
from depbump.core.registry import CatalogProvider
from depbump.models.catalog import VersionCatalog
from depbump.models.options import UpgradeOptions
from depbump.models.manifest import ManifestDocument
from depbump.models.specifier import Specifier, SpecifierKind, parse_specifier
from depbump.exceptions import NetworkError, PackageNotFoundError, SpecifierParseError
from depbump.models.decision import (
    DecisionStatus,
    DependencyKey,
    DependencySection,
    UpgradeDecision,
)

logger = get_logger("differ")

__all__ = ["DiffResult", "ManifestDiffer"]

LookupResult = Union[VersionCatalog, BaseException]


@dataclass(frozen=True)
class DiffResult:
    """Decisions for one manifest.

    Attributes:
        manifest: The manifest that was inspected (never mutated).
        decisions: Decision per dependency entry, in manifest order.
        warnings: Per-dependency problems worth reporting.
    """

    manifest: ManifestDocument
    decisions: Dict[DependencyKey, UpgradeDecision] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def upgrades(self) -> List[UpgradeDecision]:
        return [d for d in self.decisions.values() if not d.unchanged]

    @property
    def has_upgrades(self) -> bool:
        return any(not d.unchanged for d in self.decisions.values())

    def apply(self) -> ManifestDocument:
        """Return a new manifest with every upgrade applied."""
        return self.manifest.with_decisions(self.upgrades)

    def to_json(self) -> Dict[str, Any]:
        return {
            "manifest": str(self.manifest.path),
            "upgrades": [d.to_json() for d in self.upgrades],
            "decisions": [d.to_json() for d in self.decisions.values()],
            "warnings": list(self.warnings),
        }


class ManifestDiffer:
    """Computes upgrade decisions for a manifest.

    Args:
        provider: Catalog source, usually a shared :class:`NpmRegistry`.
        options: Run-wide options.
    """

    def __init__(self, provider: CatalogProvider, options: UpgradeOptions) -> None:
        self.provider = provider
        self.options = options

    def with_options(self, options: UpgradeOptions) -> "ManifestDiffer":
        """A differ with other options sharing this one's catalog provider."""
        return ManifestDiffer(self.provider, options)

    async def diff(self, manifest: ManifestDocument) -> DiffResult:
        """Evaluate every selected dependency of ``manifest``.

        Raises:
            NetworkError: Every registry lookup failed for network reasons.
        """
        entries: List[Tuple[DependencySection, str, str, Optional[Specifier]]] = []
        decisions: Dict[DependencyKey, UpgradeDecision] = {}
        warnings: List[str] = []

        for section, name, raw in manifest.iter_dependencies(self.options.sections):
            if not self.options.selects(name):
                continue
            if not isinstance(raw, str):
                # Nested override objects and similar
                logger.debug("Skipping non-string entry %s in %s", name, section.value)
                continue

            try:
                entries.append((section, name, raw, parse_specifier(raw)))
            except SpecifierParseError as exc:
                entries.append((section, name, raw, None))
                decisions[DependencyKey(section, name)] = UpgradeDecision(
                    name=name,
                    section=section,
                    from_specifier=raw,
                    to_specifier=raw,
                    status=DecisionStatus.INVALID,
                    message=exc.message,
                )

        catalogs = await self._fetch_catalogs(entries)

        for section, name, raw, specifier in entries:
            key = DependencyKey(section, name)
            if specifier is None:
                warnings.append(f"{name}: invalid specifier {raw!r}")
                continue

            decision = self._decide(section, name, specifier, catalogs)
            decisions[key] = decision
            if decision.is_error or decision.message:
                warnings.append(f"{name}: {decision.message or decision.status.value}")

        # Preserve manifest order for reporting
        ordered = {
            DependencyKey(section, name): decisions[DependencyKey(section, name)]
            for section, name, _, _ in entries
        }
        return DiffResult(manifest=manifest, decisions=ordered, warnings=warnings)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _lookup_name(name: str, specifier: Specifier) -> str:
        """Registry name for an entry.

        Resolution keys such as ``**/lodash`` or ``webpack/@babel/core``
        select a nested package; the last package in the path is the one
        to look up.
        """
        if specifier.alias:
            return specifier.alias
        segments = [s for s in name.split("/") if s and s != "**"]
        if len(segments) >= 2 and segments[-2].startswith("@"):
            package = f"{segments[-2]}/{segments[-1]}"
        else:
            package = segments[-1] if segments else name
        # yarn berry allows a descriptor suffix: lodash@npm:4.17.21
        at = package.find("@", 1)
        return package[:at] if at > 0 else package

    async def _fetch_catalogs(
        self,
        entries: List[Tuple[DependencySection, str, str, Optional[Specifier]]],
    ) -> Dict[str, LookupResult]:
        names = list(
            dict.fromkeys(
                self._lookup_name(name, spec)
                for _, name, _, spec in entries
                if spec is not None and spec.kind is not SpecifierKind.NON_REGISTRY
            )
        )
        if not names:
            return {}

        results = await asyncio.gather(
            *(self.provider.fetch_catalog(name) for name in names),
            return_exceptions=True,
        )

        for result in results:
            # Cancellation and interrupts are not per-package failures
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        network_failures = [
            r
            for r in results
            if isinstance(r, NetworkError) and not isinstance(r, PackageNotFoundError)
        ]
        if len(network_failures) == len(results):
            logger.error("Every registry lookup failed")
            raise network_failures[0]

        return dict(zip(names, results))

    def _decide(
        self,
        section: DependencySection,
        name: str,
        specifier: Specifier,
        catalogs: Dict[str, LookupResult],
    ) -> UpgradeDecision:
        if specifier.kind is SpecifierKind.NON_REGISTRY:
            return UpgradeDecision(
                name=name,
                section=section,
                from_specifier=specifier.raw,
                to_specifier=specifier.raw,
                status=DecisionStatus.NON_REGISTRY,
            )

        lookup = catalogs[self._lookup_name(name, specifier)]

        if isinstance(lookup, PackageNotFoundError):
            status, message = DecisionStatus.NOT_FOUND, lookup.message
        elif isinstance(lookup, Exception):
            logger.error("Failed to fetch %s: %s", name, lookup)
            status, message = DecisionStatus.FAILED, str(lookup)
        else:
            return evaluate(
                name,
                specifier,
                lookup,
                self.options.policy_for(name),
                self.options,
                section,
            )

        return UpgradeDecision(
            name=name,
            section=section,
            from_specifier=specifier.raw,
            to_specifier=specifier.raw,
            status=status,
            message=message,
        )
