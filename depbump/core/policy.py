"""Target policy evaluation for depbump.

Maps a declared specifier, a version catalog and a target policy to a
single :class:`UpgradeDecision`. Evaluation is pure and synchronous; all
registry I/O happens before it, in :mod:`depbump.core.differ`.

The algorithm runs in three steps:

1. **Candidates**: the catalog's versions, minus prereleases (unless
   ``pre``, the ``newest`` policy, a tag policy, or a prerelease floor) and
   deprecated releases (unless ``deprecated`` or a tag policy). Peer
   dependencies only consider versions their range already permits.
2. **Target**: the version the policy selects from the candidates.
3. **Rendering**: a new specifier in the original style, or an unchanged
   decision when the declared range already covers the target. A target
   below the specifier's floor is never proposed.

Typical usage::

    from depbump.core.policy import evaluate
    from depbump.models.specifier import parse_specifier

    decision = evaluate(
        "react",
        parse_specifier("^17.0.2"),
        catalog,
        TargetPolicy.LATEST,
        options,
    )
    print(decision.to_specifier)            # e.g. "^18.3.1"
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from semantic_version import Version

from depbump.constants import LATEST_TAG
from depbump.utils.logger import get_logger
from depbump.models.catalog import VersionCatalog
from depbump.exceptions import SpecifierParseError
from depbump.models.options import Policy, TargetPolicy, UpgradeOptions
from depbump.models.specifier import Specifier, SpecifierKind, parse_specifier
from depbump.models.decision import DecisionStatus, DependencySection, UpgradeDecision

logger = get_logger("policy")

__all__ = ["evaluate", "eligible_versions", "select_target"]


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------


def _is_tag_policy(policy: Policy) -> bool:
    return not isinstance(policy, TargetPolicy)


def eligible_versions(
    catalog: VersionCatalog,
    specifier: Specifier,
    policy: Policy,
    options: UpgradeOptions,
    section: DependencySection = DependencySection.DEPENDENCIES,
) -> List[Version]:
    """Return the catalog versions a policy may choose from, ascending.

    Args:
        catalog: Published versions of the dependency.
        specifier: The declared specifier.
        policy: Policy being evaluated.
        options: Run-wide options (``pre`` and ``deprecated`` flags).
        section: Manifest section; peer entries are restricted to their range.

    Returns:
        Eligible versions in ascending precedence order.
    """
    floor = specifier.floor
    include_pre = (
        options.pre
        or policy == TargetPolicy.NEWEST
        or _is_tag_policy(policy)
        or bool(floor is not None and floor.prerelease)
    )
    include_deprecated = options.deprecated or _is_tag_policy(policy)

    candidates: List[Version] = []
    for version in catalog.versions:
        if version.prerelease and not include_pre:
            continue
        if not include_deprecated and catalog.is_deprecated(version):
            continue
        if section.is_peer and not specifier.satisfies(version):
            continue
        candidates.append(version)

    return candidates


def _latest(catalog: VersionCatalog, candidates: List[Version]) -> Optional[Version]:
    """The ``latest`` dist-tag when eligible, else the highest eligible stable."""
    tagged = catalog.tag(LATEST_TAG)
    if tagged is not None and tagged in candidates:
        return tagged

    stable = [v for v in candidates if not v.prerelease]
    if stable:
        return stable[-1]
    return candidates[-1] if candidates else None


def _newest(catalog: VersionCatalog, candidates: List[Version]) -> Optional[Version]:
    """Most recently published candidate; precedence breaks ties."""
    if not candidates:
        return None
    # Versions without a publish time sort before every dated one
    return max(candidates, key=lambda v: (catalog.published_at(v) or "", v))


def select_target(
    catalog: VersionCatalog,
    specifier: Specifier,
    policy: Policy,
    candidates: List[Version],
) -> Tuple[Optional[Version], Optional[str]]:
    """Pick the version ``policy`` selects from ``candidates``.

    Returns:
        ``(target, warning)``. ``target`` is ``None`` when nothing
        qualifies; ``warning`` explains why when the reason is worth
        surfacing to the user.
    """
    if _is_tag_policy(policy):
        tagged = catalog.tag(str(policy))
        if tagged is None:
            return None, f"dist-tag '{policy}' not found for {catalog.name}"
        return (tagged if tagged in candidates else None), None

    if policy == TargetPolicy.GREATEST:
        return (candidates[-1] if candidates else None), None

    if policy == TargetPolicy.NEWEST:
        return _newest(catalog, candidates), None

    if policy in (TargetPolicy.LATEST, TargetPolicy.SEMVER):
        return _latest(catalog, candidates), None

    floor = specifier.floor
    if floor is None:
        return None, None

    if policy == TargetPolicy.MINOR:
        bounded = [v for v in candidates if v.major == floor.major]
    else:
        bounded = [
            v for v in candidates if (v.major, v.minor) == (floor.major, floor.minor)
        ]
    return (bounded[-1] if bounded else None), None


# ---------------------------------------------------------------------------
# Decision construction
# ---------------------------------------------------------------------------


def _unchanged(
    name: str,
    section: DependencySection,
    raw: str,
    *,
    status: DecisionStatus = DecisionStatus.UNCHANGED,
    version: Optional[Version] = None,
    message: Optional[str] = None,
    floor: Optional[Version] = None,
) -> UpgradeDecision:
    return UpgradeDecision(
        name=name,
        section=section,
        from_specifier=raw,
        to_specifier=raw,
        to_version=str(version) if version is not None else None,
        status=status,
        message=message,
        from_version=str(floor) if floor is not None else None,
    )


def _renders_same(specifier: Specifier, rendered: str) -> bool:
    """True when ``rendered`` denotes the same range as ``specifier``."""
    if rendered.strip() == specifier.raw.strip():
        return True
    try:
        reparsed = parse_specifier(rendered)
    except SpecifierParseError:
        return False
    return reparsed.alias == specifier.alias and reparsed.range_text == specifier.range_text


def _admits(rendered: str, target: Version) -> bool:
    try:
        return parse_specifier(rendered).satisfies(target)
    except SpecifierParseError:
        return False


def evaluate(
    name: str,
    specifier: Specifier,
    catalog: VersionCatalog,
    policy: Policy,
    options: UpgradeOptions,
    section: DependencySection = DependencySection.DEPENDENCIES,
) -> UpgradeDecision:
    """Compute the upgrade decision for one dependency.

    Args:
        name: Dependency name as declared in the manifest.
        specifier: Parsed declared specifier.
        catalog: Published versions of the dependency.
        policy: Target policy for this dependency.
        options: Run-wide options.
        section: Manifest section the entry lives in.

    Returns:
        An :class:`UpgradeDecision`. ``to_version`` is never lower than
        the specifier's floor.

    Example::

        >>> decision = evaluate("lodash", parse_specifier("~4.17.0"), catalog,
        ...                     TargetPolicy.PATCH, UpgradeOptions())
        >>> decision.to_specifier
        '~4.17.21'
    """
    raw = specifier.raw

    if specifier.kind is SpecifierKind.NON_REGISTRY:
        return _unchanged(name, section, raw, status=DecisionStatus.NON_REGISTRY)

    if catalog.is_empty:
        return _unchanged(
            name,
            section,
            raw,
            status=DecisionStatus.NOT_FOUND,
            message=f"No published versions for {catalog.name}",
        )

    # Dist-tag references always follow the registry; report where they point
    if specifier.kind is SpecifierKind.TAG:
        resolved = catalog.tag(specifier.tag or "")
        message = None if resolved else f"dist-tag '{specifier.tag}' not found"
        return _unchanged(name, section, raw, version=resolved, message=message)

    if specifier.is_wildcard:
        return _unchanged(
            name, section, raw, version=catalog.tag(LATEST_TAG) or catalog.max_version()
        )

    floor = specifier.floor
    candidates = eligible_versions(catalog, specifier, policy, options, section)
    target, warning = select_target(catalog, specifier, policy, candidates)

    if target is None:
        return _unchanged(name, section, raw, message=warning, floor=floor)

    if floor is not None and target < floor:
        logger.debug("%s: %s is below the floor %s, keeping %s", name, target, floor, raw)
        return _unchanged(name, section, raw, floor=floor)

    # Peer ranges are a compatibility contract: report, never rewrite
    if section.is_peer:
        return _unchanged(name, section, raw, version=target, floor=floor)

    # An earlier "||" alternative already covers an older target
    if specifier.satisfies(target) and target < specifier.alternatives[-1].lower_bound:
        return _unchanged(name, section, raw, version=target, floor=floor)

    if policy == TargetPolicy.SEMVER:
        if specifier.satisfies(target):
            return _unchanged(name, section, raw, version=target, floor=floor)
        rendered = specifier.widen(target)
    else:
        if specifier.is_upper_bounded and specifier.satisfies(target):
            return _unchanged(name, section, raw, version=target, floor=floor)
        if not specifier.is_upper_bounded and specifier.is_at_least(target):
            return _unchanged(name, section, raw, version=target, floor=floor)
        rendered = specifier.render(target, remove_range=options.remove_range)

    if _renders_same(specifier, rendered):
        return _unchanged(name, section, raw, version=target, floor=floor)

    if not _admits(rendered, target):
        widened = specifier.widen(target)
        if not _admits(widened, target):
            logger.warning("%s: cannot express %s in the style of %s", name, target, raw)
            return _unchanged(
                name,
                section,
                raw,
                version=target,
                floor=floor,
                message=f"cannot rewrite {raw} to admit {target}",
            )
        logger.debug("%s: %s does not admit %s, widening instead", name, rendered, target)
        rendered = widened

    logger.debug("%s: %s -> %s (%s)", name, raw, rendered, policy)
    return UpgradeDecision(
        name=name,
        section=section,
        from_specifier=raw,
        to_specifier=rendered,
        to_version=str(target),
        status=DecisionStatus.UPGRADE,
        from_version=str(floor) if floor is not None else None,
    )
