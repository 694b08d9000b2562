"""
Version specifier model for depbump.

Parses the version string declared for a dependency in ``package.json``
into a structured representation, answers "does this range permit
version V" and "is this range already at or above V", and renders an
upgraded specifier in the same style as the original.

Specifier kinds:

- ``exact``: a single full version (``1.2.3``, ``=1.2.3``)
- ``range``: anything npm treats as a range (``^1.2``, ``~2.0.0``, ``1.x``,
  ``>=1 <2``, ``1.0.0 - 2.0.0``, ``^1 || ^2``, ``*``)
- ``tag``: a dist-tag reference (``latest``, ``next``)
- ``non-registry``: git, URL, path and protocol references, never resolved

Range matching itself is delegated to :class:`semantic_version.NpmSpec`.
The structure kept here only serves to compute lower bounds and to
re-render ranges around a new version.
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple, Union

from semantic_version import NpmSpec, Version

from depbump.exceptions import SpecifierParseError
from depbump.utils.version_utils import parse_version, strip_build

__all__ = [
    "Alternative",
    "Comparator",
    "Specifier",
    "SpecifierKind",
    "is_at_least",
    "is_non_registry",
    "parse_specifier",
    "satisfies",
]

VersionLike = Union[Version, str]

_WILDCARDS = frozenset({"x", "X", "*"})

_COMPARATOR_RE = re.compile(
    r"^(?P<op><=|>=|<|>|=|\^|~>|~)?"
    r"(?P<v>[vV])?"
    r"(?P<parts>(?:\d+|[xX*])(?:\.(?:\d+|[xX*])){0,2})"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_OPERATOR_SPACING_RE = re.compile(r"(<=|>=|<|>|=|\^|~>|~)\s+")
_HYPHEN_RE = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")
_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")
_GITHUB_SHORTHAND_RE = re.compile(r"^[\w.-]+/[\w.-]+(?:#.*)?$")
_PROTOCOL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")
_ALIAS_PREFIX = "npm:"


class SpecifierKind(str, Enum):
    """Classification of a declared specifier."""

    EXACT = "exact"
    RANGE = "range"
    TAG = "tag"
    NON_REGISTRY = "non-registry"


# ---------------------------------------------------------------------------
# Comparators and alternatives
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Comparator:
    """One ``<op><version>`` term of a range.

    Attributes:
        operator: Operator as written (``""``, ``=``, ``^``, ``~``, ``~>``,
            ``>``, ``>=``, ``<``, ``<=``).
        parts: Version components as written; may be partial or contain
            wildcards (``("1", "x")``).
        prerelease: Prerelease identifier without the leading ``-``.
        v_prefix: Whether the version was written with a leading ``v``.
        source: The original token text.
    """

    operator: str
    parts: Tuple[str, ...]
    prerelease: str = ""
    v_prefix: bool = False
    source: str = field(default="", compare=False)

    @property
    def precision(self) -> int:
        """Number of leading numeric components."""
        count = 0
        for part in self.parts:
            if part in _WILDCARDS:
                break
            count += 1
        return count

    @property
    def wildcard(self) -> Optional[str]:
        """The wildcard character used (``x``, ``X`` or ``*``), if any."""
        for part in self.parts:
            if part in _WILDCARDS:
                return part
        return None

    @property
    def is_wildcard(self) -> bool:
        return self.precision == 0

    @property
    def normalized_operator(self) -> str:
        return "~" if self.operator == "~>" else self.operator

    @property
    def is_upper(self) -> bool:
        return self.operator in ("<", "<=")

    def numbers(self) -> List[int]:
        return [int(part) for part in self.parts[: self.precision]]

    def lower_bound(self) -> Optional[Version]:
        """Lowest version this comparator admits, or ``None`` for ``<``/``<=``."""
        if self.is_upper:
            return None
        if self.is_wildcard:
            return Version("0.0.0")

        numbers = self.numbers()
        filled = numbers + [0] * (3 - len(numbers))

        if self.operator == ">":
            if len(numbers) == 1:
                return Version(major=filled[0] + 1, minor=0, patch=0)
            if len(numbers) == 2:
                return Version(major=filled[0], minor=filled[1] + 1, patch=0)
            if self.prerelease:
                # Any release of the same triple sorts above its prereleases
                return Version(major=filled[0], minor=filled[1], patch=filled[2])
            return Version(major=filled[0], minor=filled[1], patch=filled[2] + 1)

        prerelease = tuple(self.prerelease.split(".")) if self.prerelease and len(numbers) == 3 else ()
        return Version(
            major=filled[0],
            minor=filled[1],
            patch=filled[2],
            prerelease=prerelease,
        )

    def upper_bound(self) -> Optional[Version]:
        """Version written in a ``<``/``<=`` comparator, zero-filled."""
        if not self.is_upper or self.is_wildcard:
            return None
        numbers = self.numbers() + [0] * (3 - self.precision)
        return Version(major=numbers[0], minor=numbers[1], patch=numbers[2])

    def normalized(self) -> str:
        """Text accepted by :class:`semantic_version.NpmSpec`."""
        text = self.normalized_operator + ".".join(self.parts)
        if self.prerelease:
            text += f"-{self.prerelease}"
        return text

    def with_version(self, version_text: str, *, operator: Optional[str] = None) -> "Comparator":
        """Return a copy of this comparator pointing at ``version_text``."""
        op = self.operator if operator is None else operator
        core, _, pre = version_text.partition("-")
        prefix = "v" if self.v_prefix else ""
        return replace(
            self,
            operator=op,
            parts=tuple(core.split(".")),
            prerelease=pre,
            source=f"{op}{prefix}{version_text}",
        )


@dataclass(frozen=True)
class Alternative:
    """One side of a ``||`` union: comparators that must all hold."""

    comparators: Tuple[Comparator, ...]
    hyphen: bool = False

    @property
    def lower_bound(self) -> Version:
        if self.hyphen:
            bound = self.comparators[0].lower_bound()
            return bound if bound is not None else Version("0.0.0")

        bounds = [c.lower_bound() for c in self.comparators]
        present = [b for b in bounds if b is not None]
        return max(present) if present else Version("0.0.0")

    @property
    def upper_bounded(self) -> bool:
        return self.hyphen or any(c.is_upper for c in self.comparators)

    @property
    def is_wildcard(self) -> bool:
        return (
            not self.hyphen
            and len(self.comparators) == 1
            and self.comparators[0].is_wildcard
            and self.comparators[0].operator in ("", "=", ">=")
        )

    def normalized(self) -> str:
        if self.hyphen:
            low, high = self.comparators
            return f"{low.normalized()} - {high.normalized()}"
        return " ".join(c.normalized() for c in self.comparators)

    def written(self) -> str:
        if self.hyphen:
            low, high = self.comparators
            return f"{low.source} - {high.source}"
        return " ".join(c.source for c in self.comparators)


# ---------------------------------------------------------------------------
# Specifier
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1024)
def _npm_spec(text: str) -> NpmSpec:
    return NpmSpec(text)


@dataclass(frozen=True)
class Specifier:
    """A parsed dependency specifier.

    Attributes:
        raw: The declared string, verbatim.
        kind: Classification, see :class:`SpecifierKind`.
        alternatives: Parsed ``||`` alternatives (registry ranges only).
        alias: Target package for ``npm:<name>@<range>`` aliases.
        tag: Dist-tag name for tag references.
    """

    raw: str
    kind: SpecifierKind
    alternatives: Tuple[Alternative, ...] = ()
    alias: Optional[str] = None
    tag: Optional[str] = None

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    @property
    def is_registry(self) -> bool:
        return self.kind is not SpecifierKind.NON_REGISTRY

    @property
    def is_wildcard(self) -> bool:
        """True for ``*``, ``x`` and the empty range, which permit everything."""
        return any(alt.is_wildcard for alt in self.alternatives)

    @property
    def is_upper_bounded(self) -> bool:
        """True when the range caps versions with ``<``, ``<=`` or a hyphen."""
        return bool(self.alternatives) and self.alternatives[-1].upper_bounded

    @property
    def range_text(self) -> str:
        """Normalized range text, without alias prefix."""
        return " || ".join(alt.normalized() for alt in self.alternatives)

    @property
    def floor(self) -> Optional[Version]:
        """Lowest version the specifier permits (syntactic lower bound)."""
        if not self.alternatives:
            return None
        return min(alt.lower_bound for alt in self.alternatives)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def satisfies(self, version: VersionLike) -> bool:
        """Return True if the specifier's range permits ``version``."""
        if not self.alternatives:
            return False
        parsed = version if isinstance(version, Version) else parse_version(version)
        if parsed is None:
            return False
        return _npm_spec(self.range_text).match(parsed)

    def is_at_least(self, version: VersionLike) -> bool:
        """Return True if every version the range permits is ``>= version``."""
        parsed = version if isinstance(version, Version) else parse_version(version)
        floor = self.floor
        if parsed is None or floor is None:
            return False
        return floor >= parsed

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, target: Version, *, remove_range: bool = False) -> str:
        """Re-derive this specifier around ``target``, keeping its style.

        ``||`` unions replace their last alternative when ``target`` stays in
        that alternative's major line and gain a new alternative otherwise.
        """
        if not self.alternatives:
            raise ValueError(f"Cannot render a {self.kind.value} specifier")

        if remove_range:
            first = self.alternatives[-1].comparators[0]
            prefix = "v" if first.v_prefix else ""
            return self._with_alias(f"{prefix}{strip_build(target)}")

        *head, last = self.alternatives
        rendered_last = _render_alternative(last, target)

        if not head:
            return self._with_alias(rendered_last)

        written = [alt.written() for alt in head]
        if last.upper_bounded or _same_line(last.lower_bound, target):
            written.append(rendered_last)
        else:
            written.extend([last.written(), rendered_last])
        return self._with_alias(" || ".join(written))

    def widen(self, target: Version) -> str:
        """Append an alternative permitting ``target`` to the existing range."""
        if not self.alternatives:
            raise ValueError(f"Cannot widen a {self.kind.value} specifier")

        last = self.alternatives[-1]
        template = last.comparators[0]
        if last.upper_bounded or len(last.comparators) > 1 or template.is_wildcard:
            template = Comparator(operator="^", parts=("0", "0", "0"))
        addition = _render_alternative(Alternative(comparators=(template,)), target)

        written = " || ".join(alt.written() for alt in self.alternatives)
        return self._with_alias(f"{written} || {addition}")

    def _with_alias(self, text: str) -> str:
        if self.alias is None:
            return text
        return f"{_ALIAS_PREFIX}{self.alias}@{text}"

    def __str__(self) -> str:
        return self.raw


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _same_line(floor: Version, target: Version) -> bool:
    """True when ``target`` stays within the release line starting at ``floor``."""
    if floor.major != target.major:
        return False
    if floor.major == 0:
        return floor.minor == target.minor
    return True


def _format_like(target: Version, template: Comparator) -> str:
    """Format ``target`` with the precision and wildcards of ``template``."""
    target = strip_build(target)
    if target.prerelease or (template.precision >= 3 and not template.wildcard):
        return str(target)

    numbers = [str(target.major), str(target.minor), str(target.patch)]
    precision = max(template.precision, 1)
    parts = numbers[:precision]
    wildcard = template.wildcard
    if wildcard is not None:
        parts += [wildcard] * (len(template.parts) - precision)
    return ".".join(parts)


def _raise_bound(target: Version, bound: Comparator) -> str:
    """Move an exclusive ``<`` bound just past ``target`` at the same granularity."""
    upper = bound.upper_bound()
    if upper is None or (upper.minor == 0 and upper.patch == 0):
        numbers = [target.major + 1, 0, 0]
    elif upper.patch == 0:
        numbers = [target.major, target.minor + 1, 0]
    else:
        numbers = [target.major, target.minor, target.patch + 1]
    precision = max(bound.precision, 1)
    return ".".join(str(n) for n in numbers[:precision])


def _render_alternative(alt: Alternative, target: Version) -> str:
    if alt.hyphen:
        low, high = alt.comparators
        return f"{low.source} - {high.with_version(_format_like(target, high)).source}"

    if alt.upper_bounded:
        rendered: List[Comparator] = []
        for comparator in alt.comparators:
            if comparator.operator == "<":
                rendered.append(comparator.with_version(_raise_bound(target, comparator)))
            elif comparator.operator == "<=":
                rendered.append(comparator.with_version(_format_like(target, comparator)))
            elif comparator.operator in (">", ">=") or comparator.is_wildcard:
                # Plain floors still admit a higher target
                rendered.append(comparator)
            else:
                # Caret, tilde and bare versions carry their own ceiling
                rendered.append(comparator.with_version(_format_like(target, comparator)))
        return " ".join(c.source for c in rendered)

    rendered = []
    for comparator in alt.comparators:
        # ">" would exclude the target itself
        operator = ">=" if comparator.operator == ">" else comparator.operator
        if comparator.is_wildcard and comparator.operator in ("", "="):
            rendered.append(comparator)
            continue
        rendered.append(
            comparator.with_version(_format_like(target, comparator), operator=operator)
        )
    return " ".join(c.source for c in rendered)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def is_non_registry(raw: str) -> bool:
    """Return True for git, URL, path and protocol references."""
    text = raw.strip()
    if text.startswith(_ALIAS_PREFIX):
        return False
    if text.startswith(("./", "../", "/", "~/", "git@")) or text in (".", ".."):
        return True
    if _PROTOCOL_RE.match(text):
        return True
    return bool(_GITHUB_SHORTHAND_RE.match(text))


def _parse_comparator(token: str, raw: str) -> Comparator:
    match = _COMPARATOR_RE.match(token)
    if match is None:
        raise SpecifierParseError(
            f"Invalid comparator {token!r}",
            specifier=raw,
        )
    return Comparator(
        operator=match.group("op") or "",
        parts=tuple(match.group("parts").split(".")),
        prerelease=match.group("pre") or "",
        v_prefix=bool(match.group("v")),
        source=token,
    )


def _parse_alternative(text: str, raw: str) -> Alternative:
    if not text:
        return Alternative(comparators=(Comparator(operator="", parts=("*",), source="*"),))

    hyphen = _HYPHEN_RE.match(text)
    if hyphen is not None:
        low = _parse_comparator(hyphen.group("low"), raw)
        high = _parse_comparator(hyphen.group("high"), raw)
        if low.operator or high.operator:
            raise SpecifierParseError("Hyphen ranges cannot carry operators", specifier=raw)
        return Alternative(comparators=(low, high), hyphen=True)

    return Alternative(
        comparators=tuple(_parse_comparator(token, raw) for token in text.split()),
    )


def _parse_range(raw: str, text: str) -> Tuple[SpecifierKind, Tuple[Alternative, ...]]:
    compact = _OPERATOR_SPACING_RE.sub(r"\1", text.strip())
    alternatives = tuple(
        _parse_alternative(part.strip(), raw) for part in compact.split("||")
    )

    normalized = " || ".join(alt.normalized() for alt in alternatives)
    try:
        _npm_spec(normalized)
    except ValueError as exc:
        raise SpecifierParseError(f"Invalid npm range: {exc}", specifier=raw) from exc

    kind = SpecifierKind.RANGE
    if len(alternatives) == 1 and not alternatives[0].hyphen:
        comparators = alternatives[0].comparators
        if (
            len(comparators) == 1
            and comparators[0].operator in ("", "=")
            and comparators[0].precision == 3
            and not comparators[0].wildcard
        ):
            kind = SpecifierKind.EXACT
    return kind, alternatives


def parse_specifier(raw: str) -> Specifier:
    """Parse a declared version string.

    Args:
        raw: The string from ``package.json`` (e.g. ``"^1.2.3"``).

    Returns:
        A :class:`Specifier`. Non-registry references are returned with
        kind ``non-registry`` and no alternatives.

    Raises:
        SpecifierParseError: The string is neither a valid npm range, a
            dist-tag, nor a recognizable non-registry reference.

    Examples:
        >>> parse_specifier("^1.2.3").kind
        <SpecifierKind.RANGE: 'range'>
        >>> parse_specifier("github:user/repo").kind
        <SpecifierKind.NON_REGISTRY: 'non-registry'>
    """
    if not isinstance(raw, str):
        raise SpecifierParseError(
            f"Specifier must be a string, got {type(raw).__name__}",
            specifier=repr(raw),
        )

    text = raw.strip()
    alias: Optional[str] = None

    if text.startswith(_ALIAS_PREFIX):
        body = text[len(_ALIAS_PREFIX):]
        # Scoped names start with "@", so look for the separator after it
        at = body.find("@", 1)
        if at == -1:
            alias, text = body, ""
        else:
            alias, text = body[:at], body[at + 1:]
        if not alias:
            raise SpecifierParseError("Alias is missing a package name", specifier=raw)
    elif is_non_registry(text):
        return Specifier(raw=raw, kind=SpecifierKind.NON_REGISTRY)

    if text and _TAG_RE.match(text) and not _COMPARATOR_RE.match(text):
        return Specifier(raw=raw, kind=SpecifierKind.TAG, alias=alias, tag=text)

    kind, alternatives = _parse_range(raw, text)
    return Specifier(raw=raw, kind=kind, alternatives=alternatives, alias=alias)


# ---------------------------------------------------------------------------
# Functional API
# ---------------------------------------------------------------------------


def satisfies(specifier: Specifier, version: VersionLike) -> bool:
    """Return True if ``specifier`` permits ``version``."""
    return specifier.satisfies(version)


def is_at_least(specifier: Specifier, version: VersionLike) -> bool:
    """Return True if every version ``specifier`` permits is ``>= version``."""
    return specifier.is_at_least(version)
