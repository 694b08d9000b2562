"""
Manifest document model for depbump.

A :class:`ManifestDocument` holds the text of one ``package.json`` and its
parsed JSON. Applying upgrades never reserializes the document: only the
string values of the affected dependency entries are replaced, so key
order, indentation, trailing newlines and unrelated fields are kept
byte for byte.
"""

from __future__ import annotations

import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from depbump.utils.logger import get_logger
from depbump.exceptions import ParseError, WorkspaceError
from depbump.utils.filesystem import safe_read_file, safe_write_file
from depbump.models.decision import DependencyKey, DependencySection, UpgradeDecision

logger = get_logger("manifest")

__all__ = ["ManifestDocument"]

_WHITESPACE = " \t\r\n"


# ---------------------------------------------------------------------------
# JSON text scanning
# ---------------------------------------------------------------------------
# These helpers walk text that ``json.loads`` has already accepted, so they
# assume well-formed input.


def _skip_ws(text: str, index: int) -> int:
    while index < len(text) and text[index] in _WHITESPACE:
        index += 1
    return index


def _string_end(text: str, index: int) -> int:
    """Return the index of the closing quote of the string opening at ``index``."""
    index += 1
    while text[index] != '"':
        index += 2 if text[index] == "\\" else 1
    return index


def _container_end(text: str, index: int) -> int:
    """Return the index of the bracket closing the container opening at ``index``."""
    depth = 0
    while True:
        char = text[index]
        if char == '"':
            index = _string_end(text, index)
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return index
        index += 1


def _value_end(text: str, index: int) -> int:
    """Return the index just past the JSON value starting at ``index``."""
    char = text[index]
    if char == '"':
        return _string_end(text, index) + 1
    if char in "{[":
        return _container_end(text, index) + 1
    while index < len(text) and text[index] not in ",}]" + _WHITESPACE:
        index += 1
    return index


def _iter_members(text: str, open_index: int) -> Iterator[Tuple[str, int, int]]:
    """Yield ``(key, value_start, value_end)`` for each member of an object."""
    index = open_index + 1
    while True:
        index = _skip_ws(text, index)
        char = text[index]
        if char == "}":
            return
        if char == ",":
            index += 1
            continue

        key_end = _string_end(text, index)
        key = json.loads(text[index : key_end + 1])
        index = _skip_ws(text, key_end + 1) + 1  # past ':'
        value_start = _skip_ws(text, index)
        value_end = _value_end(text, value_start)
        yield key, value_start, value_end
        index = value_end


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ManifestDocument:
    """A parsed ``package.json``.

    Attributes:
        path: Location of the manifest on disk.
        text: Original document text.
        data: Parsed JSON object.

    Example::

        >>> doc = ManifestDocument.load("package.json")
        >>> doc.dependencies(DependencySection.DEPENDENCIES)
        {'react': '^18.2.0'}
    """

    path: Path
    text: str
    data: Mapping[str, Any] = field(repr=False, compare=False)

    # ------------------------------------------------------------------
    # Loading & saving
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ManifestDocument":
        """Read and parse a manifest from disk.

        Raises:
            FileOperationError: The file cannot be read.
            ParseError: The file is not a JSON object.
        """
        manifest_path = Path(path)
        return cls.from_text(safe_read_file(manifest_path), manifest_path)

    @classmethod
    def from_text(cls, text: str, path: Union[str, Path] = "package.json") -> "ManifestDocument":
        """Parse manifest ``text`` that notionally lives at ``path``."""
        manifest_path = Path(path)
        # Editors on Windows sometimes leave a BOM
        body = text[1:] if text.startswith("\ufeff") else text

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"Invalid JSON: {exc.msg}",
                line_number=exc.lineno,
                file_path=str(manifest_path),
            ) from exc

        if not isinstance(data, dict):
            raise ParseError(
                "Manifest root must be a JSON object",
                file_path=str(manifest_path),
            )

        return cls(path=manifest_path, text=text, data=data)

    def write(self, *, create_backup: bool = False) -> Optional[Path]:
        """Write the document text to :attr:`path`.

        Returns:
            Path to the backup file, when one was created.
        """
        logger.debug("Writing manifest %s", self.path)
        return safe_write_file(self.path, self.text, create_backup=create_backup)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def name(self) -> Optional[str]:
        value = self.data.get("name")
        return value if isinstance(value, str) else None

    @property
    def directory(self) -> Path:
        return self.path.parent

    def dependencies(self, section: DependencySection) -> Dict[str, Any]:
        """Return the raw entries of ``section`` (empty if absent)."""
        value = self.data.get(section.value)
        return dict(value) if isinstance(value, dict) else {}

    def iter_dependencies(
        self,
        sections: Sequence[DependencySection],
    ) -> Iterator[Tuple[DependencySection, str, Any]]:
        """Yield ``(section, name, raw_specifier)`` for every entry."""
        for section in sections:
            for name, raw in self.dependencies(section).items():
                yield section, name, raw

    def specifier(self, key: DependencyKey) -> Optional[Any]:
        return self.dependencies(key.section).get(key.name)

    @property
    def workspaces(self) -> Optional[List[str]]:
        """Workspace glob patterns, or ``None`` when none are declared.

        Accepts both ``"workspaces": [...]`` and the yarn-style
        ``"workspaces": {"packages": [...]}``.

        Raises:
            WorkspaceError: The declaration is not a list of strings.
        """
        value = self.data.get("workspaces")
        if isinstance(value, dict):
            value = value.get("packages")
        if value is None:
            return None

        if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
            raise WorkspaceError(
                "The workspaces field must be a list of glob patterns",
                manifest_path=str(self.path),
            )
        return list(value)

    # ------------------------------------------------------------------
    # Rewriting
    # ------------------------------------------------------------------

    def with_decisions(self, decisions: Iterable[UpgradeDecision]) -> "ManifestDocument":
        """Return a copy with every upgrade decision applied."""
        changes = {
            decision.key: decision.to_specifier
            for decision in decisions
            if not decision.unchanged
        }
        return self.with_specifiers(changes)

    def with_specifiers(self, changes: Mapping[DependencyKey, str]) -> "ManifestDocument":
        """Return a copy whose listed entries carry new specifier strings.

        Entries that are missing or not plain strings are left alone.
        """
        if not changes:
            return self

        by_section: Dict[str, Dict[str, str]] = {}
        for key, value in changes.items():
            by_section.setdefault(key.section.value, {})[key.name] = value

        root = _skip_ws(self.text, 1 if self.text.startswith("\ufeff") else 0)
        edits: List[Tuple[int, int, str]] = []

        for section, value_start, _ in _iter_members(self.text, root):
            wanted = by_section.get(section)
            if not wanted or self.text[value_start] != "{":
                continue
            for name, start, end in _iter_members(self.text, value_start):
                if name in wanted and self.text[start] == '"':
                    edits.append((start, end, json.dumps(wanted[name], ensure_ascii=False)))

        text = self.text
        for start, end, replacement in sorted(edits, reverse=True):
            text = text[:start] + replacement + text[end:]

        return ManifestDocument.from_text(text, self.path)
