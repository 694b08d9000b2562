"""Workspace and deep-mode aggregation for depbump.

Discovers the manifests a run should cover and runs the differ once per
manifest. Results are keyed by manifest path relative to the root; a
manifest that fails to load or diff is reported on its own without
stopping its siblings.

Workspace globs come from the root ``package.json`` (``"workspaces"`` as a
list, or yarn's ``{"packages": [...]}``) or from ``pnpm-workspace.yaml``.

A manifest below the root whose directory holds a ``depbump.toml`` is
diffed with that file layered over the run options.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import yaml

from depbump.utils.logger import get_logger
from depbump.config import apply_manifest_config, load_manifest_config
from depbump.models.options import UpgradeOptions
from depbump.models.manifest import ManifestDocument
from depbump.core.differ import DiffResult, ManifestDiffer
from depbump.utils.filesystem import find_manifest_files, safe_read_file
from depbump.exceptions import DepbumpError, FileOperationError, WorkspaceError
from depbump.constants import IGNORED_DIRECTORIES, MANIFEST_FILENAME, PNPM_WORKSPACE_FILE

logger = get_logger("workspaces")

__all__ = [
    "AggregateResult",
    "Aggregator",
    "ManifestReport",
    "discover_manifests",
    "workspace_patterns",
]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def workspace_patterns(root_manifest: ManifestDocument) -> List[str]:
    """Return the workspace globs declared for ``root_manifest``.

    Raises:
        WorkspaceError: Neither ``package.json`` nor ``pnpm-workspace.yaml``
            declares workspaces, or the declaration is malformed.
    """
    patterns = root_manifest.workspaces
    if patterns is not None:
        return patterns

    pnpm_file = root_manifest.directory / PNPM_WORKSPACE_FILE
    if pnpm_file.is_file():
        try:
            parsed = yaml.safe_load(safe_read_file(pnpm_file))
        except yaml.YAMLError as exc:
            raise WorkspaceError(
                f"Invalid {PNPM_WORKSPACE_FILE}: {exc}",
                manifest_path=str(pnpm_file),
            ) from exc

        packages = parsed.get("packages") if isinstance(parsed, dict) else None
        if isinstance(packages, list) and all(isinstance(p, str) for p in packages):
            return list(packages)
        raise WorkspaceError(
            f"{PNPM_WORKSPACE_FILE} has no packages list",
            manifest_path=str(pnpm_file),
        )

    raise WorkspaceError(
        "No workspaces declared in package.json or pnpm-workspace.yaml",
        manifest_path=str(root_manifest.path),
    )


def _expand_patterns(root: Path, patterns: List[str]) -> List[Path]:
    included: Dict[Path, None] = {}
    excluded = set()

    for pattern in patterns:
        negate = pattern.startswith("!")
        glob = pattern[1:] if negate else pattern
        glob = glob.strip().rstrip("/")
        if glob.startswith("./"):
            glob = glob[2:]
        if not glob:
            continue

        for directory in sorted(root.glob(glob)):
            manifest = directory / MANIFEST_FILENAME
            relative = directory.relative_to(root).parts
            if any(part in IGNORED_DIRECTORIES for part in relative):
                continue
            if not manifest.is_file():
                continue
            if negate:
                excluded.add(manifest.resolve())
            else:
                included[manifest.resolve()] = None

    return [path for path in included if path not in excluded]


def discover_manifests(root: Union[str, Path], options: UpgradeOptions) -> List[Path]:
    """List the manifests a run covers, root first.

    Scope:

    - default: only ``<root>/package.json``
    - ``deep``: every ``package.json`` below ``root`` outside ``node_modules``
    - ``workspaces``: workspace manifests only
    - ``with_workspaces``: root manifest plus workspace manifests
    - ``workspace``: only the named workspaces (by package name or directory)

    Raises:
        FileOperationError: The root manifest is missing.
        ParseError: The root manifest is not valid JSON.
        WorkspaceError: Workspaces were requested but none are declared, or a
            named workspace does not exist.
    """
    root_dir = Path(root).resolve()
    root_manifest_path = root_dir / MANIFEST_FILENAME

    if options.deep:
        paths = find_manifest_files(root_dir)
        if root_manifest_path in paths:
            paths.remove(root_manifest_path)
            paths.insert(0, root_manifest_path)
        return paths

    if not root_manifest_path.is_file():
        raise FileOperationError(
            f"No {MANIFEST_FILENAME} found in {root_dir}",
            file_path=str(root_manifest_path),
            operation="read",
        )

    if not options.uses_workspaces:
        return [root_manifest_path]

    root_manifest = ManifestDocument.load(root_manifest_path)
    members = _expand_patterns(root_dir, workspace_patterns(root_manifest))
    logger.debug("Found %d workspace manifests", len(members))

    if options.workspace:
        selected = []
        for name in options.workspace:
            matches = [
                path
                for path in members
                if path.parent.name == name or ManifestDocument.load(path).name == name
            ]
            if not matches:
                raise WorkspaceError(
                    f"Workspace '{name}' not found",
                    manifest_path=str(root_manifest_path),
                )
            selected.extend(m for m in matches if m not in selected)
        members = selected

    if options.with_workspaces:
        return [root_manifest_path, *members]
    return members


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass
class ManifestReport:
    """Outcome for one manifest: a diff result or the error that stopped it."""

    path: str
    result: Optional[DiffResult] = None
    error: Optional[DepbumpError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path}
        if self.result is not None:
            data.update(self.result.to_json())
            data["manifest"] = self.path
        if self.error is not None:
            data["error"] = str(self.error)
        return data


@dataclass
class AggregateResult:
    root: Path
    reports: Dict[str, ManifestReport] = field(default_factory=dict)

    @property
    def results(self) -> List[DiffResult]:
        return [r.result for r in self.reports.values() if r.result is not None]

    @property
    def errors(self) -> List[ManifestReport]:
        return [r for r in self.reports.values() if r.error is not None]

    @property
    def has_upgrades(self) -> bool:
        return any(result.has_upgrades for result in self.results)

    def to_json(self) -> Dict[str, Any]:
        return {path: report.to_json() for path, report in self.reports.items()}


class Aggregator:
    """Runs a :class:`ManifestDiffer` over every discovered manifest.

    Args:
        root: Project root directory.
        differ: Differ sharing one registry cache across manifests.
        options: Run-wide options (scope flags).
    """

    def __init__(
        self,
        root: Union[str, Path],
        differ: ManifestDiffer,
        options: UpgradeOptions,
    ) -> None:
        self.root = Path(root).resolve()
        self.differ = differ
        self.options = options

    def relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    async def run(self) -> AggregateResult:
        aggregate = AggregateResult(root=self.root)

        try:
            paths = discover_manifests(self.root, self.options)
        except DepbumpError as exc:
            key = MANIFEST_FILENAME
            aggregate.reports[key] = ManifestReport(path=key, error=exc)
            return aggregate

        reports = await asyncio.gather(*(self._diff_one(path) for path in paths))
        for report in reports:
            aggregate.reports[report.path] = report
        return aggregate

    def _differ_for(self, path: Path) -> ManifestDiffer:
        """The differ for one manifest, honouring its directory's config.

        Raises:
            ConfigError: The directory's ``depbump.toml`` is invalid.
        """
        directory = path.resolve().parent
        if directory == self.root:
            return self.differ

        config = load_manifest_config(directory)
        if config is None:
            return self.differ

        options = apply_manifest_config(self.options, config, merge=self.options.merge_config)
        return self.differ if options is self.options else self.differ.with_options(options)

    async def _diff_one(self, path: Path) -> ManifestReport:
        key = self.relative(path)
        try:
            manifest = ManifestDocument.load(path)
            result = await self._differ_for(path).diff(manifest)
        except DepbumpError as exc:
            logger.error("%s: %s", key, exc)
            return ManifestReport(path=key, error=exc)
        return ManifestReport(path=key, result=result)
