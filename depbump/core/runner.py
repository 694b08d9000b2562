"""Run orchestration for depbump.

Ties discovery, decision computation, write-back and doctor mode together
under one global deadline and returns a typed :class:`RunOutcome`. Nothing
here exits the process; the CLI maps outcomes to exit codes.

Typical usage::

    options = UpgradeOptions(target=TargetPolicy.MINOR)
    outcome = check_project(".", options)
    for result in outcome.aggregate.results:
        print(result.upgrades)
"""

from __future__ import annotations

import time
import asyncio
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from depbump.utils.http import HTTPClient
from depbump.utils.logger import get_logger
from depbump.core.registry import NpmRegistry
from depbump.core.differ import ManifestDiffer
from depbump.models.options import UpgradeOptions
from depbump.core.confirm import DecisionProvider
from depbump.core.workspaces import AggregateResult, Aggregator
from depbump.core.doctor import DoctorSession, VerificationController
from depbump.exceptions import DepbumpError, ProcessError, RunTimeoutError
from depbump.utils.process import (
    CommandVerifier,
    Installer,
    PackageManagerInstaller,
    Verifier,
    WorkingTree,
    detect_package_manager,
)

logger = get_logger("runner")

__all__ = [
    "RunOutcome",
    "RunStatus",
    "check_project",
    "compute_decisions",
    "doctor_project",
    "upgrade_project",
]

PathLike = Union[str, Path]


class RunStatus(str, Enum):
    OK = "ok"
    FATAL = "fatal"


@dataclass
class RunOutcome:
    """Result of a whole run.

    Attributes:
        status: ``ok`` or ``fatal``.
        aggregate: Per-manifest decisions, when they were computed.
        written: Manifests written back to disk.
        backups: Backup files created before writing.
        installed: Project directories where an install ran.
        sessions: Doctor sessions keyed by relative manifest path.
        error: The error that made the run fatal.
    """

    status: RunStatus = RunStatus.OK
    aggregate: Optional[AggregateResult] = None
    written: List[Path] = field(default_factory=list)
    backups: List[Path] = field(default_factory=list)
    installed: List[Path] = field(default_factory=list)
    sessions: Dict[str, DoctorSession] = field(default_factory=dict)
    error: Optional[DepbumpError] = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.OK

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def fail(self, error: DepbumpError) -> "RunOutcome":
        self.status = RunStatus.FATAL
        self.error = error
        return self

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "manifests": self.aggregate.to_json() if self.aggregate else {},
        }
        if self.written:
            data["written"] = [str(p) for p in self.written]
        if self.sessions:
            data["doctor"] = {path: s.to_json() for path, s in self.sessions.items()}
        if self.error is not None:
            data["error"] = str(self.error)
        return data


# ---------------------------------------------------------------------------
# Decision computation
# ---------------------------------------------------------------------------


async def _aggregate(root: PathLike, options: UpgradeOptions) -> AggregateResult:
    async with HTTPClient(
        timeout=options.request_timeout,
        token=options.registry_token,
        strict_ssl=options.strict_ssl,
    ) as client:
        registry = NpmRegistry(
            client,
            registry=options.registry,
            concurrent_limit=options.concurrency,
        )
        differ = ManifestDiffer(registry, options)
        return await Aggregator(root, differ, options).run()


async def _aggregate_with_deadline(root: PathLike, options: UpgradeOptions) -> AggregateResult:
    if options.timeout is None:
        return await _aggregate(root, options)
    try:
        return await asyncio.wait_for(_aggregate(root, options), timeout=options.timeout)
    except asyncio.TimeoutError as exc:
        raise RunTimeoutError(options.timeout) from exc


def compute_decisions(root: PathLike, options: UpgradeOptions) -> AggregateResult:
    """Discover manifests and compute decisions for each.

    Raises:
        RunTimeoutError: The global timeout expired first.
    """
    return asyncio.run(_aggregate_with_deadline(root, options))


def _decide(root: PathLike, options: UpgradeOptions) -> RunOutcome:
    outcome = RunOutcome()
    try:
        outcome.aggregate = compute_decisions(root, options)
    except RunTimeoutError as exc:
        logger.error("%s", exc)
        return outcome.fail(exc)

    reports = list(outcome.aggregate.reports.values())
    # One bad manifest among many is reported, not fatal
    if reports and all(not report.ok for report in reports):
        error = reports[0].error
        assert error is not None
        return outcome.fail(error)
    return outcome


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def check_project(root: PathLike, options: UpgradeOptions) -> RunOutcome:
    """Compute decisions without touching any file."""
    return _decide(root, options)


def upgrade_project(
    root: PathLike,
    options: UpgradeOptions,
    provider: DecisionProvider,
    *,
    backup: bool = False,
    install: Optional[bool] = None,
    installer: Optional[Installer] = None,
    review: Optional[Callable[[AggregateResult], None]] = None,
) -> RunOutcome:
    """Compute decisions and write upgraded manifests.

    Args:
        root: Project root.
        options: Run-wide options.
        provider: Answers "apply?" and, when ``install`` is ``None``,
            "install now?".
        backup: Keep a timestamped copy of each manifest before writing.
        install: Run the package manager afterwards (``None`` asks).
        installer: Install step override, mainly for tests.
        review: Called with the decisions before anything is written.
    """
    outcome = _decide(root, options)
    if outcome.aggregate is not None and review is not None:
        review(outcome.aggregate)
    if not outcome.ok or outcome.aggregate is None:
        return outcome

    pending = [r for r in outcome.aggregate.results if r.has_upgrades]
    if not pending:
        return outcome

    count = sum(len(r.upgrades) for r in pending)
    if not provider.confirm(f"Apply {count} upgrade(s)?", default=True):
        logger.info("Upgrade cancelled")
        return outcome

    try:
        for result in pending:
            updated = result.apply()
            backup_path = updated.write(create_backup=backup)
            outcome.written.append(updated.path)
            if backup_path is not None:
                outcome.backups.append(backup_path)
    except DepbumpError as exc:
        return outcome.fail(exc)

    if install is None:
        manager = options.package_manager or detect_package_manager(Path(root))
        install = provider.confirm(f"Run {manager} install now?", default=False)
    if not install:
        return outcome

    step = installer or PackageManagerInstaller(options.package_manager, options.doctor_install)
    try:
        for directory in dict.fromkeys(path.parent for path in outcome.written):
            step.install(directory)
            outcome.installed.append(directory)
    except ProcessError as exc:
        return outcome.fail(exc)
    return outcome


def doctor_project(
    root: PathLike,
    options: UpgradeOptions,
    *,
    installer: Optional[Installer] = None,
    verifier: Optional[Verifier] = None,
    tree: Optional[WorkingTree] = None,
) -> RunOutcome:
    """Verify upgrades by install and test, keeping only those that pass.

    Manifests are processed one after another; the first fatal session
    stops the run. A timeout during a session restores its last verified
    state and ends the run as fatal.
    """
    started = time.monotonic()
    outcome = _decide(root, options)
    if not outcome.ok or outcome.aggregate is None:
        return outcome

    step = installer or PackageManagerInstaller(options.package_manager, options.doctor_install)
    check = verifier
    if check is None and options.doctor_test:
        check = CommandVerifier(options.doctor_test)

    for path, report in outcome.aggregate.reports.items():
        if report.result is None or not report.result.has_upgrades:
            continue

        remaining: Optional[float] = None
        if options.timeout is not None:
            remaining = options.timeout - (time.monotonic() - started)
            if remaining <= 0:
                return outcome.fail(RunTimeoutError(options.timeout))

        controller = VerificationController(
            report.result.manifest,
            report.result.upgrades,
            installer=step,
            verifier=check,
            tree=tree,
            preflight=options.preflight,
            timeout=remaining,
        )
        try:
            session = controller.run()
        except RunTimeoutError:
            outcome.sessions[path] = controller.session
            return outcome.fail(RunTimeoutError(options.timeout or 0))

        outcome.sessions[path] = session
        if session.error is not None:
            return outcome.fail(session.error)

        if session.confirmed:
            outcome.written.append(session.manifest.path)

    return outcome
