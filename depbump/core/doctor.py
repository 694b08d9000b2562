"""Verification controller ("doctor" mode) for depbump.

Applies candidate upgrades against a real install and verification cycle
and keeps only the ones that pass. All candidates are first tried as one
optimistic batch; a failing batch is bisected until every failing upgrade
is isolated.

State machine::

    INIT → SNAPSHOT → SELECT_BATCH → INSTALL → TEST → COMMIT | REVERT
         ↑___________________________________________________|
    … → DONE | FATAL

Bisection of a failing group splits it at the midpoint (the head takes
the extra element) and tries the smaller half first:

- the smaller half passes: it is committed, and the other half must
  contain the failure, so it is bisected without trying it as a whole
  again. The committed half stays attached to that failure: when the other half is
  narrowed to one upgrade, the rejection names it together with every
  upgrade confirmed since the failing trial, so a failure that only two
  upgrades cause together is reported as that pair;
- the smaller half fails: it is bisected, then the other half is tried as a fresh
  batch on top of whatever was committed meanwhile.

A known-failing single upgrade is rejected without another round. For
three candidates with one culprit this costs three verification rounds.

Typical usage::

    controller = VerificationController(
        manifest,
        result.upgrades,
        installer=PackageManagerInstaller(),
        verifier=CommandVerifier("npm test"),
    )
    session = controller.run()
    if session.state is DoctorState.DONE:
        print([d.name for d in session.confirmed])
"""

from __future__ import annotations

import time
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from depbump.utils.logger import get_logger
from depbump.models.decision import UpgradeDecision
from depbump.models.manifest import ManifestDocument
from depbump.constants import LOCKFILE_PACKAGE_MANAGERS
from depbump.utils.filesystem import restore_files, snapshot_files
from depbump.utils.process import (
    CommandResult,
    GitWorkingTree,
    Installer,
    Verifier,
    WorkingTree,
)
from depbump.exceptions import (
    ConfigError,
    DepbumpError,
    DirtyStateError,
    DoctorError,
    FileOperationError,
    ProcessError,
    RunTimeoutError,
)

logger = get_logger("doctor")

__all__ = [
    "DoctorSession",
    "DoctorState",
    "Rejection",
    "VerificationController",
    "WorkingTreeState",
]


class DoctorState(str, Enum):
    INIT = "INIT"
    SNAPSHOT = "SNAPSHOT"
    SELECT_BATCH = "SELECT_BATCH"
    INSTALL = "INSTALL"
    TEST = "TEST"
    COMMIT = "COMMIT"
    REVERT = "REVERT"
    DONE = "DONE"
    FATAL = "FATAL"


class WorkingTreeState(str, Enum):
    """State of the project files relative to the last committed snapshot."""

    CLEAN = "clean"
    MODIFIED = "modified"
    REVERTED = "reverted"


@dataclass(frozen=True)
class _Evidence:
    batch: Tuple[UpgradeDecision, ...]
    output: str
    # Upgrades from the failing trial confirmed since it ran
    partners: Tuple[UpgradeDecision, ...] = ()


@dataclass(frozen=True)
class Rejection:
    """A rejected upgrade and the failure it was blamed for.

    Attributes:
        decision: The upgrade that was rolled back.
        batch: The failing combination: the rejected upgrade first,
            followed by upgrades from the same failing trial that passed
            without it and were confirmed while isolating it. A failure
            that needs two upgrades together names both here.
        output: Captured install or verification output of that failure.
    """

    decision: UpgradeDecision
    batch: Tuple[UpgradeDecision, ...]
    output: str

    @property
    def partners(self) -> Tuple[UpgradeDecision, ...]:
        return self.batch[1:]

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.decision.name,
            "section": self.decision.section.value,
            "to": self.decision.to_specifier,
            "batch": [d.name for d in self.batch],
            "partners": [d.name for d in self.partners],
            "output": self.output,
        }


@dataclass
class DoctorSession:
    """Mutable state of one doctor run.

    Discarded when the run ends; nothing here is persisted.
    """

    manifest: ManifestDocument
    queue: List[UpgradeDecision] = field(default_factory=list)
    snapshot: Dict[str, Optional[bytes]] = field(default_factory=dict, repr=False)
    confirmed: List[UpgradeDecision] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)
    tree: WorkingTreeState = WorkingTreeState.CLEAN
    state: DoctorState = DoctorState.INIT
    history: List[DoctorState] = field(default_factory=lambda: [DoctorState.INIT])
    rounds: int = 0
    error: Optional[DepbumpError] = None

    @property
    def ok(self) -> bool:
        return self.state is DoctorState.DONE

    @property
    def final_manifest(self) -> ManifestDocument:
        """The original manifest with exactly the confirmed upgrades applied."""
        return self.manifest.with_decisions(self.confirmed)

    def transition(self, state: DoctorState) -> None:
        logger.debug("doctor: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def to_json(self) -> Dict[str, Any]:
        return {
            "manifest": str(self.manifest.path),
            "state": self.state.value,
            "rounds": self.rounds,
            "confirmed": [d.to_json() for d in self.confirmed],
            "rejected": [r.to_json() for r in self.rejected],
            "error": str(self.error) if self.error else None,
        }


class VerificationController:
    """Runs the doctor state machine for one manifest.

    Args:
        manifest: The manifest as it is on disk.
        decisions: Candidate upgrades, in the order they should be tried.
        installer: Package manager install step.
        verifier: Verification command; ``None`` means none configured.
        tree: Working-tree guard, git by default.
        preflight: Install and verify the untouched project first.
        timeout: Seconds left for the whole session (``None`` for no limit).
    """

    def __init__(
        self,
        manifest: ManifestDocument,
        decisions: Sequence[UpgradeDecision],
        *,
        installer: Installer,
        verifier: Optional[Verifier],
        tree: Optional[WorkingTree] = None,
        preflight: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        self.manifest = manifest
        self.decisions = [d for d in decisions if not d.unchanged]
        self.installer = installer
        self.verifier = verifier
        self.tree = tree if tree is not None else GitWorkingTree()
        self.preflight = preflight
        self.timeout = timeout
        self.project_dir: Path = manifest.directory
        self._deadline: Optional[float] = None
        self.session = DoctorSession(manifest=manifest, queue=list(self.decisions))

    @property
    def tracked_files(self) -> List[str]:
        return [self.manifest.path.name, *LOCKFILE_PACKAGE_MANAGERS]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> DoctorSession:
        """Drive the session to ``DONE`` or ``FATAL``.

        Fatal conditions are recorded on the returned session rather than
        raised. A timeout or interrupt during install or verification
        restores the last committed snapshot and is then re-raised.
        """
        session = self.session
        if self.timeout is not None:
            self._deadline = time.monotonic() + self.timeout

        try:
            self._init()
            self._snapshot()
            if self.preflight:
                self._run_preflight()
            self._resolve(list(session.queue), known_failing=False, evidence=None)
        except (ConfigError, DirtyStateError, DoctorError) as exc:
            logger.error("Doctor aborted: %s", exc)
            if session.tree is WorkingTreeState.MODIFIED:
                self._restore_after_fatal()
            session.error = exc
            session.transition(DoctorState.FATAL)
            return session

        session.queue = []
        session.transition(DoctorState.DONE)
        logger.info(
            "Doctor finished: %d confirmed, %d rejected in %d round(s)",
            len(session.confirmed),
            len(session.rejected),
            session.rounds,
        )
        return session

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _init(self) -> None:
        if self.verifier is None:
            raise ConfigError(
                "Doctor mode needs a verification command",
                option="doctor_test",
            )
        self.tree.ensure_clean(self.project_dir)

    def _snapshot(self) -> None:
        self.session.transition(DoctorState.SNAPSHOT)
        try:
            self.session.snapshot = snapshot_files(self.project_dir, self.tracked_files)
        except FileOperationError as exc:
            raise DoctorError(f"Cannot snapshot project files: {exc}") from exc

    def _run_preflight(self) -> None:
        logger.info("Verifying the project before upgrading")
        passed, output = self._install_and_test()
        if not passed:
            self._revert(reinstall=False)
            raise DoctorError(
                "Verification fails before upgrading; fix the project first",
                details={"output": output[-500:]} if output else None,
            )
        self._refresh_snapshot()

    def _resolve(
        self,
        group: List[UpgradeDecision],
        *,
        known_failing: bool,
        evidence: Optional[_Evidence],
    ) -> None:
        if not group:
            return

        self.session.transition(DoctorState.SELECT_BATCH)
        if not known_failing:
            passed, output = self._trial(group)
            if passed:
                return
            evidence = _Evidence(tuple(group), output)

        assert evidence is not None
        if len(group) == 1:
            self._reject(group[0], evidence)
            return

        middle = (len(group) + 1) // 2
        head, tail = group[:middle], group[middle:]
        first, other = (tail, head) if len(tail) < len(head) else (head, tail)

        self.session.transition(DoctorState.SELECT_BATCH)
        passed, output = self._trial(first)
        if passed:
            # The failure lies in the other half, on top of what is committed now
            self._resolve(
                other,
                known_failing=True,
                evidence=_Evidence(
                    tuple(other),
                    evidence.output,
                    partners=evidence.partners + tuple(first),
                ),
            )
        else:
            self._resolve(
                first,
                known_failing=True,
                evidence=_Evidence(tuple(first), output),
            )
            self._resolve(other, known_failing=False, evidence=None)

    def _trial(self, batch: List[UpgradeDecision]) -> Tuple[bool, str]:
        """Apply ``batch`` on top of the confirmed upgrades and verify it."""
        session = self.session
        session.rounds += 1
        logger.info(
            "Round %d: trying %s",
            session.rounds,
            ", ".join(d.name for d in batch),
        )

        session.transition(DoctorState.INSTALL)
        candidate = self.manifest.with_decisions([*session.confirmed, *batch])
        try:
            candidate.write()
        except FileOperationError as exc:
            raise DoctorError(f"Cannot write manifest: {exc}") from exc
        session.tree = WorkingTreeState.MODIFIED

        passed, output = self._install_and_test()
        if passed:
            self._commit(batch)
        else:
            self._revert()
        return passed, output

    def _install_and_test(self) -> Tuple[bool, str]:
        session = self.session
        if session.state is not DoctorState.INSTALL:
            session.transition(DoctorState.INSTALL)

        try:
            try:
                self.installer.install(self.project_dir, timeout=self._remaining())
            except ProcessError as exc:
                if exc.exit_code is None:
                    raise DoctorError(f"Cannot run install command: {exc.message}") from exc
                logger.info("Install failed (exit %s)", exc.exit_code)
                return False, exc.stderr or exc.message

            session.transition(DoctorState.TEST)
            assert self.verifier is not None
            try:
                result: CommandResult = self.verifier.verify(
                    self.project_dir, timeout=self._remaining()
                )
            except ProcessError as exc:
                raise DoctorError(f"Cannot run verification command: {exc.message}") from exc
        except (RunTimeoutError, KeyboardInterrupt):
            logger.warning("Interrupted; restoring the last verified state")
            self._revert(reinstall=False)
            raise

        logger.info("Verification %s", "passed" if result.ok else "failed")
        return result.ok, result.output

    def _commit(self, batch: List[UpgradeDecision]) -> None:
        session = self.session
        session.transition(DoctorState.COMMIT)
        session.confirmed.extend(batch)
        session.tree = WorkingTreeState.CLEAN
        for decision in batch:
            if decision in session.queue:
                session.queue.remove(decision)
        self._refresh_snapshot()

    def _refresh_snapshot(self) -> None:
        try:
            self.session.snapshot = snapshot_files(self.project_dir, self.tracked_files)
        except FileOperationError as exc:
            raise DoctorError(f"Cannot snapshot project files: {exc}") from exc

    def _revert(self, *, reinstall: bool = True) -> None:
        session = self.session
        session.transition(DoctorState.REVERT)
        try:
            restore_files(self.project_dir, session.snapshot)
        except FileOperationError as exc:
            raise DoctorError(f"Failed to restore snapshot: {exc}") from exc

        if reinstall:
            try:
                self.installer.install(self.project_dir, timeout=self._remaining())
            except ProcessError as exc:
                raise DoctorError(
                    f"Reinstall after rollback failed: {exc.message}",
                    details={"exit_code": exc.exit_code},
                ) from exc
        session.tree = WorkingTreeState.REVERTED

    def _restore_after_fatal(self) -> None:
        try:
            restore_files(self.project_dir, self.session.snapshot)
        except FileOperationError as exc:
            logger.error("Could not restore %s: %s", self.project_dir, exc)
            return
        self.session.tree = WorkingTreeState.REVERTED

    def _reject(self, decision: UpgradeDecision, evidence: _Evidence) -> None:
        logger.warning("Rejecting %s -> %s", decision.name, decision.to_specifier)
        self.session.rejected.append(
            Rejection(
                decision=decision,
                batch=(decision, *evidence.partners),
                output=evidence.output,
            )
        )
        if decision in self.session.queue:
            self.session.queue.remove(decision)

    # ------------------------------------------------------------------
    # Deadline
    # ------------------------------------------------------------------

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise RunTimeoutError(self.timeout or 0)
        return remaining
