"""Unit tests for depbump.core.doctor module.

Test Coverage:
- Optimistic batch: every upgrade passes in a single round
- Bisection: one, several and all upgrades breaking verification
- Failing installs treated like failing tests
- Fatal conditions: dirty tree, missing verifier, failing preflight,
  commands that cannot start
- Snapshot restore on timeout and interrupt
- The manifest left on disk holds exactly the confirmed upgrades
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest

from depbump.utils.process import CommandResult
from depbump.models.manifest import ManifestDocument
from depbump.core.doctor import DoctorState, VerificationController, WorkingTreeState
from depbump.exceptions import DirtyStateError, ProcessError, RunTimeoutError
from depbump.models.decision import DecisionStatus, DependencySection, UpgradeDecision

PROD = DependencySection.DEPENDENCIES

ORIGINAL = {"a": "^1.0.0", "b": "^1.0.0", "c": "^1.0.0", "d": "^1.0.0"}
UPGRADED = {"a": "^2.0.0", "b": "^2.0.0", "c": "^2.0.0", "d": "^2.0.0"}


# ============================================================================
# Fakes
# ============================================================================


def _installed(project_dir: Path) -> Dict[str, str]:
    data = json.loads((project_dir / "package.json").read_text(encoding="utf-8"))
    return data.get("dependencies", {})


def _upgraded(project_dir: Path) -> Set[str]:
    return {name for name, spec in _installed(project_dir).items() if spec == UPGRADED.get(name)}


class FakeInstaller:
    """Records installs; fails when ``breaks`` returns True."""

    def __init__(self, breaks: Optional[Callable[[Set[str]], bool]] = None) -> None:
        self.breaks = breaks
        self.calls: List[Set[str]] = []
        self.error: Optional[BaseException] = None

    def install(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        upgraded = _upgraded(project_dir)
        self.calls.append(upgraded)
        if self.error is not None:
            raise self.error
        if self.breaks is not None and self.breaks(upgraded):
            raise ProcessError("install failed", command=["npm", "install"], exit_code=1, stderr="ERESOLVE")
        # Lockfile follows the manifest
        (project_dir / "package-lock.json").write_text(json.dumps(sorted(upgraded)), encoding="utf-8")
        return CommandResult(args=("npm", "install"), returncode=0)


class FakeVerifier:
    """Fails whenever one of ``culprits`` is upgraded."""

    def __init__(self, culprits: Set[str] = frozenset(), *, error: Optional[BaseException] = None) -> None:
        self.culprits = set(culprits)
        self.error = error
        self.calls: List[Set[str]] = []

    def verify(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        upgraded = _upgraded(project_dir)
        self.calls.append(upgraded)
        if self.error is not None:
            raise self.error
        broken = sorted(upgraded & self.culprits)
        if broken:
            return CommandResult(args=("npm", "test"), returncode=1, stdout=f"FAIL {' '.join(broken)}")
        return CommandResult(args=("npm", "test"), returncode=0, stdout="ok")


class InteractionVerifier(FakeVerifier):
    """Fails only when every one of ``together`` is upgraded at once."""

    def __init__(self, together: Set[str]) -> None:
        super().__init__()
        self.together = set(together)

    def verify(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        upgraded = _upgraded(project_dir)
        self.calls.append(upgraded)
        if self.together <= upgraded:
            return CommandResult(args=("npm", "test"), returncode=1, stdout=f"FAIL {' '.join(sorted(self.together))}")
        return CommandResult(args=("npm", "test"), returncode=0, stdout="ok")


class FakeTree:
    def __init__(self, dirty: bool = False) -> None:
        self.dirty = dirty
        self.checked: List[Path] = []

    def ensure_clean(self, project_dir: Path) -> None:
        self.checked.append(project_dir)
        if self.dirty:
            raise DirtyStateError("Working tree has uncommitted changes", changes=[" M package.json"])


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def project(tmp_path: Path) -> Path:
    text = json.dumps({"name": "app", "dependencies": ORIGINAL}, indent=2) + "\n"
    (tmp_path / "package.json").write_text(text, encoding="utf-8")
    (tmp_path / "package-lock.json").write_text("[]", encoding="utf-8")
    return tmp_path


def _decisions(*names: str) -> List[UpgradeDecision]:
    return [
        UpgradeDecision(
            name=name,
            section=PROD,
            from_specifier=ORIGINAL[name],
            to_specifier=UPGRADED[name],
            to_version="2.0.0",
            status=DecisionStatus.UPGRADE,
            from_version="1.0.0",
        )
        for name in names
    ]


def _controller(
    project: Path,
    names: str = "abc",
    *,
    installer: Optional[FakeInstaller] = None,
    verifier: Optional[FakeVerifier] = None,
    tree: Optional[FakeTree] = None,
    **kwargs: object,
) -> VerificationController:
    return VerificationController(
        ManifestDocument.load(project / "package.json"),
        _decisions(*names),
        installer=installer or FakeInstaller(),
        verifier=verifier or FakeVerifier(),
        tree=tree or FakeTree(),
        **kwargs,  # type: ignore[arg-type]
    )


# ============================================================================
# Test: happy path
# ============================================================================


@pytest.mark.unit
class TestAllPass:
    """Tests for runs where every upgrade passes."""

    def test_single_round(self, project: Path) -> None:
        """Test an all-passing batch costs one round and is kept on disk."""
        session = _controller(project).run()

        assert session.state is DoctorState.DONE
        assert session.ok
        assert session.rounds == 1
        assert {d.name for d in session.confirmed} == {"a", "b", "c"}
        assert session.rejected == []
        assert _installed(project) == {**ORIGINAL, "a": "^2.0.0", "b": "^2.0.0", "c": "^2.0.0"}

    def test_state_history(self, project: Path) -> None:
        session = _controller(project).run()

        assert session.history == [
            DoctorState.INIT,
            DoctorState.SNAPSHOT,
            DoctorState.SELECT_BATCH,
            DoctorState.INSTALL,
            DoctorState.TEST,
            DoctorState.COMMIT,
            DoctorState.DONE,
        ]

    def test_nothing_to_do(self, project: Path) -> None:
        installer = FakeInstaller()

        session = _controller(project, "", installer=installer).run()

        assert session.state is DoctorState.DONE
        assert session.rounds == 0
        assert installer.calls == []


# ============================================================================
# Test: bisection
# ============================================================================


@pytest.mark.unit
class TestBisection:
    """Tests for isolating breaking upgrades."""

    def test_one_culprit_in_three(self, project: Path) -> None:
        """Test B failing among A, B, C is found in three rounds."""
        verifier = FakeVerifier({"b"})

        session = _controller(project, verifier=verifier).run()

        assert session.state is DoctorState.DONE
        assert session.rounds <= 3
        assert {d.name for d in session.confirmed} == {"a", "c"}
        assert [r.decision.name for r in session.rejected] == ["b"]
        assert [d.name for d in session.rejected[0].batch] == ["b", "c", "a"]
        assert "FAIL b" in session.rejected[0].output

        on_disk = _installed(project)
        assert on_disk["b"] == ORIGINAL["b"]
        assert on_disk["a"] == UPGRADED["a"]
        assert on_disk["c"] == UPGRADED["c"]

    def test_pair_only_failure_names_both(self, project: Path) -> None:
        """Test an upgrade that breaks only alongside another reports that partner."""
        session = _controller(project, verifier=InteractionVerifier({"a", "b"})).run()

        assert session.state is DoctorState.DONE
        assert session.rounds == 3
        assert [r.decision.name for r in session.rejected] == ["b"]

        rejection = session.rejected[0]
        assert "a" in [d.name for d in rejection.partners]
        assert rejection.batch[0].name == "b"
        assert rejection.to_json()["partners"] == [d.name for d in rejection.partners]
        assert "FAIL a b" in rejection.output
        assert _installed(project)["b"] == ORIGINAL["b"]

    def test_final_manifest_matches_disk(self, project: Path) -> None:
        session = _controller(project, verifier=FakeVerifier({"b"})).run()

        assert session.final_manifest.dependencies(PROD) == _installed(project)

    def test_every_culprit_rejected(self, project: Path) -> None:
        session = _controller(project, "abcd", verifier=FakeVerifier({"a", "d"})).run()

        assert {d.name for d in session.confirmed} == {"b", "c"}
        assert {r.decision.name for r in session.rejected} == {"a", "d"}
        assert _installed(project) == {**ORIGINAL, "b": "^2.0.0", "c": "^2.0.0"}

    def test_all_fail(self, project: Path) -> None:
        session = _controller(project, verifier=FakeVerifier({"a", "b", "c"})).run()

        assert session.confirmed == []
        assert {r.decision.name for r in session.rejected} == {"a", "b", "c"}
        assert _installed(project) == ORIGINAL

    def test_single_candidate_failing(self, project: Path) -> None:
        """Test a lone failing upgrade is rejected after one round."""
        session = _controller(project, "a", verifier=FakeVerifier({"a"})).run()

        assert session.rounds == 1
        assert [r.decision.name for r in session.rejected] == ["a"]

    def test_install_failure_counts_as_failure(self, project: Path) -> None:
        """Test an install error rejects the upgrade like a failing test."""
        installer = FakeInstaller(breaks=lambda upgraded: "c" in upgraded)

        session = _controller(project, installer=installer).run()

        assert session.state is DoctorState.DONE
        assert [r.decision.name for r in session.rejected] == ["c"]
        assert "ERESOLVE" in session.rejected[0].output

    def test_failed_round_reinstalls_restored_state(self, project: Path) -> None:
        """Test a revert restores the lockfile and reinstalls."""
        installer = FakeInstaller()

        session = _controller(project, "a", installer=installer, verifier=FakeVerifier({"a"})).run()

        assert session.tree is WorkingTreeState.REVERTED
        assert installer.calls == [{"a"}, set()]
        assert (project / "package-lock.json").read_text(encoding="utf-8") == "[]"


# ============================================================================
# Test: fatal conditions
# ============================================================================


@pytest.mark.unit
class TestFatal:
    """Tests for conditions that abort the session."""

    def test_dirty_tree(self, project: Path) -> None:
        """Test a dirty tree is fatal before anything is installed."""
        installer = FakeInstaller()
        verifier = FakeVerifier()

        session = _controller(
            project, installer=installer, verifier=verifier, tree=FakeTree(dirty=True)
        ).run()

        assert session.state is DoctorState.FATAL
        assert isinstance(session.error, DirtyStateError)
        assert installer.calls == []
        assert verifier.calls == []
        assert _installed(project) == ORIGINAL

    def test_missing_verifier(self, project: Path) -> None:
        controller = VerificationController(
            ManifestDocument.load(project / "package.json"),
            _decisions("a"),
            installer=FakeInstaller(),
            verifier=None,
            tree=FakeTree(),
        )

        session = controller.run()

        assert session.state is DoctorState.FATAL
        assert "verification command" in str(session.error)

    def test_preflight_failure(self, project: Path) -> None:
        """Test a project failing before any upgrade is fatal."""

        class AlwaysFails(FakeVerifier):
            def verify(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
                super().verify(project_dir, timeout=timeout)
                return CommandResult(args=("npm", "test"), returncode=1, stdout="broken")

        session = _controller(project, verifier=AlwaysFails(), preflight=True).run()

        assert session.state is DoctorState.FATAL
        assert session.rounds == 0
        assert session.confirmed == []
        assert _installed(project) == ORIGINAL

    def test_preflight_passing_continues(self, project: Path) -> None:
        verifier = FakeVerifier({"b"})

        session = _controller(project, verifier=verifier, preflight=True).run()

        assert session.state is DoctorState.DONE
        assert verifier.calls[0] == set()
        assert session.rounds <= 3

    def test_verifier_cannot_start(self, project: Path) -> None:
        """Test a command that cannot run is fatal, not a rejection."""
        verifier = FakeVerifier(error=ProcessError("Failed to run npm", command=["npm"]))

        session = _controller(project, verifier=verifier).run()

        assert session.state is DoctorState.FATAL
        assert session.rejected == []
        assert _installed(project) == ORIGINAL
        assert session.tree is WorkingTreeState.REVERTED


# ============================================================================
# Test: interruption
# ============================================================================


@pytest.mark.unit
class TestInterruption:
    """Tests for timeouts and interrupts mid-session."""

    def test_timeout_restores_snapshot(self, project: Path) -> None:
        """Test a timeout during verification restores files and re-raises."""
        verifier = FakeVerifier(error=RunTimeoutError(5))
        controller = _controller(project, verifier=verifier)

        with pytest.raises(RunTimeoutError):
            controller.run()

        assert _installed(project) == ORIGINAL
        assert controller.session.tree is WorkingTreeState.REVERTED

    def test_interrupt_keeps_confirmed_upgrades(self, project: Path) -> None:
        """Test an interrupt rolls back to the last committed state only."""
        verifier = FakeVerifier({"b"})
        installer = FakeInstaller()
        controller = _controller(project, installer=installer, verifier=verifier)

        original_verify = verifier.verify

        def interrupt_after_commit(project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
            if controller.session.confirmed:
                raise KeyboardInterrupt
            return original_verify(project_dir, timeout=timeout)

        verifier.verify = interrupt_after_commit  # type: ignore[assignment]

        with pytest.raises(KeyboardInterrupt):
            controller.run()

        assert [d.name for d in controller.session.confirmed] == ["c"]
        assert _installed(project) == {**ORIGINAL, "c": "^2.0.0"}

    def test_expired_deadline(self, project: Path) -> None:
        installer = FakeInstaller()
        controller = _controller(project, installer=installer, timeout=0.0)

        with pytest.raises(RunTimeoutError):
            controller.run()

        assert installer.calls == []
        assert _installed(project) == ORIGINAL
