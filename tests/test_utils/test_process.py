from __future__ import annotations

import pytest
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from depbump.utils.process import (
    CommandResult,
    CommandVerifier,
    GitWorkingTree,
    PackageManagerInstaller,
    detect_package_manager,
    run_command,
)
from depbump.exceptions import DirtyStateError, ProcessError, RunTimeoutError


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    completed = MagicMock(spec=subprocess.CompletedProcess)
    completed.returncode = returncode
    completed.stdout = stdout
    completed.stderr = stderr
    return completed


@pytest.mark.unit
class TestCommandResult:
    def test_ok(self) -> None:
        assert CommandResult(args=("npm", "test"), returncode=0).ok
        assert not CommandResult(args=("npm", "test"), returncode=1).ok

    def test_output_joins_streams(self) -> None:
        result = CommandResult(args=("npm", "test"), returncode=1, stdout="out\n", stderr="err\n")

        assert result.output == "out\n\nerr"


@pytest.mark.unit
class TestRunCommand:
    """Tests for run_command."""

    def test_captures_output(self, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=_completed(0, "done")) as mock_run:
            result = run_command(["npm", "test"], cwd=tmp_path, timeout=30)

        mock_run.assert_called_once_with(
            ["npm", "test"], cwd=str(tmp_path), capture_output=True, text=True, timeout=30
        )
        assert result == CommandResult(args=("npm", "test"), returncode=0, stdout="done")

    def test_nonzero_exit_is_returned(self, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=_completed(2, stderr="boom")):
            result = run_command(["npm", "test"], cwd=tmp_path)

        assert result.returncode == 2
        assert result.stderr == "boom"

    def test_missing_program(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("no such file")):
            with pytest.raises(ProcessError) as exc_info:
                run_command(["pnpm", "install"], cwd=tmp_path)

        assert exc_info.value.exit_code is None

    def test_timeout(self, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["npm"], 5)):
            with pytest.raises(RunTimeoutError):
                run_command(["npm", "test"], cwd=tmp_path, timeout=5)


@pytest.mark.unit
class TestDetectPackageManager:
    @pytest.mark.parametrize(
        "lockfile, expected",
        [
            ("package-lock.json", "npm"),
            ("yarn.lock", "yarn"),
            ("pnpm-lock.yaml", "pnpm"),
            ("bun.lockb", "bun"),
        ],
    )
    def test_from_lockfile(self, tmp_path: Path, lockfile: str, expected: str) -> None:
        (tmp_path / lockfile).write_text("")

        assert detect_package_manager(tmp_path) == expected

    def test_defaults_to_npm(self, tmp_path: Path) -> None:
        assert detect_package_manager(tmp_path) == "npm"


@pytest.mark.unit
class TestPackageManagerInstaller:
    """Tests for PackageManagerInstaller."""

    def test_args_from_detected_manager(self, tmp_path: Path) -> None:
        (tmp_path / "yarn.lock").write_text("")

        assert PackageManagerInstaller().args_for(tmp_path) == ["yarn", "install"]

    def test_explicit_manager(self, tmp_path: Path) -> None:
        assert PackageManagerInstaller("pnpm").args_for(tmp_path) == ["pnpm", "install"]

    def test_custom_command(self, tmp_path: Path) -> None:
        installer = PackageManagerInstaller("npm", "npm ci --ignore-scripts")

        assert installer.args_for(tmp_path) == ["npm", "ci", "--ignore-scripts"]

    def test_failed_install_raises(self, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=_completed(1, stderr="ERESOLVE")):
            with pytest.raises(ProcessError) as exc_info:
                PackageManagerInstaller("npm").install(tmp_path)

        assert exc_info.value.exit_code == 1
        assert "ERESOLVE" in (exc_info.value.stderr or "")

    def test_successful_install(self, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=_completed(0)):
            result = PackageManagerInstaller("npm").install(tmp_path)

        assert result.ok


@pytest.mark.unit
class TestCommandVerifier:
    def test_failure_is_a_result(self, tmp_path: Path) -> None:
        """Test a failing test command is reported, not raised."""
        verifier = CommandVerifier("npm run test -- --ci")

        with patch("subprocess.run", return_value=_completed(1, stdout="1 failing")) as mock_run:
            result = verifier.verify(tmp_path)

        assert not result.ok
        assert mock_run.call_args[0][0] == ["npm", "run", "test", "--", "--ci"]


@pytest.mark.unit
class TestGitWorkingTree:
    """Tests for GitWorkingTree.ensure_clean."""

    def test_clean(self, tmp_path: Path) -> None:
        with patch("shutil.which", return_value="/usr/bin/git"), patch(
            "subprocess.run", return_value=_completed(0, "")
        ):
            GitWorkingTree().ensure_clean(tmp_path)

    def test_dirty(self, tmp_path: Path) -> None:
        with patch("shutil.which", return_value="/usr/bin/git"), patch(
            "subprocess.run", return_value=_completed(0, " M package.json\n")
        ):
            with pytest.raises(DirtyStateError, match="uncommitted"):
                GitWorkingTree().ensure_clean(tmp_path)

    def test_not_a_repository(self, tmp_path: Path) -> None:
        with patch("shutil.which", return_value="/usr/bin/git"), patch(
            "subprocess.run", return_value=_completed(128, stderr="not a git repository")
        ):
            with pytest.raises(DirtyStateError, match="Not a git repository"):
                GitWorkingTree().ensure_clean(tmp_path)

    def test_git_missing(self, tmp_path: Path) -> None:
        with patch("shutil.which", return_value=None):
            with pytest.raises(DirtyStateError, match="git is required"):
                GitWorkingTree().ensure_clean(tmp_path)
