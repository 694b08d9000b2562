"""
Subprocess helpers for depbump.

Doctor mode drives three external programs: the package manager (install),
the verification command (usually ``npm test``) and ``git`` (working-tree
check). This module wraps them behind small objects that the verification
controller can be handed, and that tests can replace with fakes.
"""

from __future__ import annotations

import shlex
import shutil
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Union

from depbump.utils.logger import get_logger
from depbump.exceptions import DirtyStateError, ProcessError, RunTimeoutError
from depbump.constants import DEFAULT_PACKAGE_MANAGER, LOCKFILE_PACKAGE_MANAGERS

logger = get_logger("process")

__all__ = [
    "CommandResult",
    "CommandVerifier",
    "GitWorkingTree",
    "Installer",
    "PackageManagerInstaller",
    "Verifier",
    "WorkingTree",
    "detect_package_manager",
    "run_command",
]

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a finished command."""

    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, for failure reports."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part).strip()


def run_command(
    args: Sequence[str],
    *,
    cwd: PathLike,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run ``args`` in ``cwd`` and capture its output.

    Args:
        args: Program and arguments.
        cwd: Working directory.
        timeout: Seconds before the process is killed.

    Returns:
        The :class:`CommandResult`; a non-zero exit is not an error here.

    Raises:
        ProcessError: The program could not be started.
        RunTimeoutError: The process ran longer than ``timeout``.
    """
    logger.debug("Running %s in %s", " ".join(args), cwd)
    try:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise RunTimeoutError(timeout or 0) from exc
    except OSError as exc:
        raise ProcessError(
            f"Failed to run {args[0]}: {exc}",
            command=args,
            stderr=str(exc),
        ) from exc

    logger.debug("%s exited with %d", args[0], completed.returncode)
    return CommandResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def detect_package_manager(project_dir: PathLike) -> str:
    """Guess the package manager from the lockfile present in ``project_dir``."""
    root = Path(project_dir)
    for lockfile, manager in LOCKFILE_PACKAGE_MANAGERS.items():
        if (root / lockfile).is_file():
            return manager
    return DEFAULT_PACKAGE_MANAGER


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class Installer(Protocol):
    def install(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        ...


class Verifier(Protocol):
    def verify(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        ...


class WorkingTree(Protocol):
    def ensure_clean(self, project_dir: Path) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


class PackageManagerInstaller:
    """Runs ``<manager> install`` (or a custom install command).

    Args:
        package_manager: ``npm``, ``yarn``, ``pnpm`` or ``bun``; detected from
            lockfiles when ``None``.
        command: Full install command overriding the package manager default.
    """

    def __init__(
        self,
        package_manager: Optional[str] = None,
        command: Optional[str] = None,
    ) -> None:
        self.package_manager = package_manager
        self.command = command

    def args_for(self, project_dir: Path) -> List[str]:
        if self.command:
            return shlex.split(self.command)
        manager = self.package_manager or detect_package_manager(project_dir)
        return [manager, "install"]

    def install(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        """Install dependencies.

        Raises:
            ProcessError: The install exited non-zero.
        """
        args = self.args_for(project_dir)
        result = run_command(args, cwd=project_dir, timeout=timeout)
        if not result.ok:
            raise ProcessError(
                f"Install failed with exit code {result.returncode}",
                command=args,
                exit_code=result.returncode,
                stderr=result.output,
            )
        return result


class CommandVerifier:
    """Runs the verification command; exit status 0 means pass."""

    def __init__(self, command: str) -> None:
        self.command = command
        self.args = shlex.split(command)

    def verify(self, project_dir: Path, *, timeout: Optional[float] = None) -> CommandResult:
        return run_command(self.args, cwd=project_dir, timeout=timeout)


class GitWorkingTree:
    """Checks that a project directory has no uncommitted changes."""

    def __init__(self, git: str = "git") -> None:
        self.git = git

    def ensure_clean(self, project_dir: Path) -> None:
        """Raise unless ``project_dir`` is inside a clean git work tree.

        Raises:
            DirtyStateError: Uncommitted changes exist, git is unavailable,
                or the directory is not under version control.
        """
        if shutil.which(self.git) is None:
            raise DirtyStateError(
                "git is required to verify the working tree",
                project_dir=str(project_dir),
            )

        result = run_command(
            [self.git, "status", "--porcelain", "--untracked-files=no", "--", "."],
            cwd=project_dir,
        )
        if not result.ok:
            raise DirtyStateError(
                "Not a git repository; rollback cannot be trusted",
                project_dir=str(project_dir),
            )

        changes = [line for line in result.stdout.splitlines() if line.strip()]
        if changes:
            raise DirtyStateError(
                "Working tree has uncommitted changes",
                project_dir=str(project_dir),
                changes=changes,
            )
