"""Doctor command implementation for depbump.

Applies the candidate upgrades, installs and runs the project's tests, and
keeps only the upgrades that do not break them. Failing groups are split
until each breaking upgrade is isolated; those are rolled back and
reported with the output of the failure.

The project must be a git checkout whose manifest and lockfile have no
uncommitted changes.

Typical usage::

    $ depbump doctor
    $ depbump doctor --doctor-test "npm run test:unit" --target minor
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from depbump.core.runner import doctor_project
from depbump.core.doctor import DoctorSession
from depbump.context import DepbumpContext, pass_context
from depbump.utils import (
    get_logger,
    print_error,
    print_info,
    print_output,
    print_success,
    print_table,
    print_warning,
)
from depbump.commands.common import (
    decision_rows,
    emit_json,
    options_or_exit,
    policy_label,
    project_root,
    render_aggregate,
    shared_options,
)

logger = get_logger("commands.doctor")

# Lines of failure output shown per rejected upgrade
OUTPUT_TAIL_LINES = 15


@click.command()
@shared_options
@click.option(
    "--doctor-install",
    help="Install command (default: '<package manager> install').",
)
@click.option(
    "--doctor-test",
    help="Verification command (default: 'npm test').",
)
@click.option(
    "--preflight/--no-preflight",
    default=None,
    help="Install and test the unmodified project before trying upgrades.",
)
@pass_context
def doctor(
    ctx: DepbumpContext,
    path: Path,
    as_json: bool,
    **flags: object,
) -> None:
    """Upgrade only what keeps the tests passing.

    PATH is a project directory or its package.json (default: current
    directory).

    \b
    Exits:
      0  finished (some upgrades may have been rejected)
      1  a fatal error: dirty working tree, failing preflight, timeout
    """
    options = options_or_exit(ctx, **flags)
    root = project_root(path)

    if not as_json:
        print_info(f"Running doctor in {root} ...")

    outcome = doctor_project(root, options)

    if as_json:
        emit_json(outcome)
        sys.exit(outcome.exit_code)

    if outcome.aggregate is not None and not outcome.sessions:
        render_aggregate(outcome.aggregate, policy=policy_label(options))

    for manifest_path, session in outcome.sessions.items():
        render_session(manifest_path, session, multiple=len(outcome.sessions) > 1)

    if not outcome.ok:
        print_error(str(outcome.error))
    sys.exit(outcome.exit_code)


def render_session(manifest_path: str, session: DoctorSession, *, multiple: bool = False) -> None:
    """Print the confirmed and rejected upgrades of one doctor session."""
    prefix = f"{manifest_path}: " if multiple else ""

    if session.confirmed:
        print_table(
            decision_rows(session.confirmed),
            headers=["Package", "Section", "Current", "Target", "Change"],
            title=f"{prefix}Upgraded ({session.rounds} round(s))",
            column_styles={
                "Package": {"style": "bold", "no_wrap": True},
                "Target": {"style": "bold green"},
            },
        )
    elif session.ok:
        print_info(f"{prefix}No upgrade passed verification")

    for rejection in session.rejected:
        decision = rejection.decision
        print_warning(
            f"{prefix}Rejected {decision.name} {decision.from_specifier} -> {decision.to_specifier}"
        )
        if rejection.partners:
            names = ", ".join(d.name for d in rejection.partners)
            print_info(f"  Failed alongside upgrades kept meanwhile: {names}")
        tail = _tail(rejection.output)
        if tail:
            print_output(tail)

    if session.ok and not session.rejected and session.confirmed:
        print_success(f"{prefix}All upgrades passed verification")


def _tail(output: Optional[str], lines: int = OUTPUT_TAIL_LINES) -> str:
    if not output:
        return ""
    kept = output.rstrip().splitlines()[-lines:]
    return "\n".join(f"    {line}" for line in kept)
