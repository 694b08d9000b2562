"""Update command implementation for depbump.

Computes the same decisions as ``depbump check`` and writes the upgraded
specifiers back into each manifest. Only the affected dependency entries
change; formatting and every other field are left untouched.

Typical usage::

    # Review, confirm, then write
    $ depbump update

    # Non-interactive, with a backup, then install
    $ depbump update --yes --backup --install
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from depbump.core.runner import upgrade_project
from depbump.core.workspaces import AggregateResult
from depbump.context import DepbumpContext, pass_context
from depbump.utils import get_logger, print_error, print_info, print_success
from depbump.core.confirm import ConsoleDecisionProvider, ScriptedDecisionProvider
from depbump.commands.common import (
    emit_json,
    options_or_exit,
    policy_label,
    project_root,
    render_aggregate,
    shared_options,
)

logger = get_logger("commands.update")


@click.command()
@shared_options
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation.")
@click.option("--backup", is_flag=True, help="Keep a timestamped copy of each manifest.")
@click.option(
    "--install/--no-install",
    default=None,
    help="Run the package manager afterwards (asks when omitted).",
)
@pass_context
def update(
    ctx: DepbumpContext,
    path: Path,
    yes: bool,
    backup: bool,
    install: Optional[bool],
    as_json: bool,
    **flags: object,
) -> None:
    """Upgrade dependency specifiers in package.json.

    PATH is a project directory or its package.json (default: current
    directory).
    """
    options = options_or_exit(ctx, **flags)
    root = project_root(path)

    # JSON output cannot share the terminal with prompts
    if yes or as_json:
        provider = ScriptedDecisionProvider.approve_all()
        if install is None:
            install = False
    else:
        provider = ConsoleDecisionProvider()

    if not as_json:
        print_info(f"Checking {root} ...")

    def review(aggregate: AggregateResult) -> None:
        if not as_json:
            render_aggregate(aggregate, policy=policy_label(options))

    outcome = upgrade_project(
        root,
        options,
        provider,
        backup=backup,
        install=install,
        review=review,
    )

    if as_json:
        emit_json(outcome)
        sys.exit(outcome.exit_code)

    for written in outcome.written:
        print_success(f"Updated {written}")
    for backup_path in outcome.backups:
        print_info(f"Backup saved to {backup_path}")
    for directory in outcome.installed:
        print_success(f"Installed dependencies in {directory}")

    # Manifest errors were already shown with the decisions
    if not outcome.ok and (outcome.aggregate is None or not outcome.aggregate.errors):
        print_error(str(outcome.error))
    sys.exit(outcome.exit_code)
