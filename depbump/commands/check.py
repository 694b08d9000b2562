"""Check command implementation for depbump.

Reads one or more ``package.json`` manifests, queries the npm registry for
every dependency and reports which specifiers the selected target policy
would change. Nothing is written.

Typical usage::

    # Upgrades allowed by the default "latest" policy
    $ depbump check

    # Stay within the current major version
    $ depbump check --target minor

    # Every workspace of a monorepo, as JSON
    $ depbump check --with-workspaces --json > report.json
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from depbump.utils import get_logger, print_error
from depbump.core.runner import check_project
from depbump.context import DepbumpContext, pass_context
from depbump.commands.common import (
    emit_json,
    options_or_exit,
    policy_label,
    project_root,
    render_aggregate,
    shared_options,
)

logger = get_logger("commands.check")


@click.command()
@shared_options
@click.option(
    "--error-level",
    type=click.IntRange(1, 2),
    default=1,
    show_default=True,
    help="1: exit 1 only on errors. 2: also exit 1 when upgrades are available.",
)
@pass_context
def check(
    ctx: DepbumpContext,
    path: Path,
    error_level: int,
    as_json: bool,
    **flags: object,
) -> None:
    """Report dependencies that can be upgraded.

    PATH is a project directory or its package.json (default: current
    directory).

    \b
    Exits:
      0  no errors (upgrades may be available unless --error-level 2)
      1  a fatal error, or upgrades available with --error-level 2
    """
    options = options_or_exit(ctx, **flags)
    root = project_root(path)
    logger.debug("Checking %s with %s", root, options)

    outcome = check_project(root, options)

    if as_json:
        emit_json(outcome)
    elif outcome.aggregate is not None:
        render_aggregate(outcome.aggregate, policy=policy_label(options))

    if not outcome.ok:
        if not as_json and outcome.aggregate is None:
            print_error(str(outcome.error))
        sys.exit(1)

    has_upgrades = outcome.aggregate is not None and outcome.aggregate.has_upgrades
    sys.exit(1 if (error_level == 2 and has_upgrades) else 0)
