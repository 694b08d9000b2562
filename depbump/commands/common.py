"""Shared options and output for depbump commands.

Every subcommand accepts the same scope and policy flags; they are declared
once here and merged with the configuration file into an
:class:`UpgradeOptions` by :func:`build_options`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import click

from depbump.context import DepbumpContext
from depbump.core.runner import RunOutcome
from depbump.exceptions import ConfigError
from depbump.core.workspaces import AggregateResult
from depbump.models.decision import UpgradeDecision
from depbump.constants import DEFAULT_CONCURRENCY, DEFAULT_REGISTRY, PACKAGE_MANAGERS
from depbump.models.options import TargetPolicy, UpgradeOptions, parse_policy, parse_sections
from depbump.utils import (
    colorize_update_type,
    print_error,
    print_json,
    print_success,
    print_table,
    print_warning,
)

F = TypeVar("F", bound=Callable[..., Any])

_SHARED_OPTIONS = [
    click.argument(
        "path",
        type=click.Path(exists=True, path_type=Path),
        default=".",
    ),
    click.option(
        "--target",
        "-t",
        help="Target policy: latest, newest, greatest, minor, patch, semver, or @<tag>.",
    ),
    click.option(
        "--dep",
        "-d",
        multiple=True,
        help="Sections to check: prod, dev, peer, optional, resolutions, overrides.",
    ),
    click.option(
        "--filter",
        "-f",
        "filter_",
        multiple=True,
        help="Only check packages matching this glob (repeatable).",
    ),
    click.option(
        "--reject",
        "-x",
        multiple=True,
        help="Skip packages matching this glob (repeatable).",
    ),
    click.option("--pre/--no-pre", default=None, help="Include prerelease versions."),
    click.option(
        "--deprecated/--no-deprecated",
        default=None,
        help="Include deprecated versions.",
    ),
    click.option(
        "--remove-range",
        is_flag=True,
        default=None,
        help="Pin exact versions instead of preserving range operators.",
    ),
    click.option("--deep", is_flag=True, help="Check every package.json below PATH."),
    click.option("--workspaces", is_flag=True, help="Check workspace packages only."),
    click.option(
        "--with-workspaces",
        is_flag=True,
        help="Check the root package and its workspaces.",
    ),
    click.option(
        "--workspace",
        "-w",
        multiple=True,
        help="Check only the named workspace (repeatable).",
    ),
    click.option(
        "--merge-config",
        is_flag=True,
        help="Merge package-level depbump.toml lists with the root settings.",
    ),
    click.option("--timeout", type=click.FloatRange(min=0, min_open=True), help="Global timeout in seconds."),
    click.option("--registry", help="npm registry URL."),
    click.option(
        "--registry-token",
        envvar="NPM_TOKEN",
        help="Bearer token for a private registry (defaults to NPM_TOKEN).",
    ),
    click.option(
        "--strict-ssl/--no-strict-ssl",
        default=None,
        help="Verify the registry TLS certificate.",
    ),
    click.option("--concurrency", type=click.IntRange(min=1), help="Maximum concurrent registry requests."),
    click.option(
        "--package-manager",
        "-p",
        type=click.Choice(list(PACKAGE_MANAGERS)),
        help="Package manager to install with (detected from lockfiles by default).",
    ),
    click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON."),
]


def shared_options(func: F) -> F:
    """Apply the scope and policy options common to every command."""
    for option in reversed(_SHARED_OPTIONS):
        func = option(func)
    return func


def project_root(path: Path) -> Path:
    """Accept either a project directory or a path to its ``package.json``."""
    return path.parent if path.is_file() else path


def _pick(flag: Optional[Any], configured: Optional[Any], default: Any) -> Any:
    if flag is not None:
        return flag
    if configured is not None:
        return configured
    return default


def build_options(ctx: DepbumpContext, **flags: Any) -> UpgradeOptions:
    """Merge CLI flags over the configuration file into :class:`UpgradeOptions`.

    Raises:
        ConfigError: A policy or section name is invalid.
    """
    config = ctx.config

    target = _pick(flags.get("target"), config.target, "latest")
    targets = {name: parse_policy(value) for name, value in config.targets.items()}

    return UpgradeOptions(
        target=parse_policy(target),
        targets=targets,
        sections=parse_sections(list(flags.get("dep") or ()) or config.dep or None),
        filter=tuple(flags.get("filter_") or config.filter),
        reject=tuple(flags.get("reject") or config.reject),
        pre=bool(_pick(flags.get("pre"), config.pre, False)),
        deprecated=bool(_pick(flags.get("deprecated"), config.deprecated, False)),
        remove_range=bool(_pick(flags.get("remove_range"), config.remove_range, False)),
        registry=_pick(flags.get("registry"), config.registry, DEFAULT_REGISTRY),
        registry_token=flags.get("registry_token") or None,
        strict_ssl=bool(_pick(flags.get("strict_ssl"), config.strict_ssl, True)),
        concurrency=_pick(flags.get("concurrency"), config.concurrency, DEFAULT_CONCURRENCY),
        timeout=_pick(flags.get("timeout"), config.timeout, None),
        package_manager=_pick(flags.get("package_manager"), config.package_manager, None),
        doctor_install=_pick(flags.get("doctor_install"), config.doctor_install, None),
        doctor_test=_pick(flags.get("doctor_test"), config.doctor_test, "npm test"),
        preflight=bool(_pick(flags.get("preflight"), None, True)),
        deep=bool(flags.get("deep")),
        workspaces=bool(flags.get("workspaces")),
        with_workspaces=bool(flags.get("with_workspaces")),
        workspace=tuple(flags.get("workspace") or ()),
        merge_config=bool(flags.get("merge_config")),
    )


def options_or_exit(ctx: DepbumpContext, **flags: Any) -> UpgradeOptions:
    try:
        return build_options(ctx, **flags)
    except ConfigError as exc:
        raise click.UsageError(exc.message) from exc


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def decision_rows(decisions: Sequence[UpgradeDecision]) -> List[Dict[str, Any]]:
    return [
        {
            "Package": d.name,
            "Section": d.section.value,
            "Current": d.from_specifier,
            "Target": d.to_specifier,
            "Change": colorize_update_type(d.update_type),
        }
        for d in decisions
    ]


def render_aggregate(aggregate: AggregateResult, *, policy: str) -> None:
    """Print one table of upgrades per manifest, then warnings and errors."""
    multiple = len(aggregate.reports) > 1

    for path, report in aggregate.reports.items():
        if report.error is not None:
            print_error(f"{path}: {report.error}")
            continue

        assert report.result is not None
        upgrades = report.result.upgrades
        if upgrades:
            print_table(
                decision_rows(upgrades),
                headers=["Package", "Section", "Current", "Target", "Change"],
                title=path if multiple else None,
                column_styles={
                    "Package": {"style": "bold", "no_wrap": True},
                    "Current": {"style": "dim"},
                    "Target": {"style": "bold green"},
                },
            )
        elif multiple:
            print_success(f"{path}: all dependencies match the {policy} policy")

        for warning in report.result.warnings:
            print_warning(warning)

    if not multiple and not aggregate.has_upgrades and not aggregate.errors:
        print_success(f"All dependencies match the {policy} policy")


def emit_json(outcome: RunOutcome) -> None:
    print_json(outcome.to_json())


def policy_label(options: UpgradeOptions) -> str:
    target = options.target
    return target.value if isinstance(target, TargetPolicy) else f"@{target}"
