"""Configuration file loader for depbump.

Handles discovery, loading, parsing, and validation of configuration files.
Supports two formats:

- ``depbump.toml``: settings under ``[depbump]`` table
- ``pyproject.toml``: settings under ``[tool.depbump]`` table

Discovery order:

1. Explicit path from ``--config`` or ``DEPBUMP_CONFIG``
2. ``depbump.toml`` in current directory
3. ``pyproject.toml`` with ``[tool.depbump]`` section

Configuration precedence: defaults < config file < CLI args.

In deep and workspace runs a package directory may carry its own
``depbump.toml``; see :func:`apply_manifest_config`.

Typical usage::

    config = load_config()  # Auto-discover
    config = load_config(Path("custom.toml"))  # Explicit path

Example (``depbump.toml``)::

    [depbump]
    target = "minor"
    reject = ["typescript"]
    doctor_test = "npm run test:ci"

    [depbump.targets]
    "@types/*" = "latest"
    react = "patch"
"""

from __future__ import annotations

import tomli as tomllib
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from depbump.exceptions import ConfigError
from depbump.utils.logger import get_logger
from depbump.constants import PACKAGE_MANAGERS
from depbump.models.options import UpgradeOptions, parse_policy, parse_sections

logger = get_logger("config")

CONFIG_FILENAME = "depbump.toml"
SECTION_NAME = "depbump"


@dataclass
class DepbumpConfig:
    """Parsed and validated depbump configuration.

    Contains settings from ``depbump.toml`` or ``pyproject.toml``. Every
    field defaults to ``None`` (or empty), meaning "not set in the file",
    so CLI flags and built-in defaults can be layered on top.

    Attributes:
        target: Default target policy (``latest``, ``minor``, ``@next``...).
        targets: Per-package policy overrides; keys may be glob patterns.
        dep: Dependency sections to check (``prod``, ``dev``...).
        filter: Only check packages matching one of these globs.
        reject: Never check packages matching one of these globs.
        pre: Include prerelease versions.
        deprecated: Include deprecated versions.
        remove_range: Pin exact versions instead of preserving ranges.
        registry: npm registry base URL.
        strict_ssl: Verify the registry TLS certificate.
        timeout: Global run timeout in seconds.
        concurrency: Maximum concurrent registry requests.
        package_manager: ``npm``, ``yarn``, ``pnpm`` or ``bun``.
        doctor_install: Install command used by doctor mode.
        doctor_test: Verification command used by doctor mode.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    target: Optional[str] = None
    targets: Dict[str, str] = field(default_factory=dict)
    dep: List[str] = field(default_factory=list)
    filter: List[str] = field(default_factory=list)
    reject: List[str] = field(default_factory=list)
    pre: Optional[bool] = None
    deprecated: Optional[bool] = None
    remove_range: Optional[bool] = None
    registry: Optional[str] = None
    strict_ssl: Optional[bool] = None
    timeout: Optional[float] = None
    concurrency: Optional[int] = None
    package_manager: Optional[str] = None
    doctor_install: Optional[str] = None
    doctor_test: Optional[str] = None

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def to_log_dict(self) -> Dict[str, Any]:
        """Return the options that were set, for debug logging."""
        return {
            key: value
            for key, value in self.__dict__.items()
            if key != "source_path" and value not in (None, [], {})
        }


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Search order:

    1. ``explicit_path`` (from ``--config`` or ``DEPBUMP_CONFIG``)
    2. ``depbump.toml`` in current directory
    3. ``pyproject.toml`` with ``[tool.depbump]`` section in current directory

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    depbump_toml = cwd / CONFIG_FILENAME
    if depbump_toml.is_file():
        logger.debug("Found %s: %s", CONFIG_FILENAME, depbump_toml)
        return depbump_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_section(pyproject_toml):
        logger.debug("Found [tool.depbump] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_section(path: Path) -> bool:
    """Check if pyproject.toml contains a ``[tool.depbump]`` section.

    A pyproject.toml that cannot be parsed is treated as having no section;
    it belongs to another tool and is not ours to report on.
    """
    try:
        raw = _read_toml(path)
    except ConfigError as exc:
        logger.debug("Ignoring unreadable %s: %s", path, exc)
        return False
    return SECTION_NAME in raw.get("tool", {})


def load_config(config_path: Optional[Path] = None) -> DepbumpConfig:
    """Load and validate depbump configuration.

    Args:
        config_path: Explicit path to config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`DepbumpConfig` with values from file or defaults.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return DepbumpConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get(SECTION_NAME, {})
    else:
        section = raw.get(SECTION_NAME, {})

    if not section:
        logger.debug("Config file found but no depbump section, using defaults")
        return DepbumpConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_BOOL_OPTIONS = ("pre", "deprecated", "remove_range", "strict_ssl")
_STRING_OPTIONS = ("target", "registry", "package_manager", "doctor_install", "doctor_test")
_LIST_OPTIONS = ("dep", "filter", "reject")


def _type_error(name: str, expected: str, value: Any, config_path: str) -> ConfigError:
    return ConfigError(
        f"{name} must be {expected}, got {type(value).__name__}",
        config_path=config_path,
        option=name,
    )


def _string_list(name: str, value: Any, config_path: str) -> List[str]:
    """Accept a string (comma separated) or a list of strings."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise _type_error(name, "a string or a list of strings", value, config_path)


def _parse_section(
    section: Dict[str, Any],
    *,
    config_path: str,
) -> DepbumpConfig:
    """Parse and validate a ``[depbump]`` or ``[tool.depbump]`` table.

    Raises:
        ConfigError: Unknown keys or incorrect types (e.g., string for boolean).
    """
    config = DepbumpConfig()

    known: Tuple[str, ...] = (
        *_BOOL_OPTIONS,
        *_STRING_OPTIONS,
        *_LIST_OPTIONS,
        "targets",
        "timeout",
        "concurrency",
    )

    unknown = set(section.keys()) - set(known)
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=config_path,
        )

    for name in _BOOL_OPTIONS:
        if name in section:
            value = section[name]
            if not isinstance(value, bool):
                raise _type_error(name, "a boolean", value, config_path)
            setattr(config, name, value)

    for name in _STRING_OPTIONS:
        if name in section:
            value = section[name]
            if not isinstance(value, str) or not value.strip():
                raise _type_error(name, "a non-empty string", value, config_path)
            setattr(config, name, value.strip())

    for name in _LIST_OPTIONS:
        if name in section:
            setattr(config, name, _string_list(name, section[name], config_path))

    if "targets" in section:
        targets = section["targets"]
        if not isinstance(targets, dict) or not all(
            isinstance(v, str) for v in targets.values()
        ):
            raise _type_error("targets", "a table of strings", targets, config_path)
        config.targets = dict(targets)

    if "timeout" in section:
        value = section["timeout"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise _type_error("timeout", "a positive number", value, config_path)
        config.timeout = float(value)

    if "concurrency" in section:
        value = section["concurrency"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise _type_error("concurrency", "a positive integer", value, config_path)
        config.concurrency = value

    if config.package_manager is not None and config.package_manager not in PACKAGE_MANAGERS:
        raise ConfigError(
            f"package_manager must be one of {', '.join(PACKAGE_MANAGERS)}",
            config_path=config_path,
            option="package_manager",
        )

    return config


# ---------------------------------------------------------------------------
# Per-manifest configuration
# ---------------------------------------------------------------------------

# Settings shared by the whole run (one registry client, one doctor session)
_RUN_WIDE_OPTIONS = (
    "registry",
    "strict_ssl",
    "timeout",
    "concurrency",
    "package_manager",
    "doctor_install",
    "doctor_test",
)


def load_manifest_config(directory: Path) -> Optional[DepbumpConfig]:
    """Load ``depbump.toml`` from a package directory, if it has one.

    Raises:
        ConfigError: The file exists but is invalid.
    """
    path = directory / CONFIG_FILENAME
    if not path.is_file():
        return None
    return load_config(path)


def _merged(base: Tuple[str, ...], extra: List[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys((*base, *extra)))


def apply_manifest_config(
    options: UpgradeOptions,
    config: DepbumpConfig,
    *,
    merge: bool = False,
) -> UpgradeOptions:
    """Layer a package directory's configuration over the run options.

    Settings the file sets replace the run's. With ``merge``, list settings
    (``dep``, ``filter``, ``reject``) and the ``targets`` table are combined
    with the run's instead. Run-wide settings such as ``registry`` cannot
    vary per package and are ignored with a warning.

    Raises:
        ConfigError: A policy or section name in the file is invalid.

    Example::

        >>> options = UpgradeOptions(reject=("typescript",))
        >>> config = DepbumpConfig(target="minor", reject=["react"])
        >>> apply_manifest_config(options, config, merge=True).reject
        ('typescript', 'react')
    """
    ignored = [name for name in _RUN_WIDE_OPTIONS if getattr(config, name) is not None]
    if ignored:
        logger.warning(
            "%s: %s apply to the whole run and are ignored here",
            config.source_path,
            ", ".join(ignored),
        )

    changes: Dict[str, Any] = {}

    if config.target is not None:
        changes["target"] = parse_policy(config.target)
    for name in ("pre", "deprecated", "remove_range"):
        value = getattr(config, name)
        if value is not None:
            changes[name] = value

    targets = {name: parse_policy(value) for name, value in config.targets.items()}
    if targets:
        changes["targets"] = {**options.targets, **targets} if merge else targets

    if config.dep:
        sections = parse_sections(config.dep)
        changes["sections"] = tuple(dict.fromkeys((*options.sections, *sections))) if merge else sections

    for name in ("filter", "reject"):
        values: List[str] = getattr(config, name)
        if values:
            changes[name] = _merged(getattr(options, name), values) if merge else tuple(values)

    if not changes:
        return options

    logger.debug("Package options from %s: %s", config.source_path, changes)
    return replace(options, **changes)
