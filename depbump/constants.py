"""
Centralized constants for depbump.

This module defines immutable configuration values used across depbump,
including registry settings, manifest sections, package manager detection,
and logging formats. All values are intended to be treated as read-only.
"""

from typing import Final, Mapping, Sequence

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = "depbump/{version}"

# ---------------------------------------------------------------------------
# Registry endpoints
# ---------------------------------------------------------------------------

#: Default npm registry base URL. Package documents live at ``{base}{name}``.
DEFAULT_REGISTRY: Final[str] = "https://registry.npmjs.org/"

#: Dist-tag consulted by the ``latest`` target.
LATEST_TAG: Final[str] = "latest"

# ---------------------------------------------------------------------------
# HTTP configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed HTTP requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

#: Maximum number of registry lookups in flight at once.
DEFAULT_CONCURRENCY: Final[int] = 8

# ---------------------------------------------------------------------------
# Manifest layout
# ---------------------------------------------------------------------------

#: Default manifest filename.
MANIFEST_FILENAME: Final[str] = "package.json"

#: Short section names accepted by ``--dep`` mapped to manifest keys.
DEPENDENCY_SECTIONS: Final[Mapping[str, str]] = {
    "prod": "dependencies",
    "dev": "devDependencies",
    "peer": "peerDependencies",
    "optional": "optionalDependencies",
    "resolutions": "resolutions",
    "overrides": "overrides",
}

#: Sections checked when ``--dep`` is not given.
DEFAULT_SECTIONS: Final[Sequence[str]] = tuple(DEPENDENCY_SECTIONS)

#: Directories never searched for manifests.
IGNORED_DIRECTORIES: Final[Sequence[str]] = ("node_modules", ".git")

#: pnpm workspace declaration file.
PNPM_WORKSPACE_FILE: Final[str] = "pnpm-workspace.yaml"

# ---------------------------------------------------------------------------
# Package managers
# ---------------------------------------------------------------------------

#: Lockfiles snapshotted by doctor mode, in detection priority order.
LOCKFILE_PACKAGE_MANAGERS: Final[Mapping[str, str]] = {
    "pnpm-lock.yaml": "pnpm",
    "yarn.lock": "yarn",
    "bun.lockb": "bun",
    "bun.lock": "bun",
    "package-lock.json": "npm",
    "npm-shrinkwrap.json": "npm",
}

#: Package managers depbump knows how to drive.
PACKAGE_MANAGERS: Final[Sequence[str]] = ("npm", "yarn", "pnpm", "bun")

#: Package manager used when no lockfile is present.
DEFAULT_PACKAGE_MANAGER: Final[str] = "npm"

# ---------------------------------------------------------------------------
# Security constraints
# ---------------------------------------------------------------------------

#: Maximum allowed file size (in bytes) when reading manifests.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
