"""
Utility helpers for depbump.

This package provides reusable utilities used across depbump, including:

- Console output helpers (Rich-based)
- Logging configuration and retrieval
- Filesystem safety and snapshot helpers
- Async HTTP client utilities
- Version comparison helpers
- Subprocess helpers for package managers and verification commands

Only symbols listed in ``__all__`` are considered part of the public API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Filesystem utilities
# ---------------------------------------------------------------------------

from depbump.utils.filesystem import (
    create_timestamped_backup,
    find_manifest_files,
    restore_files,
    safe_read_file,
    safe_write_file,
    snapshot_files,
)

# ---------------------------------------------------------------------------
# Logging utilities
# ---------------------------------------------------------------------------

from depbump.utils.logger import (
    get_logger,
    is_logging_configured,
    setup_logging,
)

# ---------------------------------------------------------------------------
# Console utilities
# ---------------------------------------------------------------------------

from depbump.utils.console import (
    colorize_update_type,
    confirm,
    print_error,
    print_info,
    print_output,
    print_json,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)

# ---------------------------------------------------------------------------
# HTTP utilities
# ---------------------------------------------------------------------------

from depbump.utils.http import HTTPClient

# ---------------------------------------------------------------------------
# Version utilities
# ---------------------------------------------------------------------------

from depbump.utils.version_utils import get_update_type, parse_version

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    # Console
    "confirm",
    "print_info",
    "print_output",
    "print_json",
    "print_error",
    "print_table",
    "print_success",
    "print_warning",
    "reconfigure_console",
    "colorize_update_type",
    # Logging
    "get_logger",
    "setup_logging",
    "is_logging_configured",
    # Filesystem
    "safe_read_file",
    "safe_write_file",
    "snapshot_files",
    "restore_files",
    "find_manifest_files",
    "create_timestamped_backup",
    # HTTP
    "HTTPClient",
    # Version utilities
    "parse_version",
    "get_update_type",
]
