"""
Custom exception hierarchy for depbump.

This module defines structured exception types used across depbump.
All exceptions inherit from :class:`DepbumpError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.

Recoverable errors (:class:`SpecifierParseError`, :class:`PackageNotFoundError`,
most :class:`NetworkError` instances) are turned into per-dependency
decisions by the differ. Fatal errors (:class:`DirtyStateError`,
:class:`DoctorError`) end a doctor session in the ``FATAL`` state.
"""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional, Sequence


class DepbumpError(Exception):
    """Base exception for all depbump errors.

    All depbump-specific exceptions should inherit from this class.
    It supports structured metadata via ``details`` for richer error
    reporting and debugging.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        # Internally normalize to a mutable dict
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ParseError(DepbumpError):
    """Raised when a manifest cannot be parsed.

    Args:
        message: Error description.
        line_number: Line number where parsing failed.
        file_path: Path to the file being parsed.
    """

    __slots__ = ("line_number", "file_path")

    def __init__(
        self,
        message: str,
        *,
        line_number: Optional[int] = None,
        file_path: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "line", line_number)
        _add_if(details, "file", file_path)

        super().__init__(message, details)

        self.line_number = line_number
        self.file_path = file_path


class SpecifierParseError(ParseError):
    """Raised when a declared version specifier is malformed.

    Args:
        message: Error description.
        specifier: The raw specifier text.
        package_name: Dependency the specifier belongs to, if known.
    """

    __slots__ = ("specifier", "package_name")

    def __init__(
        self,
        message: str,
        *,
        specifier: Optional[str] = None,
        package_name: Optional[str] = None,
    ) -> None:
        super().__init__(message)

        self.specifier = specifier
        self.package_name = package_name
        _add_if(self.details, "specifier", specifier)
        _add_if(self.details, "package", package_name)


class NetworkError(DepbumpError):
    """Raised when HTTP or network operations fail.

    Args:
        message: Error description.
        url: URL being accessed.
        status_code: HTTP status code, if available.
        response_body: Raw response body, truncated for safety.
    """

    __slots__ = ("url", "status_code", "response_body")

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "url", url)
        _add_if(details, "status_code", status_code)

        if response_body is not None:
            details["response"] = _truncate(response_body)

        super().__init__(message, details)

        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class RegistryError(NetworkError):
    """Raised for failures related to the package registry.

    Args:
        message: Error description.
        package_name: Name of the package involved.
        **kwargs: Additional arguments forwarded to ``NetworkError``.
    """

    __slots__ = ("package_name",)

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)

        self.package_name = package_name
        if package_name is not None:
            self.details["package"] = package_name


class PackageNotFoundError(RegistryError):
    """Raised when the registry has no document (or no versions) for a package."""


class FileOperationError(DepbumpError):
    """Raised when file system operations fail.

    Args:
        message: Error description.
        file_path: Path to the file involved.
        operation: Operation being performed (read/write/restore).
        original_error: Original exception that triggered this error.
    """

    __slots__ = ("file_path", "operation", "original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error


class ConfigError(DepbumpError):
    """Raised when configuration is missing, malformed, or invalid.

    Args:
        message: Error description.
        config_path: Path of the configuration file, if any.
        option: Offending option name, if any.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "config", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


class ProcessError(DepbumpError):
    """Raised when an install or verification command exits non-zero.

    Args:
        message: Error description.
        command: The command line that was executed.
        exit_code: Process exit status.
        stderr: Captured standard error, truncated in ``details``.
    """

    __slots__ = ("command", "exit_code", "stderr")

    def __init__(
        self,
        message: str,
        *,
        command: Optional[Sequence[str]] = None,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "command", " ".join(command) if command else None)
        _add_if(details, "exit_code", exit_code)
        if stderr:
            details["stderr"] = _truncate(stderr.strip())

        super().__init__(message, details)

        self.command = list(command) if command else []
        self.exit_code = exit_code
        self.stderr = stderr or ""


class DirtyStateError(DepbumpError):
    """Raised when doctor mode starts against uncommitted changes.

    Args:
        message: Error description.
        project_dir: Project directory that was checked.
        changes: ``git status --porcelain`` lines describing the changes.
    """

    __slots__ = ("project_dir", "changes")

    def __init__(
        self,
        message: str,
        *,
        project_dir: Optional[str] = None,
        changes: Optional[Sequence[str]] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "project", project_dir)
        if changes:
            details["changes"] = len(changes)

        super().__init__(message, details)

        self.project_dir = project_dir
        self.changes = list(changes) if changes else []


class DoctorError(DepbumpError):
    """Raised for unrecoverable doctor conditions, such as a failed restore."""


class WorkspaceError(DepbumpError):
    """Raised when workspace manifests cannot be discovered.

    Args:
        message: Error description.
        manifest_path: Root manifest whose workspace declaration is invalid.
    """

    __slots__ = ("manifest_path",)

    def __init__(
        self,
        message: str,
        *,
        manifest_path: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "manifest", manifest_path)

        super().__init__(message, details)

        self.manifest_path = manifest_path


class RunTimeoutError(DepbumpError):
    """Raised when the global run deadline expires.

    Args:
        timeout: The configured timeout in seconds.
    """

    __slots__ = ("timeout",)

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Exceeded global timeout of {timeout:g}s")
        self.timeout = timeout
