"""
Filesystem utilities for depbump.

This module provides safe helpers for reading, writing, backing up,
snapshotting, and discovering manifest files. All filesystem errors are
normalized to ``FileOperationError``.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from depbump.utils.logger import get_logger
from depbump.exceptions import FileOperationError
from depbump.constants import (
    IGNORED_DIRECTORIES,
    MANIFEST_FILENAME,
    MAX_FILE_SIZE,
)

logger = get_logger("filesystem")

PathLike = Union[str, Path]


def _validated_file(path: Path) -> Path:
    """Validate that ``path`` is an existing regular file and resolve it."""
    if not path.exists():
        raise FileOperationError(
            f"File not found: {path}",
            file_path=str(path),
            operation="read",
        )
    if not path.is_file():
        raise FileOperationError(
            f"Not a file: {path}",
            file_path=str(path),
            operation="read",
        )
    return path.resolve()


def _atomic_write(target: Path, content: bytes) -> None:
    """Atomically write bytes to a file using a temporary file + replace."""
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Optional[Path] = None

    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(target.parent),
            delete=False,
            prefix=f".{target.name}.",
            suffix=".tmp",
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())

        temp_path.replace(target)

    except Exception as exc:
        if temp_path and temp_path.exists():
            try:
                temp_path.unlink()
                logger.debug("Cleaned up temporary file: %s", temp_path)
            except OSError as cleanup_exc:
                logger.warning(
                    "Failed to clean up temporary file %s: %s",
                    temp_path,
                    cleanup_exc,
                )

        raise FileOperationError(
            f"Atomic write failed: {exc}",
            file_path=str(target),
            operation="write",
            original_error=exc,
        ) from exc


def safe_read_file(
    file_path: PathLike,
    *,
    max_size: Optional[int] = MAX_FILE_SIZE,
    encoding: str = "utf-8",
) -> str:
    """Safely read a text file with optional size limits.

    Args:
        file_path: Path to the file.
        max_size: Maximum allowed file size in bytes (None disables limit).
        encoding: Text encoding.

    Returns:
        File contents as a string.
    """
    path = _validated_file(Path(file_path))
    size = path.stat().st_size

    if max_size is not None and size > max_size:
        raise FileOperationError(
            f"File too large: {size} bytes (max {max_size})",
            file_path=str(path),
            operation="read",
        )

    try:
        # Decode bytes directly so line endings survive a rewrite
        return path.read_bytes().decode(encoding)
    except (OSError, UnicodeDecodeError) as exc:
        raise FileOperationError(
            f"Failed to read file: {exc}",
            file_path=str(path),
            operation="read",
            original_error=exc,
        ) from exc


def safe_write_file(
    file_path: PathLike,
    content: str,
    *,
    create_backup: bool = False,
) -> Optional[Path]:
    """Safely write text to a file using atomic replacement.

    Args:
        file_path: Destination path.
        content: Text content to write.
        create_backup: Whether to create a timestamped backup first.

    Returns:
        Path to the created backup, if any.
    """
    path = Path(file_path)
    backup: Optional[Path] = None

    if create_backup and path.is_file():
        backup = create_timestamped_backup(path)

    _atomic_write(path, content.encode("utf-8"))
    return backup


def create_timestamped_backup(file_path: PathLike) -> Path:
    """Create a timestamped backup with format:
    ``{stem}.{timestamp}.backup{suffix}``.
    """
    path = Path(file_path)

    if not path.is_file():
        raise FileOperationError(
            f"Cannot backup invalid file: {path}",
            file_path=str(path),
            operation="backup",
        )

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = path.parent / f"{path.stem}.{timestamp}.backup{path.suffix}"

    try:
        shutil.copy2(path, backup_path)
        logger.debug("Created timestamped backup: %s", backup_path)
        return backup_path
    except OSError as exc:
        raise FileOperationError(
            f"Failed to create backup: {exc}",
            file_path=str(path),
            operation="backup",
            original_error=exc,
        ) from exc


# ---------------------------------------------------------------------------
# Snapshots (doctor mode)
# ---------------------------------------------------------------------------


def snapshot_files(directory: PathLike, names: Iterable[str]) -> Dict[str, Optional[bytes]]:
    """Capture the raw bytes of ``names`` inside ``directory``.

    Missing files are recorded as ``None`` so that a later
    :func:`restore_files` deletes anything created in the meantime.
    """
    root = Path(directory)
    snapshot: Dict[str, Optional[bytes]] = {}

    for name in names:
        path = root / name
        try:
            snapshot[name] = path.read_bytes() if path.is_file() else None
        except OSError as exc:
            raise FileOperationError(
                f"Failed to snapshot file: {exc}",
                file_path=str(path),
                operation="snapshot",
                original_error=exc,
            ) from exc

    return snapshot


def restore_files(directory: PathLike, snapshot: Dict[str, Optional[bytes]]) -> None:
    """Restore files captured by :func:`snapshot_files`."""
    root = Path(directory)

    for name, content in snapshot.items():
        path = root / name
        if content is None:
            if path.exists():
                try:
                    path.unlink()
                except OSError as exc:
                    raise FileOperationError(
                        f"Failed to remove file: {exc}",
                        file_path=str(path),
                        operation="restore",
                        original_error=exc,
                    ) from exc
            continue

        if path.is_file() and path.read_bytes() == content:
            continue
        logger.debug("Restoring %s", path)
        _atomic_write(path, content)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def find_manifest_files(
    directory: PathLike = ".",
    *,
    filename: str = MANIFEST_FILENAME,
) -> List[Path]:
    """Find every manifest below ``directory``, skipping ``node_modules``."""
    root = Path(directory).resolve()
    if not root.is_dir():
        return []

    matches: List[Path] = []
    for path in root.rglob(filename):
        relative_parts = path.relative_to(root).parts
        if any(part in IGNORED_DIRECTORIES for part in relative_parts):
            continue
        if path.is_file():
            matches.append(path)

    return sorted(matches)
