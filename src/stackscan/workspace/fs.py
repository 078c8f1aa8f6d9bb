"""Low-level filesystem operations on the clone workspace."""

from __future__ import annotations

import logging
import math
import os
import shutil
from pathlib import Path

from stackscan.config import WorkspaceSettings

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


def ensure_workspace_directories(settings: WorkspaceSettings) -> None:
    settings.projects_dir.mkdir(parents=True, exist_ok=True)
    settings.temp_dir.mkdir(parents=True, exist_ok=True)


def directory_exists(path: Path) -> bool:
    return path.is_dir()


def remove_directory(path: Path) -> bool:
    """Remove ``path`` recursively. A missing directory counts as removed."""

    if not path.exists():
        return True
    try:
        shutil.rmtree(path)
    except OSError as error:
        raise OSError(f"Failed to remove directory {path}: {error}") from error
    return True


def directory_size(path: Path) -> int:
    """Total size in bytes of regular files under ``path`` (0 when missing)."""

    return sum(entry.stat().st_size for entry in _walk_files(path))


def file_count(path: Path) -> int:
    return sum(1 for _ in _walk_files(path))


def free_disk_space(path: Path) -> float:
    """Free bytes on the volume holding ``path``; ``inf`` when it cannot be determined."""

    probe = path
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    try:
        return float(shutil.disk_usage(probe).free)
    except OSError as error:
        logger.warning("Could not check disk space for %s: %s", path, error)
        return math.inf


def validate_path(target: Path, settings: WorkspaceSettings) -> bool:
    """True when ``target`` resolves inside the workspace root."""

    root = settings.root_dir.resolve()
    resolved = target.resolve()
    return resolved == root or root in resolved.parents


def to_megabytes(size_bytes: float) -> float:
    return round(size_bytes / _BYTES_PER_MB, 2)


def _walk_files(path: Path):
    if not path.is_dir():
        return
    for current, _dirs, files in os.walk(path):
        for name in files:
            entry = Path(current) / name
            if entry.is_file() and not entry.is_symlink():
                yield entry

