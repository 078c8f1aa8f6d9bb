"""Subprocess-based ``git clone`` runner with workspace bookkeeping."""

from __future__ import annotations

import logging
import math
import os
import subprocess
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from stackscan.config import WorkspaceSettings
from stackscan.workspace import fs

logger = logging.getLogger(__name__)

BuildLogWriter = Callable[..., Any]


class GitCommandError(RuntimeError):
    """A git invocation failed, could not start or exceeded its timeout."""

    def __init__(self, message: str, *, timed_out: bool = False, exit_code: int | None = None):
        super().__init__(message)
        self.timed_out = timed_out
        self.exit_code = exit_code


@dataclass(slots=True, frozen=True)
class GitRunResult:
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int


@dataclass(slots=True, frozen=True)
class CloneResult:
    path: Path
    size_bytes: int
    file_count: int
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "file_count": self.file_count,
            "duration_ms": self.duration_ms,
        }


class RepoCloner:
    """Clone repositories into ``<workspace>/projects/<project_id>``.

    ``build_log`` receives ``(project_id, log_type, message, level=, phase=, details=)``
    and is treated as best-effort.
    """

    def __init__(
        self,
        settings: WorkspaceSettings,
        *,
        build_log: BuildLogWriter | None = None,
        git_binary: str = "git",
    ) -> None:
        self.settings = settings
        self.git_binary = git_binary
        self._build_log = build_log

    def get_clone_path(self, project_id: str) -> Path:
        path = self.settings.project_path(project_id).resolve()
        inside = fs.validate_path(path, self.settings)
        if not inside or path.parent != self.settings.projects_dir.resolve():
            raise ValueError(f"Project path escapes the workspace: {project_id!r}")
        return path

    def is_repo_cloned(self, project_id: str) -> bool:
        return fs.directory_exists(self.get_clone_path(project_id))

    def repo_size(self, project_id: str) -> int:
        try:
            return fs.directory_size(self.get_clone_path(project_id))
        except OSError as error:
            logger.error("Failed to get repo size for %s: %s", project_id, error)
            return 0

    def validate_git_installation(self) -> bool:
        try:
            result = self._run_git(["--version"], timeout_seconds=10)
        except GitCommandError:
            logger.error("Git is not installed or not in PATH")
            return False
        logger.info("Git is installed: %s", result.stdout.strip())
        return True

    def clone_repository(
        self,
        project_id: str,
        repo_url: str,
        branch: str | None = "main",
    ) -> CloneResult:
        clone_path = self.get_clone_path(project_id)
        try:
            fs.ensure_workspace_directories(self.settings)

            if fs.directory_exists(clone_path):
                self._log(project_id, f"Removing existing directory at {clone_path}")
                fs.remove_directory(clone_path)

            available = fs.free_disk_space(clone_path)
            required = self.settings.min_free_disk_mb * 1024 * 1024
            if available != math.inf and available < required:
                raise OSError(
                    "Insufficient disk space. "
                    f"Available: {round(available / 1024 / 1024)}MB, "
                    f"Required: {self.settings.min_free_disk_mb}MB",
                )

            self._log(
                project_id,
                f"Starting clone of {repo_url} to {clone_path}",
                details={"repo_url": repo_url, "branch": branch, "clone_path": str(clone_path)},
            )

            args = ["clone"]
            if branch:
                args.extend(["-b", branch])
            if self.settings.shallow_clone:
                args.extend(["--depth", "1"])
            args.extend([repo_url, str(clone_path)])

            run = self._run_git(args, timeout_seconds=self.settings.clone_timeout_seconds)
            if run.exit_code != 0:
                raise GitCommandError(
                    f"Git command failed with exit code {run.exit_code}: "
                    f"{(run.stderr or run.stdout).strip()}",
                    exit_code=run.exit_code,
                )

            size_bytes = fs.directory_size(clone_path)
            files = fs.file_count(clone_path)
            self._log(
                project_id,
                f"Successfully cloned repository ({fs.to_megabytes(size_bytes)}MB, {files} files)",
                level="success",
                details={
                    "size_bytes": size_bytes,
                    "file_count": files,
                    "duration_ms": run.duration_ms,
                },
            )
            if size_bytes > self.settings.max_project_size_mb * 1024 * 1024:
                logger.warning(
                    "Clone of %s exceeds max project size (%sMB > %dMB)",
                    repo_url,
                    fs.to_megabytes(size_bytes),
                    self.settings.max_project_size_mb,
                )
            return CloneResult(
                path=clone_path,
                size_bytes=size_bytes,
                file_count=files,
                duration_ms=run.duration_ms,
            )
        except Exception as error:
            self._log(
                project_id,
                f"Clone failed: {error}",
                level="error",
                details={"error": str(error), "repo_url": repo_url, "branch": branch},
            )
            try:
                fs.remove_directory(clone_path)
            except OSError as cleanup_error:
                logger.error("Failed to cleanup after failed clone: %s", cleanup_error)
            raise

    def cleanup_repo(self, project_id: str) -> bool:
        clone_path = self.get_clone_path(project_id)
        if not fs.directory_exists(clone_path):
            return True
        self._log(
            project_id,
            f"Cleaning up repository at {clone_path}",
            log_type="workspace",
            phase="cleanup",
        )
        try:
            fs.remove_directory(clone_path)
        except OSError as error:
            self._log(
                project_id,
                f"Cleanup failed: {error}",
                log_type="workspace",
                level="error",
                phase="cleanup",
                details={"error": str(error)},
            )
            raise
        self._log(
            project_id,
            "Repository cleanup completed",
            log_type="workspace",
            level="success",
            phase="cleanup",
        )
        return True

    def _run_git(self, args: list[str], *, timeout_seconds: float) -> GitRunResult:
        command = [self.git_binary, *args]
        started = time.monotonic()
        # Output goes to temp files so a chatty clone cannot fill a pipe and stall.
        with tempfile.TemporaryFile() as stdout_handle, tempfile.TemporaryFile() as stderr_handle:
            try:
                process = subprocess.Popen(  # noqa: S603
                    command,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                    stdin=subprocess.DEVNULL,
                    env=_git_env(),
                )
            except OSError as error:
                raise GitCommandError(f"Failed to execute git command: {error}") from error

            try:
                returncode = process.wait(timeout=timeout_seconds)
            except subprocess.TimeoutExpired:
                _terminate_process(process)
                raise GitCommandError(
                    f"Git command timed out after {int(timeout_seconds * 1000)}ms",
                    timed_out=True,
                ) from None

            stdout_handle.seek(0)
            stderr_handle.seek(0)
            return GitRunResult(
                exit_code=returncode,
                stdout=stdout_handle.read().decode("utf-8", errors="replace"),
                stderr=stderr_handle.read().decode("utf-8", errors="replace"),
                duration_ms=int((time.monotonic() - started) * 1000),
            )

    def _log(  # noqa: PLR0913
        self,
        project_id: str,
        message: str,
        *,
        log_type: str = "git",
        level: str = "info",
        phase: str = "cloning",
        details: dict[str, Any] | None = None,
    ) -> None:
        logger.info("[%s] %s", project_id, message)
        if self._build_log is None:
            return
        try:
            self._build_log(
                project_id,
                log_type,
                message,
                level=level,
                phase=phase,
                details=details,
            )
        except Exception:  # noqa: BLE001
            logger.debug("Failed to persist build log for %s", project_id, exc_info=True)


def _git_env() -> dict[str, str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
