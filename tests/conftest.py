"""Shared test fixtures."""

from __future__ import annotations

import shutil
import subprocess
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from stackscan.config import EngineSettings, Settings, WorkspaceSettings
from stackscan.git.clone import CloneResult, GitCommandError
from stackscan.storage.repository import ProjectRepository
from stackscan.workspace import fs


@pytest.fixture()
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout elapses."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "stackscan.db",
        engine=EngineSettings(poll_interval_seconds=0.05),
        workspace=WorkspaceSettings(root_dir=tmp_path / "workspace", min_free_disk_mb=0),
    )


@pytest.fixture()
def repository(settings: Settings) -> Iterator[ProjectRepository]:
    repo = ProjectRepository(settings.db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def sample_project_dir(tmp_path: Path) -> Path:
    """A small Node + Python project tree with a vendored directory to ignore."""

    root = tmp_path / "sample"
    (root / "src").mkdir(parents=True)
    (root / "node_modules" / "left-pad").mkdir(parents=True)
    (root / "src" / "index.js").write_text("module.exports = {};\n", "utf-8")
    (root / "src" / "app.js").write_text("const express = require('express');\n", "utf-8")
    (root / "src" / "util.ts").write_text("export const x = 1;\n", "utf-8")
    (root / "scripts.py").write_text("print('hi')\n", "utf-8")
    (root / "README.md").write_text("# sample\n", "utf-8")
    (root / "node_modules" / "left-pad" / "index.js").write_text("//\n", "utf-8")
    (root / "package.json").write_text(
        '{"dependencies": {"express": "^4.18.2", "mongoose": "~7.0.0"},'
        ' "devDependencies": {"vite": "^5.0.0"}}',
        "utf-8",
    )
    (root / "yarn.lock").write_text("", "utf-8")
    return root


@pytest.fixture()
def git_origin(tmp_path: Path) -> Path:
    """A local git repository on branch ``main`` usable as a clone source."""

    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    origin = tmp_path / "origin"
    origin.mkdir()
    (origin / "main.py").write_text("print('hello')\n", "utf-8")
    (origin / "requirements.txt").write_text("flask==3.0.0\nredis>=5\n", "utf-8")

    def _git(*args: str) -> None:
        subprocess.run(  # noqa: S603
            [  # noqa: S607
                "git",
                "-c",
                "user.name=stackscan",
                "-c",
                "user.email=stackscan@example.com",
                "-c",
                "commit.gpgsign=false",
                *args,
            ],
            cwd=origin,
            check=True,
            capture_output=True,
        )

    _git("init", "-q")
    _git("checkout", "-q", "-b", "main")
    _git("add", ".")
    _git("commit", "-q", "-m", "initial")
    return origin


class CopyCloner:
    """Stands in for ``RepoCloner`` by copying a local tree into the workspace.

    The first ``failures`` calls raise the error git reports for a missing remote.
    """

    def __init__(self, source: Path, projects_dir: Path, *, failures: int = 0) -> None:
        self.source = source
        self.projects_dir = projects_dir
        self.failures = failures
        self.calls: list[tuple[str, str, str | None]] = []
        self.cleaned: list[str] = []

    def clone_repository(
        self,
        project_id: str,
        repo_url: str,
        branch: str | None = "main",
    ) -> CloneResult:
        self.calls.append((project_id, repo_url, branch))
        if self.failures > 0:
            self.failures -= 1
            raise GitCommandError(
                "Git command failed with exit code 128: fatal: repository not found",
                exit_code=128,
            )
        target = self.projects_dir / project_id
        shutil.copytree(self.source, target, dirs_exist_ok=True)
        return CloneResult(
            path=target,
            size_bytes=fs.directory_size(target),
            file_count=fs.file_count(target),
            duration_ms=1,
        )

    def cleanup_repo(self, project_id: str) -> bool:
        self.cleaned.append(project_id)
        return fs.remove_directory(self.projects_dir / project_id)

    def validate_git_installation(self) -> bool:
        return True


@pytest.fixture()
def copy_cloner(sample_project_dir: Path, settings: Settings) -> CopyCloner:
    return CopyCloner(sample_project_dir, settings.workspace.projects_dir)


@pytest.fixture()
def make_cloner(sample_project_dir: Path, settings: Settings) -> Callable[..., CopyCloner]:
    def _make(*, failures: int = 0) -> CopyCloner:
        return CopyCloner(sample_project_dir, settings.workspace.projects_dir, failures=failures)

    return _make
