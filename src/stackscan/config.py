"""Runtime configuration for the job engine, workspace and GitHub lookups."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class EngineSettings:
    """Background job engine settings, read once at process start."""

    max_concurrency: int = 3
    max_retries: int = 2
    poll_interval_seconds: float = 1.0
    retry_backoff_base_seconds: float = 0.0
    retry_backoff_max_seconds: float = 60.0
    reap_interval_seconds: float = 600.0
    retention_seconds: float = 3_600.0


@dataclass(slots=True)
class WorkspaceSettings:
    """Where repositories are cloned and how clones are bounded."""

    root_dir: Path = Path("workspace")
    clone_timeout_seconds: float = 300.0
    shallow_clone: bool = False
    min_free_disk_mb: int = 100
    max_project_size_mb: int = 1_000

    @property
    def projects_dir(self) -> Path:
        return self.root_dir / "projects"

    @property
    def temp_dir(self) -> Path:
        return self.root_dir / "temp"

    def project_path(self, project_id: str) -> Path:
        return self.projects_dir / str(project_id)


@dataclass(slots=True)
class GithubSettings:
    """GitHub REST API settings."""

    api_url: str = "https://api.github.com"
    token: str | None = None
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".stackscan.db")
    engine: EngineSettings = field(default_factory=EngineSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    github: GithubSettings = field(default_factory=GithubSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("STACKSCAN_DB_PATH", ".stackscan.db")),
            engine=EngineSettings(
                max_concurrency=int(os.getenv("STACKSCAN_MAX_CONCURRENT_JOBS", "3")),
                max_retries=int(os.getenv("STACKSCAN_JOB_RETRY_ATTEMPTS", "2")),
                poll_interval_seconds=float(
                    os.getenv("STACKSCAN_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                retry_backoff_base_seconds=float(
                    os.getenv("STACKSCAN_RETRY_BACKOFF_BASE_SECONDS", "0"),
                ),
                retry_backoff_max_seconds=float(
                    os.getenv("STACKSCAN_RETRY_BACKOFF_MAX_SECONDS", "60"),
                ),
                reap_interval_seconds=float(
                    os.getenv("STACKSCAN_REAP_INTERVAL_SECONDS", "600"),
                ),
                retention_seconds=float(os.getenv("STACKSCAN_JOB_RETENTION_SECONDS", "3600")),
            ),
            workspace=WorkspaceSettings(
                root_dir=Path(os.getenv("STACKSCAN_WORKSPACE_ROOT", "workspace")),
                clone_timeout_seconds=float(
                    os.getenv("STACKSCAN_GIT_CLONE_TIMEOUT_SECONDS", "300"),
                ),
                shallow_clone=_env_bool("STACKSCAN_SHALLOW_CLONE", default=False),
                min_free_disk_mb=int(os.getenv("STACKSCAN_MIN_FREE_DISK_MB", "100")),
                max_project_size_mb=int(os.getenv("STACKSCAN_MAX_PROJECT_SIZE_MB", "1000")),
            ),
            github=GithubSettings(
                api_url=os.getenv("STACKSCAN_GITHUB_API_URL", "https://api.github.com"),
                token=os.getenv("GITHUB_TOKEN") or None,
                timeout_seconds=float(os.getenv("STACKSCAN_GITHUB_TIMEOUT_SECONDS", "10")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any engine or workspace setting is out of range."""

        engine = self.engine
        if engine.max_concurrency <= 0:
            raise ValueError("STACKSCAN_MAX_CONCURRENT_JOBS must be a positive integer.")
        if engine.max_retries < 0:
            raise ValueError("STACKSCAN_JOB_RETRY_ATTEMPTS must be >= 0.")
        if engine.poll_interval_seconds <= 0:
            raise ValueError("STACKSCAN_POLL_INTERVAL_SECONDS must be > 0.")
        if engine.retry_backoff_base_seconds < 0:
            raise ValueError("STACKSCAN_RETRY_BACKOFF_BASE_SECONDS must be >= 0.")
        if engine.retry_backoff_max_seconds < engine.retry_backoff_base_seconds:
            raise ValueError(
                "STACKSCAN_RETRY_BACKOFF_MAX_SECONDS must be >= "
                "STACKSCAN_RETRY_BACKOFF_BASE_SECONDS.",
            )
        if engine.reap_interval_seconds <= 0:
            raise ValueError("STACKSCAN_REAP_INTERVAL_SECONDS must be > 0.")
        if engine.retention_seconds < 0:
            raise ValueError("STACKSCAN_JOB_RETENTION_SECONDS must be >= 0.")

        if self.workspace.clone_timeout_seconds <= 0:
            raise ValueError("STACKSCAN_GIT_CLONE_TIMEOUT_SECONDS must be > 0.")
        if self.workspace.min_free_disk_mb < 0:
            raise ValueError("STACKSCAN_MIN_FREE_DISK_MB must be >= 0.")

        parsed = urlparse(self.github.api_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "Invalid STACKSCAN_GITHUB_API_URL: "
                f"{self.github.api_url!r}. Expected an absolute http(s) URL.",
            )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
