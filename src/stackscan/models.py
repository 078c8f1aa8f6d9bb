"""Domain models for projects and their build logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ProjectStatus(str, Enum):
    """Overall project lifecycle as seen by callers."""

    PENDING = "pending"
    CLONING = "cloning"
    CLONED = "cloned"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    FAILED = "failed"


class CloneStatus(str, Enum):
    PENDING = "pending"
    CLONING = "cloning"
    CLONED = "cloned"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"


class ProjectNotFoundError(LookupError):
    """Raised when a project id does not resolve to a stored project."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


@dataclass(slots=True)
class ProjectCreate:
    """Input payload for registering a repository."""

    repo_url: str
    owner: str
    name: str
    default_branch: str = "main"
    project_id: str | None = None


@dataclass(slots=True)
class ProjectView:
    """Readable project view for services and CLI."""

    project_id: str
    repo_url: str
    owner: str
    name: str
    default_branch: str
    status: str
    clone_status: str
    analysis_status: str
    job_id: str | None
    workspace_path: str | None
    workspace_size_bytes: int | None
    file_count: int | None
    cloned_at: datetime | None
    analyzed_at: datetime | None
    analysis: dict[str, Any] | None
    dependencies: dict[str, Any] | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def repo_identifier(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(slots=True)
class BuildLogView:
    """One persisted build log entry."""

    log_id: int
    project_id: str
    log_type: str
    level: str
    phase: str
    message: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
    exit_code: int | None = None
    duration_ms: int | None = None
