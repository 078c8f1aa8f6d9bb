"""Project-level operations on top of the repository and the job engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from stackscan.engine.models import JobKind, JobView
from stackscan.engine.scheduler import Scheduler
from stackscan.github.client import GithubClient, parse_repo_url
from stackscan.models import (
    BuildLogView,
    CloneStatus,
    LogLevel,
    ProjectCreate,
    ProjectNotFoundError,
    ProjectStatus,
    ProjectView,
)
from stackscan.pipeline import QUEUE_LOG_TYPE, Cloner
from stackscan.storage.repository import ProjectRepository
from stackscan.workspace import fs

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class WorkspaceInfo:
    exists: bool
    path: str | None = None
    size_bytes: int = 0
    file_count: int = 0
    cloned_at: datetime | None = None
    message: str | None = None

    @property
    def size_mb(self) -> float:
        return fs.to_megabytes(self.size_bytes)


@dataclass(slots=True, frozen=True)
class ProjectStatusReport:
    project: ProjectView
    job: JobView | None
    workspace: WorkspaceInfo


class ProjectService:
    """Create, inspect, reclone and delete analysed projects."""

    def __init__(
        self,
        repository: ProjectRepository,
        scheduler: Scheduler,
        cloner: Cloner,
        *,
        github: GithubClient | None = None,
    ) -> None:
        self.repository = repository
        self.scheduler = scheduler
        self.cloner = cloner
        self.github = github

    def create_project_with_clone(self, repo_url: str, branch: str | None = "main") -> ProjectView:
        """Register ``repo_url`` and queue its clone job.

        With a GitHub client configured the repository is looked up first, and
        its default branch is used when ``branch`` is None.
        """

        ref = parse_repo_url(repo_url)
        if self.github is not None:
            metadata = self.github.get_repo_metadata(repo_url)
            branch = branch or metadata.default_branch
        branch = branch or "main"

        project = self.repository.create_project(
            ProjectCreate(repo_url=repo_url, owner=ref.owner, name=ref.name, default_branch=branch),
        )
        self.repository.add_log(
            project.project_id,
            "info",
            f"Project created: {ref.full_name}",
            level=LogLevel.SUCCESS,
            details={"repo_url": repo_url, "branch": branch},
        )
        return self._queue_clone(project, label="Clone")

    def get_project(self, project_id: str) -> ProjectView:
        project = self.repository.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def get_project_status(self, project_id: str) -> ProjectStatusReport:
        project = self.get_project(project_id)
        job = self.scheduler.get_status(project.job_id) if project.job_id else None
        return ProjectStatusReport(
            project=project,
            job=job,
            workspace=self._workspace_info(project),
        )

    def get_workspace_info(self, project_id: str) -> WorkspaceInfo:
        return self._workspace_info(self.get_project(project_id))

    def list_projects(self, *, status: str | None = None, limit: int = 100) -> list[ProjectView]:
        return self.repository.list_projects(status=status, limit=limit)

    def list_logs(
        self,
        project_id: str,
        *,
        limit: int = 100,
        log_type: str | None = None,
    ) -> list[BuildLogView]:
        self.get_project(project_id)
        return self.repository.list_logs(project_id, limit=limit, log_type=log_type)

    def delete_project_with_cleanup(self, project_id: str) -> bool:
        project = self.get_project(project_id)
        if project.workspace_path:
            try:
                self.cloner.cleanup_repo(project_id)
            except OSError as error:
                logger.warning("Workspace cleanup failed for %s: %s", project_id, error)
        return self.repository.delete_project(project_id)

    def reclone_repository(self, project_id: str) -> ProjectView:
        project = self.get_project(project_id)
        try:
            self.cloner.cleanup_repo(project_id)
        except OSError as error:
            logger.warning("Cleanup before reclone failed for %s: %s", project_id, error)

        project = self.repository.update_project(
            project_id,
            status=ProjectStatus.PENDING,
            clone_status=CloneStatus.PENDING,
            cloned_at=None,
            workspace_size_bytes=None,
            file_count=None,
            error_message=None,
        )
        return self._queue_clone(project, label="Reclone")

    def _queue_clone(self, project: ProjectView, *, label: str) -> ProjectView:
        job_id = self.scheduler.submit(
            JobKind.CLONE,
            {
                "project_id": project.project_id,
                "repo_url": project.repo_url,
                "branch": project.default_branch,
            },
        )
        # A fast clone may already have chained its analyze job and recorded that id.
        project = self.repository.update_project(
            project.project_id,
            expected_status=(ProjectStatus.PENDING, ProjectStatus.CLONING, ProjectStatus.FAILED),
            job_id=job_id,
        )
        self.repository.add_log(
            project.project_id,
            QUEUE_LOG_TYPE,
            f"{label} job {job_id} queued",
            details={"job_id": job_id},
        )
        return project

    def _workspace_info(self, project: ProjectView) -> WorkspaceInfo:
        if not project.workspace_path:
            return WorkspaceInfo(exists=False, message="Workspace not yet created")
        path = Path(project.workspace_path)
        if not fs.directory_exists(path):
            return WorkspaceInfo(
                exists=False,
                path=project.workspace_path,
                message="Workspace directory not found",
            )
        return WorkspaceInfo(
            exists=True,
            path=project.workspace_path,
            size_bytes=fs.directory_size(path),
            file_count=fs.file_count(path),
            cloned_at=project.cloned_at,
        )
