"""Clone -> analyze work functions and the sinks that mirror jobs onto projects."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from stackscan.analysis.service import TechStackReport, analyze_repository
from stackscan.config import Settings
from stackscan.engine.models import JobKind, JobLogEvent, JobView
from stackscan.engine.scheduler import Scheduler
from stackscan.engine.sinks import fan_out, log_job_event
from stackscan.git.clone import CloneResult, RepoCloner
from stackscan.models import (
    AnalysisStatus,
    CloneStatus,
    LogLevel,
    ProjectNotFoundError,
    ProjectStatus,
)
from stackscan.storage.common import utc_now
from stackscan.storage.repository import ProjectRepository

logger = logging.getLogger(__name__)

QUEUE_LOG_TYPE = "queue"
ANALYSIS_LOG_TYPE = "analysis"

_EVENT_PHASES = {"started": "initialization"}


class Cloner(Protocol):
    def clone_repository(
        self,
        project_id: str,
        repo_url: str,
        branch: str | None = "main",
    ) -> CloneResult: ...

    def cleanup_repo(self, project_id: str) -> bool: ...


Analyzer = Callable[..., TechStackReport]


class ProjectPipeline:
    """Work functions for the ``clone`` and ``analyze`` job kinds.

    The clone stage chains the analyze stage by submitting a new job to the
    scheduler once the working copy is in place.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        cloner: Cloner,
        scheduler: Scheduler,
        *,
        analyzer: Analyzer = analyze_repository,
    ) -> None:
        self.repository = repository
        self.cloner = cloner
        self.scheduler = scheduler
        self.analyzer = analyzer

    def register(self) -> None:
        self.scheduler.register(JobKind.CLONE, self.clone)
        self.scheduler.register(JobKind.ANALYZE, self.analyze)
        self.scheduler.set_log_sink(fan_out(log_job_event, self.persist_job_event))
        self.scheduler.set_entity_sink(self.mark_project_failed)

    # -- work functions ------------------------------------------------------

    def clone(self, payload: dict[str, Any]) -> dict[str, Any]:
        project_id = _require(payload, "project_id")
        repo_url = _require(payload, "repo_url")
        branch = payload.get("branch") or None
        self._load_project(project_id)

        self.repository.update_project(
            project_id,
            status=ProjectStatus.CLONING,
            clone_status=CloneStatus.CLONING,
        )
        result = self.cloner.clone_repository(project_id, repo_url, branch)
        self.repository.update_project(
            project_id,
            status=ProjectStatus.CLONED,
            clone_status=CloneStatus.CLONED,
            cloned_at=utc_now(),
            workspace_path=str(result.path),
            workspace_size_bytes=result.size_bytes,
            file_count=result.file_count,
        )

        analyze_job_id = self.scheduler.submit(
            JobKind.ANALYZE,
            {"project_id": project_id, "project_path": str(result.path)},
        )
        # The analyze job already exists; failing here would re-clone under it.
        try:
            self.repository.update_project(project_id, job_id=analyze_job_id)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Could not record analyze job %s for project %s",
                analyze_job_id,
                project_id,
                exc_info=True,
            )
        return result.to_dict()

    def analyze(self, payload: dict[str, Any]) -> dict[str, Any]:
        project_id = _require(payload, "project_id")
        project_path = Path(_require(payload, "project_path"))
        self._load_project(project_id)

        self.repository.update_project(
            project_id,
            status=ProjectStatus.ANALYZING,
            analysis_status=AnalysisStatus.ANALYZING,
        )
        try:
            report = self.analyzer(
                project_path,
                progress=lambda level, message: self._analysis_log(project_id, level, message),
            )
        except Exception as error:
            self._analysis_log(project_id, LogLevel.ERROR.value, f"Analysis failed: {error}")
            self.repository.update_project(
                project_id,
                analysis_status=AnalysisStatus.FAILED,
                error_message=str(error),
            )
            raise

        report_dict = report.to_dict()
        self.repository.update_project(
            project_id,
            status=ProjectStatus.ANALYZED,
            analysis_status=AnalysisStatus.COMPLETED,
            analysis=report_dict["analysis"],
            dependencies=report_dict["dependencies"],
            analyzed_at=utc_now(),
            error_message=None,
        )
        return report_dict

    # -- sinks ---------------------------------------------------------------

    def persist_job_event(self, event: JobLogEvent) -> None:
        """Store job lifecycle events as ``queue`` build logs for the owning project."""

        project_id = event.payload.get("project_id")
        if not project_id:
            return
        self.repository.add_log(
            str(project_id),
            QUEUE_LOG_TYPE,
            event.message,
            level=event.level,
            phase=_EVENT_PHASES.get(event.event, "execution"),
            details={"job_id": event.job_id, "job_kind": event.kind, **event.details},
            duration_ms=event.details.get("duration_ms"),
        )

    def mark_project_failed(self, job: JobView, error: str) -> None:
        project_id = job.payload.get("project_id")
        if not project_id:
            return
        changes: dict[str, Any] = {"status": ProjectStatus.FAILED, "error_message": error}
        if job.kind == JobKind.CLONE.value:
            changes["clone_status"] = CloneStatus.FAILED
        try:
            self.repository.update_project(str(project_id), **changes)
        except ProjectNotFoundError:
            logger.info("Project %s vanished before its failure could be recorded", project_id)

    # -- helpers -------------------------------------------------------------

    def _load_project(self, project_id: str) -> None:
        if self.repository.get_project(project_id) is None:
            raise ProjectNotFoundError(project_id)

    def _analysis_log(self, project_id: str, level: str, message: str) -> None:
        try:
            self.repository.add_log(
                project_id,
                ANALYSIS_LOG_TYPE,
                message,
                level=level,
                phase="analysis",
            )
        except Exception:  # noqa: BLE001
            logger.debug("Failed to persist analysis log for %s", project_id, exc_info=True)


def build_engine(
    settings: Settings,
    repository: ProjectRepository,
    *,
    cloner: Cloner | None = None,
    analyzer: Analyzer = analyze_repository,
    **scheduler_kwargs: Any,
) -> tuple[Scheduler, ProjectPipeline]:
    """Wire a scheduler with the project pipeline's work functions and sinks."""

    scheduler = Scheduler.from_settings(settings.engine, **scheduler_kwargs)
    pipeline = ProjectPipeline(
        repository,
        cloner or RepoCloner(settings.workspace, build_log=repository.add_log),
        scheduler,
        analyzer=analyzer,
    )
    pipeline.register()
    return scheduler, pipeline


def _require(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not value:
        raise ValueError(f"Job payload is missing {key!r}")
    return str(value)
