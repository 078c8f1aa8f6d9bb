"""Controllers for stackscan CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from stackscan.analysis.service import TechStackReport, analyze_repository, tech_stack_summary
from stackscan.config import Settings
from stackscan.engine.models import JobView
from stackscan.engine.reaper import Reaper
from stackscan.engine.scheduler import Scheduler
from stackscan.git.clone import RepoCloner
from stackscan.github.client import GithubClient
from stackscan.models import ProjectStatus, ProjectView
from stackscan.pipeline import build_engine
from stackscan.services import ProjectService
from stackscan.storage.repository import ProjectRepository


@dataclass(slots=True)
class AnalyzeCommand:
    """CLI inputs for the clone + analyze run."""

    db_path: Path | None
    workspace: Path | None
    repo_url: str
    branch: str | None
    timeout_seconds: float
    lookup: bool


@dataclass(slots=True)
class DetectCommand:
    """CLI inputs for analyzing a local directory."""

    path: Path


@dataclass(slots=True)
class ProjectListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ProjectCommand:
    """CLI inputs for commands addressing one project."""

    db_path: Path | None
    project_id: str
    workspace: Path | None = None
    timeout_seconds: float = 600.0


@dataclass(slots=True)
class ProjectLogsCommand:
    db_path: Path | None
    project_id: str
    limit: int
    log_type: str | None


@dataclass(slots=True)
class PruneLogsCommand:
    db_path: Path | None
    older_than_days: int


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool


class StackscanCliController:
    """Coordinates CLI command execution."""

    def analyze(self, command: AnalyzeCommand) -> CommandResult:
        settings = _settings(command.db_path, command.workspace)
        if not RepoCloner(settings.workspace).validate_git_installation():
            return CommandResult(lines=["Git is not installed or not in PATH."], success=False)
        with _repository(settings) as repository, _engine(settings, repository) as service:
            if command.lookup:
                service.github = GithubClient(settings.github)
            try:
                project = service.create_project_with_clone(command.repo_url, command.branch)
            finally:
                if service.github is not None:
                    service.github.close()
            return _run_until_idle(service, project, command.timeout_seconds)

    def reclone(self, command: ProjectCommand) -> CommandResult:
        settings = _settings(command.db_path, command.workspace)
        with _repository(settings) as repository, _engine(settings, repository) as service:
            project = service.reclone_repository(command.project_id)
            return _run_until_idle(service, project, command.timeout_seconds)

    def detect(self, command: DetectCommand) -> list[str]:
        report = analyze_repository(command.path)
        return [f"Path: {command.path}", *render_report_lines(report.to_dict()["analysis"], report)]

    def list_projects(self, command: ProjectListCommand) -> list[str]:
        settings = _settings(command.db_path, None)
        with _repository(settings) as repository:
            projects = repository.list_projects(status=command.status, limit=command.limit)

        lines = [f"Projects: {len(projects)}"]
        for project in projects:
            lines.append(
                f"  {project.project_id} {project.repo_identifier} status={project.status} "
                f"clone={project.clone_status} analysis={project.analysis_status} "
                f"created_at={project.created_at.isoformat()}",
            )
        return lines

    def show_project(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.db_path, command.workspace)
        with _repository(settings) as repository:
            service = ProjectService(repository, Scheduler(), _cloner(settings, repository))
            status = service.get_project_status(command.project_id)

        lines = render_project_lines(status.project)
        workspace = status.workspace
        if workspace.exists:
            lines.append(
                f"Workspace: {workspace.path} "
                f"size={workspace.size_mb}MB files={workspace.file_count}",
            )
        else:
            lines.append(f"Workspace: {workspace.message}")
        if status.project.analysis:
            lines.extend(render_report_lines(status.project.analysis))
        return lines

    def project_logs(self, command: ProjectLogsCommand) -> list[str]:
        settings = _settings(command.db_path, None)
        with _repository(settings) as repository:
            service = ProjectService(repository, Scheduler(), _cloner(settings, repository))
            logs = service.list_logs(
                command.project_id,
                limit=command.limit,
                log_type=command.log_type,
            )

        lines = [f"Logs: {len(logs)}"]
        for entry in reversed(logs):
            lines.append(
                f"  {entry.created_at.isoformat()} [{entry.level}] {entry.log_type}/{entry.phase}: "
                f"{entry.message}",
            )
        return lines

    def delete_project(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.db_path, command.workspace)
        with _repository(settings) as repository:
            service = ProjectService(repository, Scheduler(), _cloner(settings, repository))
            service.delete_project_with_cleanup(command.project_id)
        return [f"Project deleted: {command.project_id}"]

    def prune_logs(self, command: PruneLogsCommand) -> list[str]:
        settings = _settings(command.db_path, None)
        with _repository(settings) as repository:
            removed = repository.prune_logs(older_than_days=command.older_than_days)
        return [f"Pruned build logs: {removed} (older than {command.older_than_days} days)"]

    def github_info(self, repo_url: str) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        with GithubClient(settings.github) as client:
            metadata = client.get_repo_metadata(repo_url)
            rate = client.get_rate_limit()
        return [
            f"Repository: {metadata.full_name} ({'private' if metadata.is_private else 'public'})",
            f"Default branch: {metadata.default_branch}",
            f"Language: {metadata.language or '-'}",
            f"Stars: {metadata.stars} Forks: {metadata.forks}",
            f"Clone URL: {metadata.clone_url}",
            f"Description: {metadata.description or '-'}",
            f"Rate limit: {rate.remaining}/{rate.limit} (resets {rate.reset_at.isoformat()})",
        ]


def render_project_lines(project: ProjectView) -> list[str]:
    lines = [
        f"Project: {project.project_id} {project.repo_identifier}",
        f"Status: {project.status} clone={project.clone_status} "
        f"analysis={project.analysis_status}",
        f"Branch: {project.default_branch}",
    ]
    if project.error_message:
        lines.append(f"Error: {project.error_message}")
    return lines


def render_report_lines(
    analysis: dict[str, object],
    report: TechStackReport | None = None,
) -> list[str]:
    summary = tech_stack_summary(analysis)
    if summary is None:
        return ["Tech stack: not analyzed"]
    languages = ", ".join(
        f"{language['name']} {language['percentage']}%" for language in summary["languages"]
    )
    lines = [
        f"Primary language: {summary['primary_language'] or '-'}",
        f"Languages: {languages or '-'}",
        f"Frameworks: {', '.join(summary['frameworks']) or '-'}",
        f"Databases: {', '.join(summary['databases']) or '-'}",
        f"Build tools: {', '.join(summary['build_tools']) or '-'}",
        f"Package manager: {summary['package_manager'] or '-'}",
    ]
    if report is not None:
        lines.append(
            f"Dependencies: {report.dependencies.total_count} "
            f"({', '.join(report.dependencies.files) or 'no manifests'})",
        )
    return lines


def render_job_lines(jobs: list[JobView]) -> list[str]:
    lines = [f"Jobs: {len(jobs)}"]
    for job in jobs:
        line = (
            f"  {job.id} kind={job.kind} state={job.state.value} retries={job.retry_count} "
            f"duration_ms={job.duration_ms if job.duration_ms is not None else '-'}"
        )
        if job.last_error:
            line += f" error={job.last_error}"
        lines.append(line)
    return lines


def _run_until_idle(
    service: ProjectService,
    project: ProjectView,
    timeout_seconds: float,
) -> CommandResult:
    scheduler = service.scheduler
    idle = scheduler.wait_until_idle(timeout=timeout_seconds)
    project = service.get_project(project.project_id)

    stats = scheduler.stats()
    lines = render_project_lines(project)
    lines.append(
        f"Queue: total={stats.total} completed={stats.completed} failed={stats.failed} "
        f"pending={stats.pending} running={stats.running}",
    )
    lines.extend(render_job_lines(scheduler.list_jobs()))
    if not idle:
        lines.append(f"Timed out after {timeout_seconds:g}s; remaining jobs were abandoned.")
    if project.analysis:
        lines.extend(render_report_lines(project.analysis))
    success = idle and project.status == ProjectStatus.ANALYZED.value
    return CommandResult(lines=lines, success=success)


def _settings(db_path: Path | None, workspace: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if workspace is not None:
        settings.workspace.root_dir = workspace
    settings.validate()
    return settings


def _cloner(settings: Settings, repository: ProjectRepository) -> RepoCloner:
    return RepoCloner(settings.workspace, build_log=repository.add_log)


@contextmanager
def _repository(settings: Settings) -> Iterator[ProjectRepository]:
    repository = ProjectRepository(settings.db_path)
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()


@contextmanager
def _engine(settings: Settings, repository: ProjectRepository) -> Iterator[ProjectService]:
    scheduler, pipeline = build_engine(settings, repository, cloner=_cloner(settings, repository))
    reaper = Reaper(
        scheduler,
        interval_seconds=settings.engine.reap_interval_seconds,
        retention_seconds=settings.engine.retention_seconds,
    )
    with scheduler, reaper:
        yield ProjectService(repository, scheduler, pipeline.cloner)
