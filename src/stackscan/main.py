"""CLI entrypoint for stackscan."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from stackscan import __version__
from stackscan.controllers import (
    AnalyzeCommand,
    DetectCommand,
    ProjectCommand,
    ProjectListCommand,
    ProjectLogsCommand,
    PruneLogsCommand,
    StackscanCliController,
)
from stackscan.git.clone import GitCommandError
from stackscan.github.client import GithubLookupError
from stackscan.models import ProjectNotFoundError, ProjectStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = StackscanCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to STACKSCAN_DB_PATH.",
)
_WORKSPACE_OPTION = click.option(
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Clone workspace root. Defaults to STACKSCAN_WORKSPACE_ROOT.",
)
_TIMEOUT_OPTION = click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=1),
    default=600.0,
    show_default=True,
    help="Seconds to wait for the clone and analysis jobs.",
)


@click.group()
@click.version_option(version=__version__, prog_name="stackscan")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def stackscan(log_level: str) -> None:
    """Clone GitHub repositories and report their **tech stack**."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@stackscan.command("analyze")
@click.argument("repo_url")
@click.option("--branch", default=None, help="Branch to clone. Defaults to main.")
@click.option(
    "--lookup/--no-lookup",
    default=False,
    show_default=True,
    help="Validate the repository through the GitHub API and use its default branch.",
)
@_DB_PATH_OPTION
@_WORKSPACE_OPTION
@_TIMEOUT_OPTION
def analyze(  # noqa: PLR0913
    repo_url: str,
    branch: str | None,
    lookup: bool,
    db_path: Path | None,
    workspace: Path | None,
    timeout_seconds: float,
) -> None:
    """Clone `REPO_URL` and run the analysis pipeline in this process."""

    with _domain_errors():
        result = CONTROLLER.analyze(
            AnalyzeCommand(
                db_path=db_path,
                workspace=workspace,
                repo_url=repo_url,
                branch=branch,
                timeout_seconds=timeout_seconds,
                lookup=lookup,
            ),
        )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Analysis did not complete.")


@stackscan.command("detect")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
def detect(path: Path) -> None:
    """Analyze a local directory without cloning or storing anything."""

    _emit_lines(CONTROLLER.detect(DetectCommand(path=path)))


@stackscan.command("github-info")
@click.argument("repo_url")
def github_info(repo_url: str) -> None:
    """Show GitHub metadata and the current API rate limit."""

    with _domain_errors():
        _emit_lines(CONTROLLER.github_info(repo_url))


@stackscan.group()
def projects() -> None:
    """Inspect and manage analyzed projects."""


@projects.command("list")
@_DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in ProjectStatus]),
    default=None,
    help="Only show projects in this status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of projects to print.",
)
def projects_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List projects, newest first."""

    _emit_lines(
        CONTROLLER.list_projects(ProjectListCommand(db_path=db_path, status=status, limit=limit)),
    )


@projects.command("show")
@click.argument("project_id")
@_DB_PATH_OPTION
@_WORKSPACE_OPTION
def projects_show(project_id: str, db_path: Path | None, workspace: Path | None) -> None:
    """Show project status, workspace and tech stack."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.show_project(
                ProjectCommand(db_path=db_path, project_id=project_id, workspace=workspace),
            ),
        )


@projects.command("logs")
@click.argument("project_id")
@_DB_PATH_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=100,
    show_default=True,
    help="Max number of log entries.",
)
@click.option("--log-type", default=None, help="Only show one log type, for example queue.")
def projects_logs(
    project_id: str,
    db_path: Path | None,
    limit: int,
    log_type: str | None,
) -> None:
    """Show build logs for a project, oldest first."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.project_logs(
                ProjectLogsCommand(
                    db_path=db_path,
                    project_id=project_id,
                    limit=limit,
                    log_type=log_type,
                ),
            ),
        )


@projects.command("prune-logs")
@_DB_PATH_OPTION
@click.option(
    "--older-than-days",
    type=click.IntRange(min=0),
    default=30,
    show_default=True,
    help="Delete build logs older than this many days.",
)
def projects_prune_logs(db_path: Path | None, older_than_days: int) -> None:
    """Delete old build logs across all projects."""

    _emit_lines(
        CONTROLLER.prune_logs(PruneLogsCommand(db_path=db_path, older_than_days=older_than_days)),
    )


@projects.command("delete")
@click.argument("project_id")
@_DB_PATH_OPTION
@_WORKSPACE_OPTION
def projects_delete(project_id: str, db_path: Path | None, workspace: Path | None) -> None:
    """Delete a project, its logs and its cloned workspace."""

    with _domain_errors():
        _emit_lines(
            CONTROLLER.delete_project(
                ProjectCommand(db_path=db_path, project_id=project_id, workspace=workspace),
            ),
        )


@projects.command("reclone")
@click.argument("project_id")
@_DB_PATH_OPTION
@_WORKSPACE_OPTION
@_TIMEOUT_OPTION
def projects_reclone(
    project_id: str,
    db_path: Path | None,
    workspace: Path | None,
    timeout_seconds: float,
) -> None:
    """Drop the working copy and run clone + analyze again."""

    with _domain_errors():
        result = CONTROLLER.reclone(
            ProjectCommand(
                db_path=db_path,
                project_id=project_id,
                workspace=workspace,
                timeout_seconds=timeout_seconds,
            ),
        )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Analysis did not complete.")


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Map domain errors onto ``click.ClickException``."""

    try:
        yield
    except (ProjectNotFoundError, GithubLookupError, GitCommandError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    stackscan()
