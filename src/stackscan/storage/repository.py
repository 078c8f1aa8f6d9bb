"""Project and build log persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from collections.abc import Collection
from datetime import timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlmodel import Session, col, select

from alembic import command
from alembic.config import Config
from stackscan.models import (
    BuildLogView,
    LogLevel,
    ProjectCreate,
    ProjectNotFoundError,
    ProjectStatus,
    ProjectView,
)
from stackscan.storage.common import build_sqlite_engine, to_utc_aware, utc_now
from stackscan.storage.sqlmodel_models import BuildLog, Project

logger = logging.getLogger(__name__)

# alembic.ini and alembic/ sit at the repository root, next to src/.
_MIGRATIONS_ROOT = Path(__file__).resolve().parents[3]

_JSON_FIELDS = {"analysis": "analysis_json", "dependencies": "dependencies_json"}
_UPDATABLE_FIELDS = frozenset(
    {
        "default_branch",
        "status",
        "clone_status",
        "analysis_status",
        "job_id",
        "workspace_path",
        "workspace_size_bytes",
        "file_count",
        "cloned_at",
        "analyzed_at",
        "error_message",
        *_JSON_FIELDS,
    },
)


class ProjectRepository:
    """Persistence facade for projects and their build logs."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        """Run Alembic migrations up to head."""

        config = Config(str(_MIGRATIONS_ROOT / "alembic.ini"))
        config.set_main_option("script_location", str(_MIGRATIONS_ROOT / "alembic"))
        config.set_main_option("sqlalchemy.url", f"sqlite:///{self.db_path}")
        command.upgrade(config, "head")

    # -- projects ------------------------------------------------------------

    def create_project(self, payload: ProjectCreate) -> ProjectView:
        now = utc_now()
        with Session(self.engine) as session:
            row = Project(
                project_id=payload.project_id or str(uuid4()),
                repo_url=payload.repo_url,
                owner=payload.owner,
                name=payload.name,
                default_branch=payload.default_branch,
                status=ProjectStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def get_project(self, project_id: str) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.get(Project, project_id)
            return _to_project_view(row) if row is not None else None

    def update_project(
        self,
        project_id: str,
        *,
        expected_status: Collection[str] | None = None,
        **changes: Any,
    ) -> ProjectView:
        """Apply field-wise changes. ``analysis`` / ``dependencies`` are stored as JSON.

        With ``expected_status`` the row is left untouched unless its current status
        is one of those values.
        """

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported project fields: {', '.join(sorted(unknown))}")

        with Session(self.engine) as session:
            row = session.get(Project, project_id)
            if row is None:
                raise ProjectNotFoundError(project_id)
            if expected_status is not None and row.status not in {
                _enum_value(status) for status in expected_status
            }:
                return _to_project_view(row)
            for name, value in changes.items():
                if name in _JSON_FIELDS:
                    setattr(row, _JSON_FIELDS[name], _dump_json(value))
                else:
                    setattr(row, name, _enum_value(value))
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def list_projects(self, *, status: str | None = None, limit: int = 100) -> list[ProjectView]:
        with Session(self.engine) as session:
            query = select(Project)
            if status is not None:
                query = query.where(Project.status == _enum_value(status))
            rows = session.exec(
                query.order_by(col(Project.created_at).desc()).limit(max(1, limit)),
            ).all()
            return [_to_project_view(row) for row in rows]

    def delete_project(self, project_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(Project, project_id)
            if row is None:
                return False
            session.exec(sa_delete(BuildLog).where(col(BuildLog.project_id) == project_id))
            session.delete(row)
            session.commit()
            return True

    # -- build logs ----------------------------------------------------------

    def add_log(  # noqa: PLR0913
        self,
        project_id: str,
        log_type: str,
        message: str,
        *,
        level: LogLevel | str = LogLevel.INFO,
        phase: str = "initialization",
        details: dict[str, Any] | None = None,
        exit_code: int | None = None,
        duration_ms: int | None = None,
    ) -> BuildLogView:
        with Session(self.engine) as session:
            row = BuildLog(
                project_id=project_id,
                log_type=log_type,
                level=_enum_value(level),
                phase=phase,
                message=message,
                details_json=_dump_json(details) if details else None,
                exit_code=exit_code,
                duration_ms=duration_ms,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_log_view(row)

    def list_logs(
        self,
        project_id: str,
        *,
        limit: int = 100,
        log_type: str | None = None,
        level: str | None = None,
    ) -> list[BuildLogView]:
        """Newest first."""

        with Session(self.engine) as session:
            query = select(BuildLog).where(BuildLog.project_id == project_id)
            if log_type is not None:
                query = query.where(BuildLog.log_type == log_type)
            if level is not None:
                query = query.where(BuildLog.level == _enum_value(level))
            rows = session.exec(
                query.order_by(col(BuildLog.created_at).desc(), col(BuildLog.id).desc()).limit(
                    max(1, limit),
                ),
            ).all()
            return [_to_log_view(row) for row in rows]

    def prune_logs(self, *, older_than_days: int = 30) -> int:
        if older_than_days < 0:
            raise ValueError("older_than_days must be >= 0")
        cutoff = utc_now() - timedelta(days=older_than_days)
        with Session(self.engine) as session:
            result = session.exec(sa_delete(BuildLog).where(col(BuildLog.created_at) < cutoff))
            session.commit()
            removed = int(result.rowcount or 0)
        if removed:
            logger.info("Pruned %d build log(s) older than %d day(s)", removed, older_than_days)
        return removed


def _to_project_view(row: Project) -> ProjectView:
    return ProjectView(
        project_id=row.project_id,
        repo_url=row.repo_url,
        owner=row.owner,
        name=row.name,
        default_branch=row.default_branch,
        status=row.status,
        clone_status=row.clone_status,
        analysis_status=row.analysis_status,
        job_id=row.job_id,
        workspace_path=row.workspace_path,
        workspace_size_bytes=row.workspace_size_bytes,
        file_count=row.file_count,
        cloned_at=to_utc_aware(row.cloned_at),
        analyzed_at=to_utc_aware(row.analyzed_at),
        analysis=_load_json(row.analysis_json),
        dependencies=_load_json(row.dependencies_json),
        error_message=row.error_message,
        created_at=to_utc_aware(row.created_at) or utc_now(),
        updated_at=to_utc_aware(row.updated_at) or utc_now(),
    )


def _to_log_view(row: BuildLog) -> BuildLogView:
    return BuildLogView(
        log_id=int(row.id or 0),
        project_id=row.project_id,
        log_type=row.log_type,
        level=row.level,
        phase=row.phase,
        message=row.message,
        created_at=to_utc_aware(row.created_at) or utc_now(),
        details=_load_json(row.details_json) or {},
        exit_code=row.exit_code,
        duration_ms=row.duration_ms,
    )


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


def _load_json(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed JSON column value (%d chars)", len(raw))
        return None
    return loaded if isinstance(loaded, dict) else None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)
