"""SQLModel ORM tables for projects and their build logs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_projects_created_at", "created_at"),)

    project_id: str = Field(primary_key=True)
    repo_url: str = Field(index=True)
    owner: str
    name: str
    default_branch: str = "main"
    status: str = Field(default="pending", index=True)
    clone_status: str = "pending"
    analysis_status: str = "pending"
    job_id: str | None = None
    workspace_path: str | None = None
    workspace_size_bytes: int | None = None
    file_count: int | None = None
    cloned_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    analyzed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    analysis_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    dependencies_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BuildLog(SQLModel, table=True):
    __tablename__ = "build_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_build_logs_project_created", "project_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    project_id: str = Field(
        sa_column=Column(
            ForeignKey("projects.project_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    log_type: str = Field(index=True)
    level: str = Field(default="info", index=True)
    phase: str = "initialization"
    message: str = Field(sa_column=Column(Text, nullable=False))
    details_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    exit_code: int | None = None
    duration_ms: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
