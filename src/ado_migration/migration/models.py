"""
SQLAlchemy models for migration run state.

This module defines the database schema for recording scheduler runs and the
lifecycle of every work item in them, so a crashed or interrupted run can be
inspected and a later run can skip repositories that were already migrated.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MigrationRun(Base):
    """One invocation of the scheduler."""

    __tablename__ = "migration_runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total: Mapped[int] = mapped_column(Integer, nullable=False, comment="Number of work items")
    concurrency_ceiling: Mapped[int] = mapped_column(Integer, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, comment="Null while the run is in progress or if it crashed"
    )
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    stopped: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Whether a cooperative stop ended the run"
    )

    succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    incomplete: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    items: Mapped[list["WorkItemRecord"]] = relationship(
        "WorkItemRecord", back_populates="run", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<MigrationRun(run_id='{self.run_id}', total={self.total}, "
            f"succeeded={self.succeeded}, failed={self.failed})>"
        )


class WorkItemRecord(Base):
    """Lifecycle of one work item within a run."""

    __tablename__ = "work_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("migration_runs.run_id", ondelete="CASCADE"), nullable=False
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(512), nullable=False)

    source_org: Mapped[str] = mapped_column(String(255), nullable=False)
    source_project: Mapped[str] = mapped_column(String(255), nullable=False)
    source_repo: Mapped[str] = mapped_column(String(255), nullable=False)
    target_org: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    target_repo: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending, queued, running, succeeded, failed",
    )
    migration_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failure_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    run: Mapped[MigrationRun] = relationship("MigrationRun", back_populates="items")

    __table_args__ = (
        UniqueConstraint("run_id", "label", name="uq_work_items_run_label"),
        CheckConstraint(
            "status IN ('pending', 'queued', 'running', 'succeeded', 'failed')",
            name="ck_work_items_status",
        ),
        Index("idx_work_items_target", "target_org", "target_repo"),
        Index("idx_work_items_run_status", "run_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkItemRecord(run_id='{self.run_id}', label='{self.label}', "
            f"status='{self.status}')>"
        )
