"""
Database models for lifecycle job tracking.

A Job is the durable record of one requested lifecycle operation on a
Server. Rows are created PENDING by the enqueue API, then only touched by
the worker, and disappear only when their Server is deleted.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spinup.common.db.models.base import Base

if TYPE_CHECKING:
    from spinup.common.db.models.servers import Server


class JobStatus(str, Enum):
    """Status values for lifecycle jobs."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILED)


class JobType(str, Enum):
    """Lifecycle operations that can be requested for a server."""

    CREATE = "CREATE"
    START = "START"
    STOP = "STOP"
    RESTART = "RESTART"
    DELETE = "DELETE"


class Job(Base):
    """Tracks one lifecycle operation and its outcome."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    server_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("servers.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    celery_task_id: Mapped[str | None] = mapped_column(String(200))  # For correlation

    # Status tracking
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING.value)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    logs: Mapped[str] = mapped_column(Text, default="")
    error: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    server: Mapped[Server] = relationship("Server", back_populates="jobs")

    __table_args__ = (
        Index("idx_jobs_server_id", "server_id"),
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Job(id={self.id}, server_id={self.server_id}, "
            f"type={self.type}, status={self.status}, progress={self.progress})>"
        )

    @property
    def is_finished(self) -> bool:
        return JobStatus(self.status).is_terminal

    def append_log(self, line: str) -> None:
        self.logs = f"{self.logs or ''}{line}\n"

    def mark_running(self) -> None:
        self.status = JobStatus.RUNNING.value
        self.started_at = datetime.now(timezone.utc)

    def mark_success(self) -> None:
        """Mark job as successful. Progress is always forced to 100."""
        self.status = JobStatus.SUCCESS.value
        self.progress = 100
        self.finished_at = datetime.now(timezone.utc)

    def mark_failed(self, error: str) -> None:
        self.status = JobStatus.FAILED.value
        self.error = error
        self.finished_at = datetime.now(timezone.utc)
        if self.started_at is None:
            self.started_at = self.finished_at


class JobPayload(BaseModel):
    """Serializable view of a job."""

    id: str
    server_id: str
    type: str
    status: str
    progress: int
    payload: dict[str, Any]
    logs: str
    error: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None

    model_config = {"from_attributes": True}
