"""
Entity for queued scan tasks.
Tasks are created in bulk when a batch starts and are never deleted, so the
table doubles as an audit trail of every search the scheduler attempted.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.clock import utcnow
from src.entities.base import Base


class TaskType(StrEnum):
    role_variation = "role_variation"
    expanded_location = "expanded_location"
    industry_search = "industry_search"


class TaskStatus(StrEnum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"


ACTIVE_TASK_STATUSES = (TaskStatus.pending, TaskStatus.processing)

# User-specified roles/locations run before broadened expansion work.
PRIORITY_USER = 1
PRIORITY_EXPANSION = 0


class ScanTask(Base):
    __tablename__ = "scan_tasks"
    __table_args__ = (
        Index("ix_scan_tasks_claim", "status", "scheduled_for"),
        Index("ix_scan_tasks_profile_batch", "profile_id", "batch_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("search_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    task_type: Mapped[str] = mapped_column(String(30), nullable=False)
    keywords: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.pending
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    jobs_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
