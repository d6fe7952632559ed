"""
Entity for scan batches: one row per expansion run of a profile.
Rows are append-only; a new scan creates a new batch instead of reusing one.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.clock import utcnow
from src.entities.base import Base


class ScanBatch(Base):
    __tablename__ = "scan_batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    profile_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("search_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="scanning"
    )  # scanning, expanding, completed, failed

    total_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
