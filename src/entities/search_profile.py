"""
Entity for user-defined search profiles.
The scheduler only touches the scan_* columns; the rest is owned by the
surrounding application.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.clock import utcnow
from src.entities.base import Base


class ScanStatus(StrEnum):
    idle = "idle"
    scanning = "scanning"
    expanding = "expanding"
    completed = "completed"
    failed = "failed"


LIVE_SCAN_STATUSES = (ScanStatus.scanning, ScanStatus.expanding)

ALLOWED_TRANSITIONS: dict[ScanStatus, frozenset[ScanStatus]] = {
    ScanStatus.idle: frozenset({ScanStatus.scanning}),
    ScanStatus.scanning: frozenset(
        {ScanStatus.expanding, ScanStatus.completed, ScanStatus.failed}
    ),
    ScanStatus.expanding: frozenset({ScanStatus.completed, ScanStatus.failed}),
    ScanStatus.completed: frozenset({ScanStatus.scanning}),
    ScanStatus.failed: frozenset({ScanStatus.scanning}),
}


def sources_for(target: ScanStatus) -> list[str]:
    """States from which *target* may be entered."""
    return [str(s) for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]


class SearchProfile(Base):
    """
    Target search configuration (industries, roles, locations) plus the
    state of its background scan.

    ``scan_batch_id`` points at the live batch only; older batches are
    never referenced again.
    """

    __tablename__ = "search_profiles"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    industries: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    locations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    scan_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ScanStatus.idle, index=True
    )
    scan_batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    scan_progress: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
