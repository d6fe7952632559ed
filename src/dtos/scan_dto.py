"""
DTOs for scan tasks, batch statistics and profile scan progress.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.core.clock import utcnow


class ScanTaskCreate(BaseModel):
    """One (keywords, location) unit of deferred search work."""

    task_type: str = Field(
        ..., pattern="^(role_variation|expanded_location|industry_search)$"
    )
    keywords: str = Field(..., min_length=1, max_length=255)
    location: str = Field(..., min_length=1, max_length=255)
    priority: int = Field(default=0, description="Higher runs first")


class ProgressDelta(BaseModel):
    """
    Additive contribution of one finished task to a profile's progress.

    Counts are added to the running totals; a zero delta still moves one
    task from pending to completed.
    """

    jobs_found: int = Field(default=0, ge=0)
    companies_found: int = Field(default=0, ge=0)
    signals_generated: int = Field(default=0, ge=0)


class ScanProgress(BaseModel):
    """
    Denormalised progress snapshot stored on the profile.

    Merge semantics: counts add, ``last_updated`` replaces.
    """

    jobs_found: int = 0
    companies_found: int = 0
    signals_generated: int = 0
    tasks_pending: int = 0
    tasks_completed: int = 0
    last_updated: datetime = Field(default_factory=utcnow)

    @classmethod
    def initial(cls, tasks_pending: int) -> ScanProgress:
        return cls(tasks_pending=tasks_pending)

    def merge(self, delta: ProgressDelta, now: datetime | None = None) -> ScanProgress:
        """Return a new snapshot with *delta* applied and one task moved to completed."""
        return ScanProgress(
            jobs_found=self.jobs_found + delta.jobs_found,
            companies_found=self.companies_found + delta.companies_found,
            signals_generated=self.signals_generated + delta.signals_generated,
            tasks_pending=max(0, self.tasks_pending - 1),
            tasks_completed=self.tasks_completed + 1,
            last_updated=now or utcnow(),
        )


class BatchStats(BaseModel):
    """Read-only per-batch summary computed from task rows, for UI polling."""

    total: int = 0
    pending: int = 0
    completed: int = 0
    failed: int = 0
    jobs_found: int = 0


class ExpansionRequest(BaseModel):
    roles: list[str] = Field(default_factory=list)
    searched_roles: list[str] = Field(default_factory=list)
    user_locations: list[str] = Field(default_factory=list)
    searched_locations: list[str] = Field(default_factory=list)


class ExpansionResponse(BaseModel):
    profile_id: str
    batch_id: str
    tasks_queued: int
    scan_status: str


class ScanStatusRead(BaseModel):
    profile_id: str
    scan_status: str
    scan_batch_id: str | None
    scan_progress: ScanProgress | None
    last_synced_at: datetime | None


class CycleStats(BaseModel):
    """Summary of one executor cycle."""

    tasks_claimed: int = 0
    tasks_processed: int = 0
    tasks_retried: int = 0
    tasks_failed: int = 0
    tasks_deferred: int = 0
    jobs_found: int = 0
    companies_found: int = 0
    signals_generated: int = 0
    scans_completed: int = 0
    scans_failed: int = 0
    budget_exhausted: bool = False
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0
