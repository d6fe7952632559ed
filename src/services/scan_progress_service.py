"""
Progress aggregation and scan finalisation for a profile's live batch.

Every entry point is scoped to the profile's *current* batch id. Outcomes
or finalise calls for a superseded batch are ignored, which is what makes
abandoned batches inert without any cancellation step.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.core.clock import utcnow
from src.dtos.scan_dto import ProgressDelta, ScanProgress
from src.entities.search_profile import ScanStatus, SearchProfile, sources_for
from src.repositories.scan_batch_repo import ScanBatchRepository
from src.repositories.scan_task_repo import ScanTaskRepository
from src.repositories.search_profile_repo import SearchProfileRepository

logger = logging.getLogger(__name__)


class ScanProgressService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.profile_repo = SearchProfileRepository(session)
        self.batch_repo = ScanBatchRepository(session)
        self.task_repo = ScanTaskRepository(session)

    def apply_task_outcome(
        self,
        profile_id: str,
        batch_id: str,
        delta: ProgressDelta,
        now: Optional[datetime] = None,
    ) -> Optional[ScanProgress]:
        """
        Fold one finished task into the profile's running progress.

        Returns:
            The new progress, or None if the batch is no longer current
        """
        now = now or utcnow()
        profile = self.profile_repo.get_by_id(profile_id, for_update=True)
        if profile is None or profile.scan_batch_id != batch_id:
            self.session.rollback()
            logger.info(
                "Ignoring outcome for stale batch %s of profile %s", batch_id, profile_id
            )
            return None

        current = self._current_progress(profile)
        merged = current.merge(delta, now)
        self.profile_repo.save_progress(profile, merged.model_dump(mode="json"))
        return merged

    def finalize_if_done(
        self, profile_id: str, batch_id: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Complete the scan once no pending or processing tasks remain.

        Idempotent: only the call that actually flips ``expanding ->
        completed`` returns True and stamps ``last_synced_at``.
        """
        remaining = self.task_repo.count_active(profile_id, batch_id)
        if remaining > 0:
            return False

        now = now or utcnow()
        transitioned = self.profile_repo.transition(
            profile_id,
            [ScanStatus.expanding],
            ScanStatus.completed,
            expected_batch_id=batch_id,
            last_synced_at=now,
        )
        if not transitioned:
            return False

        profile = self.profile_repo.get_by_id(profile_id)
        self.batch_repo.mark_finished(
            batch_id,
            ScanStatus.completed,
            now,
            progress=profile.scan_progress if profile else None,
        )
        logger.info("Scan batch %s for profile %s completed", batch_id, profile_id)
        return True

    def finalize_drained(self, limit: int = 50) -> int:
        """
        Run finalize_if_done() for every expanding profile. Picks up scans
        whose last task finished but whose finalise step never committed.

        Returns:
            Number of scans completed by this sweep
        """
        completed = 0
        for profile in self.profile_repo.get_by_status(ScanStatus.expanding, limit):
            profile_id, batch_id = profile.id, profile.scan_batch_id
            if batch_id and self.finalize_if_done(profile_id, batch_id):
                completed += 1
        return completed

    def fail_scan(
        self,
        profile_id: str,
        batch_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a live scan to ``failed`` after an infrastructure error."""
        now = now or utcnow()
        transitioned = self.profile_repo.transition(
            profile_id,
            sources_for(ScanStatus.failed),
            ScanStatus.failed,
            expected_batch_id=batch_id,
        )
        if transitioned:
            self.batch_repo.mark_finished(
                batch_id, ScanStatus.failed, now, error_message=reason
            )
            logger.error("Scan batch %s for profile %s failed: %s", batch_id, profile_id, reason)
        return transitioned

    @staticmethod
    def _current_progress(profile: SearchProfile) -> ScanProgress:
        if not profile.scan_progress:
            return ScanProgress()
        return ScanProgress.model_validate(profile.scan_progress)
