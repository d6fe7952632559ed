"""
Repository for scan batches (append-only run records).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.entities.scan_batch import ScanBatch
from src.repositories.base_repo import BaseRepository


class ScanBatchRepository(BaseRepository[ScanBatch]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=ScanBatch)

    def create_batch(self, profile_id: str, *, commit: bool = True) -> ScanBatch:
        batch = ScanBatch(
            id=str(uuid.uuid4()),
            profile_id=profile_id,
            status="scanning",
            total_tasks=0,
        )
        return self.create(batch, commit=commit)

    def mark_expanding(
        self, batch_id: str, total_tasks: int, *, commit: bool = True
    ) -> Optional[ScanBatch]:
        batch = self.get_by_id(batch_id)
        if batch:
            batch.status = "expanding"
            batch.total_tasks = total_tasks
            if commit:
                self.session.commit()
        return batch

    def mark_finished(
        self,
        batch_id: str,
        status: str,
        now: datetime,
        *,
        progress: Optional[dict] = None,
        error_message: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[ScanBatch]:
        """
        Record the batch outcome (completed or failed).

        Args:
            batch_id: ID of the batch to close
            status: Terminal status
            now: Finish timestamp
            progress: Snapshot of the profile progress at finish time
            error_message: Reason, for failed batches
            commit: Whether to commit the transaction

        Returns:
            Updated ScanBatch entity or None if not found
        """
        batch = self.get_by_id(batch_id)
        if batch:
            batch.status = status
            batch.finished_at = now
            if progress is not None:
                batch.progress = dict(progress)
            if error_message is not None:
                batch.error_message = error_message
            if commit:
                self.session.commit()
        return batch

    def get_for_profile(self, profile_id: str, limit: int = 20) -> List[ScanBatch]:
        stmt = (
            select(ScanBatch)
            .where(ScanBatch.profile_id == profile_id)
            .order_by(ScanBatch.created_at.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())
