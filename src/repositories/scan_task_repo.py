"""
Repository for the scan task queue.

All SQL for the queue lives here. Every status change is a single
conditional UPDATE keyed on the prior status, so overlapping executor runs
can neither process a task twice nor count an attempt twice. A caller that
loses the race simply sees ``None`` / ``False`` and moves on.

mark_processing() hands back the attempt number it claimed. Passing that
number to the later writes fences them: once a lease has been recovered and
the task claimed again, a late write from the earlier attempt matches no row
and is dropped.

Task lifecycle:
    pending -> processing -> completed
                          -> pending   (retry after a flat delay)
                          -> failed    (attempts exhausted, terminal)
                          -> skipped   (batch superseded, terminal)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from src.dtos.scan_dto import BatchStats, ScanTaskCreate
from src.entities.scan_task import ACTIVE_TASK_STATUSES, ScanTask, TaskStatus
from src.repositories.base_repo import BaseRepository

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = timedelta(minutes=15)


class ScanTaskRepository(BaseRepository[ScanTask]):
    """
    Durable queue of scan tasks with priority/schedule ordering and
    exclusive claiming.
    """

    def __init__(
        self,
        session: Session,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: timedelta = DEFAULT_RETRY_DELAY,
    ) -> None:
        super().__init__(session=session, model=ScanTask)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def enqueue(
        self,
        profile_id: str,
        batch_id: str,
        tasks: Sequence[ScanTaskCreate],
        now: datetime,
        *,
        commit: bool = True,
    ) -> List[ScanTask]:
        """
        Bulk insert tasks for a batch, all pending and due immediately.

        Args:
            profile_id: Owning profile
            batch_id: Batch the tasks belong to
            tasks: Task specifications
            now: Creation and schedule timestamp
            commit: Whether to commit the transaction

        Returns:
            Created ScanTask entities, in insertion order
        """
        rows = [
            ScanTask(
                profile_id=profile_id,
                batch_id=batch_id,
                task_type=spec.task_type,
                keywords=spec.keywords,
                location=spec.location,
                priority=spec.priority,
                status=TaskStatus.pending,
                attempts=0,
                max_attempts=self.max_attempts,
                jobs_found=0,
                created_at=now,
                scheduled_for=now,
            )
            for spec in tasks
        ]
        return self.create_many(rows, commit=commit)

    def claim_next(
        self, limit: int, remaining_budget: Optional[int], now: datetime
    ) -> List[ScanTask]:
        """
        Due pending tasks, highest priority first, FIFO within a priority.

        At most ``min(limit, remaining_budget)`` tasks are returned;
        ``remaining_budget=None`` means uncapped. Nothing is modified:
        callers must still win mark_processing() for each task.
        """
        take = limit if remaining_budget is None else min(limit, remaining_budget)
        if take <= 0:
            return []
        stmt = (
            select(ScanTask)
            .where(
                ScanTask.status == TaskStatus.pending,
                ScanTask.scheduled_for <= now,
            )
            .order_by(
                ScanTask.priority.desc(),
                ScanTask.created_at.asc(),
                ScanTask.id.asc(),
            )
            .limit(take)
        )
        return list(self.session.execute(stmt).scalars().all())

    def mark_processing(self, task_id: int, now: datetime) -> Optional[int]:
        """
        Atomically move pending -> processing and count the attempt.

        Returns:
            The attempt number now owned by the caller, or None if the task
            was not claimable
        """
        stmt = (
            update(ScanTask)
            .where(
                ScanTask.id == task_id,
                ScanTask.status == TaskStatus.pending,
                ScanTask.attempts < ScanTask.max_attempts,
            )
            .values(
                status=TaskStatus.processing,
                started_at=now,
                attempts=ScanTask.attempts + 1,
            )
            .returning(ScanTask.attempts)
            .execution_options(synchronize_session=False)
        )
        attempt = self.session.execute(stmt).scalar_one_or_none()
        self.session.commit()
        return attempt

    def _processing(self, task_id: int, attempt: Optional[int]) -> list:
        criteria = [ScanTask.id == task_id, ScanTask.status == TaskStatus.processing]
        if attempt is not None:
            criteria.append(ScanTask.attempts == attempt)
        return criteria

    def mark_completed(
        self,
        task_id: int,
        jobs_found: int,
        now: datetime,
        *,
        attempt: Optional[int] = None,
    ) -> bool:
        stmt = (
            update(ScanTask)
            .where(*self._processing(task_id, attempt))
            .values(
                status=TaskStatus.completed,
                completed_at=now,
                jobs_found=jobs_found,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def mark_failed(
        self,
        task_id: int,
        error_message: str,
        now: datetime,
        *,
        attempt: Optional[int] = None,
    ) -> Optional[ScanTask]:
        """
        Record a failed attempt.

        With attempts exhausted the task becomes terminally ``failed``;
        otherwise it returns to ``pending`` and is due again after the
        retry delay. Both branches are one conditional UPDATE.

        Returns:
            The updated task, or None if this attempt no longer owns it
        """
        exhausted = ScanTask.attempts >= ScanTask.max_attempts
        stmt = (
            update(ScanTask)
            .where(*self._processing(task_id, attempt))
            .values(
                status=case(
                    (exhausted, str(TaskStatus.failed)),
                    else_=str(TaskStatus.pending),
                ),
                scheduled_for=case(
                    (exhausted, ScanTask.scheduled_for),
                    else_=now + self.retry_delay,
                ),
                completed_at=case((exhausted, now), else_=ScanTask.completed_at),
                error_message=error_message[:2000],
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        if result.rowcount != 1:
            return None
        return self.get_by_id(task_id)

    def release(self, task_id: int, *, attempt: Optional[int] = None) -> bool:
        """
        Hand a processing task back to the queue without counting the
        attempt (used when the daily budget is exhausted).
        """
        stmt = (
            update(ScanTask)
            .where(*self._processing(task_id, attempt))
            .values(
                status=TaskStatus.pending,
                started_at=None,
                attempts=ScanTask.attempts - 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def mark_skipped(
        self,
        task_id: int,
        reason: str,
        now: datetime,
        *,
        attempt: Optional[int] = None,
    ) -> bool:
        """Retire a processing task without running it (e.g. its batch was superseded)."""
        stmt = (
            update(ScanTask)
            .where(*self._processing(task_id, attempt))
            .values(
                status=TaskStatus.skipped,
                completed_at=now,
                error_message=reason,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def find_stale_processing(self, cutoff: datetime, limit: int = 50) -> List[ScanTask]:
        """Tasks whose executor started them before *cutoff* and never reported back."""
        stmt = (
            select(ScanTask)
            .where(
                ScanTask.status == TaskStatus.processing,
                ScanTask.started_at < cutoff,
            )
            .order_by(ScanTask.started_at)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def count_active(self, profile_id: str, batch_id: str) -> int:
        """Pending or processing tasks of one batch."""
        return self.count(
            ScanTask.profile_id == profile_id,
            ScanTask.batch_id == batch_id,
            ScanTask.status.in_([str(s) for s in ACTIVE_TASK_STATUSES]),
        )

    def batch_stats(self, profile_id: str, batch_id: str) -> BatchStats:
        stmt = (
            select(
                ScanTask.status,
                func.count(ScanTask.id),
                func.coalesce(func.sum(ScanTask.jobs_found), 0),
            )
            .where(ScanTask.profile_id == profile_id, ScanTask.batch_id == batch_id)
            .group_by(ScanTask.status)
        )
        stats = BatchStats()
        for status, count, jobs in self.session.execute(stmt).all():
            stats.total += count
            if status in ACTIVE_TASK_STATUSES:
                stats.pending += count
            elif status == TaskStatus.completed:
                stats.completed += count
                stats.jobs_found += int(jobs)
            elif status == TaskStatus.failed:
                stats.failed += count
        return stats

    def get_for_batch(self, batch_id: str) -> List[ScanTask]:
        stmt = (
            select(ScanTask)
            .where(ScanTask.batch_id == batch_id)
            .order_by(ScanTask.id)
        )
        return list(self.session.execute(stmt).scalars().all())
