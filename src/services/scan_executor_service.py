"""
Executor for the scan task queue.

Architecture:
    cron trigger -> ScanExecutorService.run_cycle()
        -> ScanTaskRepository   (claim / mark / retry)
        -> KeyPoolManager       (which credential pays)
        -> BudgetLedger         (atomic admission)
        -> SearchClient         (external call, in a worker thread)
        -> ScanProgressService  (aggregate + finalise)

There is no long-running worker: each trigger drains a small batch and
returns. Overlapping triggers are safe because a task only runs for the
caller that wins its pending -> processing transition, and every later write
for that task is fenced on the attempt number it won.

Budget exhaustion is a deferral, not an error: the task goes back to the
queue untouched and the cycle stops. Per-task failures never stop a cycle
and never fail the batch. A storage failure while aggregating or finalising
fails the scan instead of leaving it expanding.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.clock import utcnow
from src.core.config import settings
from src.core.exceptions import (
    BudgetExhausted,
    TaskPermanentFailure,
    TaskTransientFailure,
)
from src.core.recruiters import is_recruitment_agency
from src.core.search_client import ReedSearchClient, SearchClient
from src.dtos.budget_dto import CredentialInfo
from src.dtos.job_result_dto import JobResult
from src.dtos.scan_dto import CycleStats, ProgressDelta
from src.entities.scan_task import ScanTask, TaskStatus
from src.repositories.scan_task_repo import ScanTaskRepository
from src.repositories.search_profile_repo import SearchProfileRepository
from src.services.budget_ledger_service import BudgetLedger
from src.services.key_pool_service import KeyPoolManager
from src.services.scan_progress_service import ScanProgressService

logger = logging.getLogger(__name__)

ResultHandler = Callable[[ScanTask, list[JobResult]], ProgressDelta]


def count_results(task: ScanTask, results: list[JobResult]) -> ProgressDelta:
    """
    Default handler: count direct-employer jobs and their distinct employers.

    Recruitment agency postings are dropped first. ``companies_found`` is
    distinct within this one task; summed over a batch it counts employer
    hits, so an employer seen by several tasks is counted once per task.
    """
    direct = [
        r for r in results if not is_recruitment_agency(r.company_name, r.description)
    ]
    companies = {r.company_name.strip().lower() for r in direct}
    return ProgressDelta(jobs_found=len(direct), companies_found=len(companies))


class ScanExecutorService:
    def __init__(
        self,
        session: Session,
        search_client: Optional[SearchClient] = None,
        *,
        key_pool: Optional[KeyPoolManager] = None,
        result_handler: Optional[ResultHandler] = None,
        api_name: Optional[str] = None,
    ) -> None:
        self.session = session
        self.api_name = api_name or settings.SEARCH_API_NAME
        self.search_client = search_client or ReedSearchClient()
        self.ledger = BudgetLedger(session)
        self.key_pool = key_pool or KeyPoolManager(session, self.ledger)
        self.result_handler = result_handler or count_results
        self.task_repo = ScanTaskRepository(
            session,
            max_attempts=settings.SCAN_MAX_ATTEMPTS,
            retry_delay=timedelta(minutes=settings.RETRY_DELAY_MINUTES),
        )
        self.profile_repo = SearchProfileRepository(session)
        self.progress = ScanProgressService(session)
        self.posted_within_days = settings.POSTED_WITHIN_DAYS
        self.stale_after = timedelta(minutes=settings.STALE_TASK_MINUTES)

    async def run_cycle(self, limit: Optional[int] = None) -> CycleStats:
        """
        Drain up to *limit* due tasks.

        Returns:
            CycleStats summary of what happened in this cycle
        """
        started = time.monotonic()
        stats = CycleStats()
        limit = limit or settings.EXECUTOR_BATCH_SIZE

        self.finalize_drained_scans(stats)
        self.recover_stale_tasks(stats)

        remaining = self.key_pool.total_remaining(self.api_name)
        tasks = self.task_repo.claim_next(limit, remaining, utcnow())
        stats.tasks_claimed = len(tasks)
        if not tasks:
            logger.info("No due scan tasks (remaining budget: %s)", remaining)

        for task in tasks:
            try:
                delta = await self.execute_task(task, stats)
            except BudgetExhausted as e:
                logger.info("Stopping cycle: %s", e)
                stats.budget_exhausted = True
                stats.tasks_deferred += 1
                break
            except TaskTransientFailure as e:
                stats.tasks_retried += 1
                stats.errors.append(str(e))
            except TaskPermanentFailure as e:
                stats.tasks_failed += 1
                stats.errors.append(str(e))
            else:
                if delta is None:
                    continue
                stats.tasks_processed += 1
                stats.jobs_found += delta.jobs_found
                stats.companies_found += delta.companies_found
                stats.signals_generated += delta.signals_generated

        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Scan cycle done in %dms: %d processed, %d retried, %d failed, %d jobs",
            stats.duration_ms,
            stats.tasks_processed,
            stats.tasks_retried,
            stats.tasks_failed,
            stats.jobs_found,
        )
        return stats

    async def execute_task(
        self, task: ScanTask, stats: Optional[CycleStats] = None
    ) -> Optional[ProgressDelta]:
        """
        Run one claimed task end to end.

        Returns:
            The progress delta on success, or None when the task was taken
            by another executor, skipped, or its result arrived too late

        Raises:
            BudgetExhausted: No budget left; the task was handed back
            TaskTransientFailure: Task failed and was rescheduled
            TaskPermanentFailure: Task failed for the last time
        """
        task_id, profile_id, batch_id = task.id, task.profile_id, task.batch_id
        keywords, location = task.keywords, task.location

        attempt = self.task_repo.mark_processing(task_id, utcnow())
        if attempt is None:
            logger.debug("Task %s already claimed elsewhere", task_id)
            return None

        try:
            profile = self.profile_repo.get_by_id(profile_id)
            if profile is None:
                raise LookupError(f"Profile {profile_id} not found")
            if profile.scan_batch_id != batch_id:
                self.task_repo.mark_skipped(
                    task_id,
                    f"batch superseded by {profile.scan_batch_id}",
                    utcnow(),
                    attempt=attempt,
                )
                logger.info("Skipped task %s of superseded batch %s", task_id, batch_id)
                return None

            credential = self._acquire_budget(task_id, attempt, profile.owner_id)
            logger.info(
                "Running task %s (attempt %d): '%s' in %s (credential %s)",
                task_id,
                attempt,
                keywords,
                location,
                credential.credential_id,
            )
            results = await asyncio.to_thread(
                self.search_client.search,
                keywords,
                location,
                self.posted_within_days,
                api_key=credential.api_key,
            )
            delta = self.result_handler(task, results)
        except BudgetExhausted:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            failed = self._record_failure(
                task_id, attempt, profile_id, batch_id, message, stats
            )
            if failed is None:
                return None
            if failed.status == TaskStatus.failed:
                raise TaskPermanentFailure(task_id, message) from e
            raise TaskTransientFailure(task_id, message) from e

        if not self.task_repo.mark_completed(
            task_id, delta.jobs_found, utcnow(), attempt=attempt
        ):
            logger.warning(
                "Attempt %d of task %s no longer owns it; result dropped", attempt, task_id
            )
            return None
        self._settle(profile_id, batch_id, delta, stats)
        return delta

    def _acquire_budget(self, task_id: int, attempt: int, owner_id: str) -> CredentialInfo:
        credential = self.key_pool.next_available_key(owner_id, self.api_name)
        if credential is not None:
            decision = self.ledger.try_consume(
                self.api_name, credential.credential_id, credential.daily_limit
            )
            if decision.allowed:
                return credential
        self.task_repo.release(task_id, attempt=attempt)
        raise BudgetExhausted(f"No {self.api_name} budget left for owner {owner_id}")

    def _settle(
        self,
        profile_id: str,
        batch_id: str,
        delta: ProgressDelta,
        stats: Optional[CycleStats] = None,
    ) -> bool:
        """
        Fold a finished task into the profile and finalise if it was the last.

        A storage error here fails the scan. Returns False in that case.
        """
        try:
            self.progress.apply_task_outcome(profile_id, batch_id, delta)
            self.progress.finalize_if_done(profile_id, batch_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                "Could not record progress for profile %s batch %s", profile_id, batch_id
            )
            try:
                failed = self.progress.fail_scan(
                    profile_id, batch_id, f"finalize failed: {exc}"
                )
            except SQLAlchemyError:
                self.session.rollback()
                logger.exception(
                    "Could not fail scan of profile %s; the drained-scan sweep retries it",
                    profile_id,
                )
                return False
            if failed and stats is not None:
                stats.scans_failed += 1
            return False
        return True

    def _record_failure(
        self,
        task_id: int,
        attempt: int,
        profile_id: str,
        batch_id: str,
        message: str,
        stats: Optional[CycleStats] = None,
    ) -> Optional[ScanTask]:
        task = self.task_repo.mark_failed(task_id, message, utcnow(), attempt=attempt)
        if task is None:
            logger.warning(
                "Attempt %d of task %s no longer owns it; failure not recorded",
                attempt,
                task_id,
            )
            return None

        if task.status == TaskStatus.failed:
            logger.warning(
                "Task %s failed permanently after %d attempts: %s",
                task_id,
                task.attempts,
                message,
            )
            self._settle(profile_id, batch_id, ProgressDelta(), stats)
        else:
            logger.info(
                "Task %s failed (attempt %d/%d), retrying at %s: %s",
                task_id,
                task.attempts,
                task.max_attempts,
                task.scheduled_for.isoformat(),
                message,
            )
        return task

    def recover_stale_tasks(
        self, stats: Optional[CycleStats] = None, now: Optional[datetime] = None
    ) -> int:
        """
        Treat tasks stuck in processing past the lease as failed attempts,
        so a crashed executor cannot block its batch forever. The original
        holder's late writes are then rejected by the attempt fence.
        """
        cutoff = (now or utcnow()) - self.stale_after
        recovered = 0
        for task in self.task_repo.find_stale_processing(cutoff):
            task_id, profile_id, batch_id = task.id, task.profile_id, task.batch_id
            updated = self._record_failure(
                task_id,
                task.attempts,
                profile_id,
                batch_id,
                "processing lease expired",
                stats,
            )
            if updated is None:
                continue
            recovered += 1
            if stats is not None:
                if updated.status == TaskStatus.failed:
                    stats.tasks_failed += 1
                else:
                    stats.tasks_retried += 1
        if recovered:
            logger.warning("Recovered %d stale scan tasks", recovered)
        return recovered

    def finalize_drained_scans(self, stats: Optional[CycleStats] = None) -> int:
        """
        Complete expanding scans whose batch has no pending or processing
        tasks left, e.g. because finalising after their last task failed.
        """
        try:
            completed = self.progress.finalize_drained()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Sweep of drained scans failed; retrying next cycle")
            return 0
        if stats is not None:
            stats.scans_completed += completed
        return completed
