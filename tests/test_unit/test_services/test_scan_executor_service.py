"""
Unit tests for the scan executor.

The external search API is replaced by FakeSearchClient; everything else
(queue, ledger, key pool, progress) runs against in-memory SQLite.
"""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError

from src.core.clock import utcnow
from src.core.recruiters import is_recruitment_agency
from src.core.search_client import NetworkError
from src.dtos.job_result_dto import JobResult
from src.dtos.scan_dto import ProgressDelta, ScanProgress
from src.entities.scan_task import TaskStatus
from src.entities.search_profile import ScanStatus
from src.services.key_pool_service import KeyPoolManager
from src.services.scan_executor_service import ScanExecutorService, count_results
from src.services.scan_scheduler_service import EXPANSION_LOCATIONS, ScanSchedulerService


class FakeSearchClient:
    """Returns two jobs per call, or raises for locations listed in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def search(self, keywords, location, posted_within_days, *, api_key):
        self.calls.append((keywords, location, api_key))
        if location in self.failing:
            raise NetworkError(f"upstream unavailable for {location}")
        return [
            JobResult(
                job_id=f"{location}-1",
                title=keywords,
                company_name="Acme Care",
                location=location,
                url="https://example.test/1",
            ),
            JobResult(
                job_id=f"{location}-2",
                title=keywords,
                company_name="Bright Health",
                location=location,
                url="https://example.test/2",
            ),
        ]


def start_batch(db_session, profile_id, towns):
    """Queue exactly one task per town and return the batch id."""
    scheduler = ScanSchedulerService(db_session)
    batch_id = scheduler.begin_scan(profile_id)
    scheduler.start_expansion(
        profile_id,
        batch_id,
        roles=["Nurse"],
        searched_roles=[],
        user_locations=towns,
        searched_locations=list(EXPANSION_LOCATIONS),
    )
    return batch_id


@pytest.fixture
def make_executor(db_session):
    def _make(search_client, **kwargs):
        kwargs.setdefault(
            "key_pool",
            KeyPoolManager(db_session, default_api_key="shared-key", default_daily_limit=100),
        )
        executor = ScanExecutorService(db_session, search_client, **kwargs)
        executor.task_repo.retry_delay = timedelta(0)
        return executor

    return _make


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_partial_failures_still_complete_the_scan(
        self, db_session, make_profile, make_executor
    ):
        """7 of 10 tasks succeed, 3 fail three times each; the scan completes."""
        profile = make_profile()
        towns = [f"Town{i}" for i in range(10)]
        batch_id = start_batch(db_session, profile.id, towns)
        client = FakeSearchClient(failing=towns[7:])
        executor = make_executor(client)

        first = await executor.run_cycle(limit=50)
        second = await executor.run_cycle(limit=50)
        third = await executor.run_cycle(limit=50)
        fourth = await executor.run_cycle(limit=50)

        assert (first.tasks_processed, first.tasks_retried) == (7, 3)
        assert (second.tasks_processed, second.tasks_retried) == (0, 3)
        assert (third.tasks_failed, third.tasks_retried) == (3, 0)
        assert fourth.tasks_claimed == 0
        assert first.jobs_found == 14
        assert first.companies_found == 14
        assert len(client.calls) == 7 + 3 * 3

        refreshed = executor.profile_repo.get_by_id(profile.id)
        assert refreshed.scan_status == ScanStatus.completed
        assert refreshed.last_synced_at is not None
        progress = ScanProgress.model_validate(refreshed.scan_progress)
        assert progress.tasks_pending == 0
        assert progress.tasks_completed == 10
        assert progress.jobs_found == 14

        stats = executor.task_repo.batch_stats(profile.id, batch_id)
        assert (stats.total, stats.completed, stats.failed, stats.pending) == (10, 7, 3, 0)
        assert stats.jobs_found == 14
        assert executor.progress.batch_repo.get_by_id(batch_id).status == ScanStatus.completed

    @pytest.mark.asyncio
    async def test_calls_are_charged_to_the_ledger(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        start_batch(db_session, profile.id, ["Leeds", "York"])
        client = FakeSearchClient()
        executor = make_executor(client)

        await executor.run_cycle(limit=5)

        assert [c[2] for c in client.calls] == ["shared-key", "shared-key"]
        assert executor.ledger.remaining_calls("reed", None, 100) == 98

    @pytest.mark.asyncio
    async def test_claims_are_capped_by_remaining_budget(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds", "York", "Hull"])
        client = FakeSearchClient()
        pool = KeyPoolManager(db_session, default_api_key="shared-key", default_daily_limit=1)
        executor = make_executor(client, key_pool=pool)

        first = await executor.run_cycle(limit=5)
        second = await executor.run_cycle(limit=5)

        assert first.tasks_claimed == 1
        assert first.tasks_processed == 1
        assert second.tasks_claimed == 0
        assert executor.task_repo.batch_stats(profile.id, batch_id).pending == 2

    @pytest.mark.asyncio
    async def test_budget_exhaustion_defers_without_counting_attempt(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds", "York"])
        pool = Mock(spec=KeyPoolManager)
        pool.total_remaining.return_value = None
        pool.next_available_key.return_value = None
        client = FakeSearchClient()
        executor = make_executor(client, key_pool=pool)

        stats = await executor.run_cycle(limit=5)

        assert stats.budget_exhausted is True
        assert stats.tasks_deferred == 1
        assert stats.tasks_processed == 0
        assert client.calls == []
        tasks = executor.task_repo.get_for_batch(batch_id)
        assert all(t.status == TaskStatus.pending for t in tasks)
        assert all(t.attempts == 0 for t in tasks)

    @pytest.mark.asyncio
    async def test_superseded_batch_is_skipped(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        old_batch = start_batch(db_session, profile.id, ["Leeds"])
        scheduler = ScanSchedulerService(db_session)
        scheduler.fail_scan(profile.id, old_batch, "user restarted")
        new_batch = scheduler.begin_scan(profile.id)
        client = FakeSearchClient()
        executor = make_executor(client)

        stats = await executor.run_cycle(limit=5)

        assert stats.tasks_claimed == 1
        assert stats.tasks_processed == 0
        assert client.calls == []
        (task,) = executor.task_repo.get_for_batch(old_batch)
        assert task.status == TaskStatus.skipped
        status = scheduler.get_scan_status(profile.id)
        assert status.scan_batch_id == new_batch
        assert status.scan_status == ScanStatus.scanning

    @pytest.mark.asyncio
    async def test_custom_result_handler(self, db_session, make_profile, make_executor):
        profile = make_profile()
        start_batch(db_session, profile.id, ["Leeds"])

        def handler(task, results):
            delta = count_results(task, results)
            return ProgressDelta(
                jobs_found=delta.jobs_found,
                companies_found=delta.companies_found,
                signals_generated=1,
            )

        executor = make_executor(FakeSearchClient(), result_handler=handler)

        stats = await executor.run_cycle(limit=5)

        assert stats.signals_generated == 1
        progress = ScanProgress.model_validate(
            executor.profile_repo.get_by_id(profile.id).scan_progress
        )
        assert progress.signals_generated == 1


def db_down():
    return OperationalError("SELECT count(*) FROM scan_tasks", {}, Exception("connection lost"))


class TestSettleFailures:
    @pytest.mark.asyncio
    async def test_finalize_error_fails_the_scan(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds"])
        executor = make_executor(FakeSearchClient())

        with patch.object(
            executor.progress.task_repo, "count_active", side_effect=db_down()
        ):
            stats = await executor.run_cycle(limit=5)

        assert stats.tasks_processed == 1
        assert stats.scans_failed == 1
        refreshed = executor.profile_repo.get_by_id(profile.id)
        assert refreshed.scan_status == ScanStatus.failed
        batch = executor.progress.batch_repo.get_by_id(batch_id)
        assert batch.status == ScanStatus.failed
        assert batch.error_message.startswith("finalize failed")

    @pytest.mark.asyncio
    async def test_drained_scan_is_completed_by_next_cycle(
        self, db_session, make_profile, make_executor
    ):
        """Finalise and fail_scan both error; the next cycle's sweep completes it."""
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds"])
        executor = make_executor(FakeSearchClient())

        with patch.object(
            executor.progress.task_repo, "count_active", side_effect=db_down()
        ), patch.object(executor.progress, "fail_scan", side_effect=db_down()):
            first = await executor.run_cycle(limit=5)

        assert first.tasks_processed == 1
        assert first.scans_failed == 0
        assert executor.profile_repo.get_by_id(profile.id).scan_status == ScanStatus.expanding

        second = await executor.run_cycle(limit=5)

        assert second.scans_completed == 1
        assert second.tasks_claimed == 0
        refreshed = executor.profile_repo.get_by_id(profile.id)
        assert refreshed.scan_status == ScanStatus.completed
        assert ScanProgress.model_validate(refreshed.scan_progress).jobs_found == 2
        assert executor.progress.batch_repo.get_by_id(batch_id).status == ScanStatus.completed

    @pytest.mark.asyncio
    async def test_sweep_leaves_scans_with_active_tasks_alone(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        start_batch(db_session, profile.id, ["Leeds"])
        pool = Mock(spec=KeyPoolManager)
        pool.total_remaining.return_value = 0
        executor = make_executor(FakeSearchClient(), key_pool=pool)

        stats = await executor.run_cycle(limit=5)

        assert stats.scans_completed == 0
        assert executor.profile_repo.get_by_id(profile.id).scan_status == ScanStatus.expanding


class TestAttemptFence:
    @pytest.mark.asyncio
    async def test_result_of_recovered_attempt_is_dropped(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds"])

        def slow_handler(task, results):
            # Lease expires mid-flight and another executor claims attempt 2.
            executor.task_repo.mark_failed(
                task.id, "processing lease expired", utcnow(), attempt=1
            )
            executor.task_repo.mark_processing(task.id, utcnow())
            return count_results(task, results)

        executor = make_executor(FakeSearchClient(), result_handler=slow_handler)

        stats = await executor.run_cycle(limit=5)

        assert stats.tasks_claimed == 1
        assert stats.tasks_processed == 0
        assert stats.jobs_found == 0
        (task,) = executor.task_repo.get_for_batch(batch_id)
        assert task.status == TaskStatus.processing
        assert task.attempts == 2
        refreshed = executor.profile_repo.get_by_id(profile.id)
        assert refreshed.scan_status == ScanStatus.expanding
        assert ScanProgress.model_validate(refreshed.scan_progress).jobs_found == 0

    @pytest.mark.asyncio
    async def test_failure_of_recovered_attempt_is_dropped(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds"])

        def reclaimed_then_fails(task, results):
            executor.task_repo.mark_failed(
                task.id, "processing lease expired", utcnow(), attempt=1
            )
            executor.task_repo.mark_processing(task.id, utcnow())
            raise ValueError("malformed results")

        executor = make_executor(FakeSearchClient(), result_handler=reclaimed_then_fails)

        stats = await executor.run_cycle(limit=5)

        assert stats.tasks_retried == 0
        assert stats.tasks_failed == 0
        assert stats.errors == []
        (task,) = executor.task_repo.get_for_batch(batch_id)
        assert task.status == TaskStatus.processing
        assert task.attempts == 2
        assert task.error_message == "processing lease expired"


class TestRecoverStaleTasks:
    def test_expired_lease_counts_as_failed_attempt(
        self, db_session, make_profile, make_executor
    ):
        profile = make_profile()
        batch_id = start_batch(db_session, profile.id, ["Leeds", "York"])
        executor = make_executor(FakeSearchClient())
        stuck, fresh = executor.task_repo.get_for_batch(batch_id)
        now = utcnow()
        executor.task_repo.mark_processing(stuck.id, now - timedelta(hours=3))
        executor.task_repo.mark_processing(fresh.id, now)

        recovered = executor.recover_stale_tasks(now=now)

        assert recovered == 1
        stuck = executor.task_repo.get_by_id(stuck.id)
        assert stuck.status == TaskStatus.pending
        assert stuck.attempts == 1
        assert stuck.error_message == "processing lease expired"
        assert executor.task_repo.get_by_id(fresh.id).status == TaskStatus.processing


class TestCountResults:
    def test_counts_distinct_companies(self):
        results = [
            JobResult(job_id="1", title="Nurse", company_name="Acme", location="Leeds", url="u"),
            JobResult(job_id="2", title="Nurse", company_name=" acme ", location="Leeds", url="u"),
            JobResult(job_id="3", title="Nurse", company_name="Other", location="Leeds", url="u"),
        ]

        delta = count_results(Mock(), results)

        assert delta.jobs_found == 3
        assert delta.companies_found == 2

    def test_drops_recruitment_agencies(self):
        results = [
            JobResult(job_id="1", title="Nurse", company_name="Acme", location="Leeds", url="u"),
            JobResult(
                job_id="2", title="Nurse", company_name="Hays Recruitment", location="Leeds"
            ),
            JobResult(
                job_id="3",
                title="Nurse",
                company_name="Northern Care Ltd",
                location="Leeds",
                description="We are hiring on behalf of our client, a leading care group.",
            ),
        ]

        delta = count_results(Mock(), results)

        assert delta.jobs_found == 1
        assert delta.companies_found == 1

    @pytest.mark.asyncio
    async def test_companies_are_employer_hits_across_tasks(
        self, db_session, make_profile, make_executor
    ):
        """The same two employers in two towns count as four hits."""
        profile = make_profile()
        start_batch(db_session, profile.id, ["Leeds", "York"])
        executor = make_executor(FakeSearchClient())

        await executor.run_cycle(limit=5)

        progress = ScanProgress.model_validate(
            executor.profile_repo.get_by_id(profile.id).scan_progress
        )
        assert progress.jobs_found == 4
        assert progress.companies_found == 4


class TestIsRecruitmentAgency:
    @pytest.mark.parametrize(
        "name",
        ["Hays", "Reed Employment", "ABC Staffing Ltd", "Talent Partners UK", "randstad"],
    )
    def test_agency_names(self, name):
        assert is_recruitment_agency(name) is True

    @pytest.mark.parametrize(
        "name", ["Acme Care", "Bright Health", "Haysom Builders", "NHS Leeds"]
    )
    def test_direct_employers(self, name):
        assert is_recruitment_agency(name) is False

    def test_description_gives_agency_away(self):
        assert is_recruitment_agency("Northern Care", "Our client is a care home group")
        assert not is_recruitment_agency("Northern Care", "Join our friendly team")
        assert not is_recruitment_agency("Northern Care", None)
