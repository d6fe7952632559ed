"""
Error taxonomy for the scan scheduler.

Only infrastructure failures during state transitions escalate to a
profile-level ``failed`` status. Per-task failures are recorded on the
task row and the batch carries on without it.
"""

from __future__ import annotations


class ScanSchedulerError(Exception):
    """Base class for scheduler errors."""


class ProfileNotFoundError(ScanSchedulerError):
    def __init__(self, profile_id: str) -> None:
        super().__init__(f"Profile {profile_id} not found")
        self.profile_id = profile_id


class ScanConflictError(ScanSchedulerError):
    """A scan is already live for the profile, or the batch is not current."""


class BudgetExhausted(ScanSchedulerError):
    """No credential has budget left today. A deferral, not a failure."""


class LedgerUnavailable(ScanSchedulerError):
    """The budget ledger storage could not be reached."""


class EnqueueFailure(ScanSchedulerError):
    """Bulk insert of expansion tasks failed; the profile is moved to failed."""


class TaskFailure(ScanSchedulerError):
    def __init__(self, task_id: int, message: str) -> None:
        super().__init__(f"Task {task_id}: {message}")
        self.task_id = task_id
        self.message = message


class TaskTransientFailure(TaskFailure):
    """Task failed and has been rescheduled for another attempt."""


class TaskPermanentFailure(TaskFailure):
    """Task exhausted its attempts and is now terminally failed."""
