"""
Service for starting and inspecting background scan expansions.

The surrounding application drives a profile scan like this:

    batch_id = service.begin_scan(profile_id)           # idle/completed/failed -> scanning
    ... synchronous first pass (outside this package) ...
    service.start_expansion(profile_id, batch_id, ...)  # scanning -> expanding
    ... cron-triggered ScanExecutorService drains the tasks ...
                                                        # expanding -> completed

Each scan gets a fresh, append-only batch. Starting a new scan repoints the
profile at the new batch, which orphans whatever was left of the old one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.clock import utcnow
from src.core.config import settings
from src.core.exceptions import EnqueueFailure, ProfileNotFoundError, ScanConflictError
from src.dtos.scan_dto import BatchStats, ScanProgress, ScanStatusRead, ScanTaskCreate
from src.entities.scan_task import PRIORITY_EXPANSION, PRIORITY_USER, TaskType
from src.entities.search_profile import (
    LIVE_SCAN_STATUSES,
    ScanStatus,
    SearchProfile,
    sources_for,
)
from src.repositories.scan_batch_repo import ScanBatchRepository
from src.repositories.scan_task_repo import ScanTaskRepository
from src.repositories.search_profile_repo import SearchProfileRepository
from src.services.scan_progress_service import ScanProgressService

logger = logging.getLogger(__name__)

# UK cities searched beyond the profile's own locations.
EXPANSION_LOCATIONS: tuple[str, ...] = (
    "Edinburgh",
    "Glasgow",
    "Bristol",
    "Newcastle",
    "Sheffield",
    "Nottingham",
    "Southampton",
    "Liverpool",
    "Cambridge",
    "Oxford",
    "Brighton",
    "Cardiff",
    "Belfast",
    "Coventry",
    "Derby",
)

PRIMARY_ROLE_COUNT = 2


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


def build_expansion_tasks(
    roles: Sequence[str],
    searched_roles: Sequence[str],
    user_locations: Sequence[str],
    searched_locations: Sequence[str],
    expansion_locations: Sequence[str] = EXPANSION_LOCATIONS,
) -> list[ScanTaskCreate]:
    """
    Expand roles x locations into the work the first pass did not cover.

    1. Every role not yet searched, in every user location (priority 1).
    2. The first two roles in every expansion city that is neither a user
       location nor already searched (priority 0). Location matching is
       case-insensitive.
    """
    roles = _unique(roles)
    user_locations = _unique(user_locations)
    searched = {role.strip() for role in searched_roles}
    covered = {loc.lower() for loc in user_locations}
    covered.update(loc.strip().lower() for loc in searched_locations)

    tasks: list[ScanTaskCreate] = []
    for role in roles:
        if role in searched:
            continue
        for location in user_locations:
            tasks.append(
                ScanTaskCreate(
                    task_type=TaskType.role_variation,
                    keywords=role,
                    location=location,
                    priority=PRIORITY_USER,
                )
            )

    primary_roles = roles[:PRIMARY_ROLE_COUNT]
    for location in expansion_locations:
        if location.lower() in covered:
            continue
        for role in primary_roles:
            tasks.append(
                ScanTaskCreate(
                    task_type=TaskType.expanded_location,
                    keywords=role,
                    location=location,
                    priority=PRIORITY_EXPANSION,
                )
            )
    return tasks


class ScanSchedulerService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.profile_repo = SearchProfileRepository(session)
        self.batch_repo = ScanBatchRepository(session)
        self.task_repo = ScanTaskRepository(
            session, max_attempts=settings.SCAN_MAX_ATTEMPTS
        )
        self.progress = ScanProgressService(session)

    def _get_profile(self, profile_id: str) -> SearchProfile:
        profile = self.profile_repo.get_by_id(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    def begin_scan(self, profile_id: str) -> str:
        """
        Open a new batch and move the profile to ``scanning``.

        Raises:
            ProfileNotFoundError: Unknown profile
            ScanConflictError: A scan is already scanning or expanding
        """
        profile = self._get_profile(profile_id)
        if profile.scan_status in LIVE_SCAN_STATUSES:
            raise ScanConflictError(
                f"Profile {profile_id} is already {profile.scan_status}"
            )

        batch = self.batch_repo.create_batch(profile_id, commit=False)
        batch_id = batch.id
        moved = self.profile_repo.transition(
            profile_id,
            sources_for(ScanStatus.scanning),
            ScanStatus.scanning,
            commit=False,
            scan_batch_id=batch_id,
            scan_progress=None,
        )
        if not moved:
            self.session.rollback()
            raise ScanConflictError(f"Profile {profile_id} changed state concurrently")
        self.session.commit()
        logger.info("Started scan batch %s for profile %s", batch_id, profile_id)
        return batch_id

    def start_expansion(
        self,
        profile_id: str,
        batch_id: str,
        roles: Sequence[str],
        searched_roles: Sequence[str],
        user_locations: Sequence[str],
        searched_locations: Sequence[str],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Queue the background expansion for a batch after its first pass.

        Returns:
            Number of tasks queued

        Raises:
            ProfileNotFoundError: Unknown profile
            ScanConflictError: Profile not scanning this batch (e.g. already expanding)
            EnqueueFailure: Tasks could not be stored; profile is now failed
        """
        now = now or utcnow()
        profile = self._get_profile(profile_id)
        if profile.scan_status != ScanStatus.scanning or profile.scan_batch_id != batch_id:
            raise ScanConflictError(
                f"Profile {profile_id} is {profile.scan_status} with batch "
                f"{profile.scan_batch_id}; cannot expand batch {batch_id}"
            )

        specs = build_expansion_tasks(
            roles, searched_roles, user_locations, searched_locations
        )
        progress = ScanProgress.initial(len(specs)).model_dump(mode="json")

        if not specs:
            self.profile_repo.transition(
                profile_id,
                [ScanStatus.scanning],
                ScanStatus.completed,
                expected_batch_id=batch_id,
                commit=False,
                scan_progress=progress,
                last_synced_at=now,
            )
            self.batch_repo.mark_finished(
                batch_id, ScanStatus.completed, now, progress=progress
            )
            logger.info("Nothing to expand for profile %s; scan completed", profile_id)
            return 0

        try:
            self.task_repo.enqueue(profile_id, batch_id, specs, now, commit=False)
            moved = self.profile_repo.transition(
                profile_id,
                [ScanStatus.scanning],
                ScanStatus.expanding,
                expected_batch_id=batch_id,
                commit=False,
                scan_progress=progress,
            )
            if not moved:
                self.session.rollback()
                raise ScanConflictError(
                    f"Profile {profile_id} left scanning before batch {batch_id} was queued"
                )
            self.batch_repo.mark_expanding(batch_id, len(specs), commit=False)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Failed to queue expansion for profile %s", profile_id)
            self.progress.fail_scan(profile_id, batch_id, f"enqueue failed: {exc}", now)
            raise EnqueueFailure(
                f"Could not queue {len(specs)} tasks for profile {profile_id}"
            ) from exc

        logger.info(
            "Queued %d expansion tasks for profile %s (batch %s)",
            len(specs),
            profile_id,
            batch_id,
        )
        return len(specs)

    def fail_scan(self, profile_id: str, batch_id: str, reason: str) -> bool:
        self._get_profile(profile_id)
        return self.progress.fail_scan(profile_id, batch_id, reason)

    def get_batch_stats(self, profile_id: str, batch_id: str) -> BatchStats:
        return self.task_repo.batch_stats(profile_id, batch_id)

    def get_scan_status(self, profile_id: str) -> ScanStatusRead:
        profile = self._get_profile(profile_id)
        return ScanStatusRead(
            profile_id=profile.id,
            scan_status=profile.scan_status,
            scan_batch_id=profile.scan_batch_id,
            scan_progress=(
                ScanProgress.model_validate(profile.scan_progress)
                if profile.scan_progress
                else None
            ),
            last_synced_at=profile.last_synced_at,
        )
