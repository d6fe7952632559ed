"""
Repository for search profiles.

State changes go through transition(), a compare-and-swap on scan_status
(and optionally scan_batch_id), so two overlapping requests can never both
move a profile out of the same state.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.entities.search_profile import SearchProfile
from src.repositories.base_repo import BaseRepository


class SearchProfileRepository(BaseRepository[SearchProfile]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=SearchProfile)

    def create_profile(
        self,
        owner_id: str,
        name: str,
        *,
        roles: Optional[list[str]] = None,
        locations: Optional[list[str]] = None,
        industries: Optional[list[str]] = None,
    ) -> SearchProfile:
        profile = SearchProfile(
            owner_id=owner_id,
            name=name,
            roles=roles or [],
            locations=locations or [],
            industries=industries or [],
        )
        return self.create(profile, commit=True)

    def transition(
        self,
        profile_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        *,
        expected_batch_id: Optional[str] = None,
        commit: bool = True,
        **values: Any,
    ) -> bool:
        """
        Move the profile to *to_status* if it is currently in one of
        *from_statuses* (and points at *expected_batch_id*, when given).

        Returns True when this call performed the transition.
        """
        criteria = [
            SearchProfile.id == profile_id,
            SearchProfile.scan_status.in_(list(from_statuses)),
        ]
        if expected_batch_id is not None:
            criteria.append(SearchProfile.scan_batch_id == expected_batch_id)
        stmt = (
            update(SearchProfile)
            .where(*criteria)
            .values(scan_status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if commit:
            self.session.commit()
        return result.rowcount == 1

    def save_progress(
        self, profile: SearchProfile, progress: dict, *, commit: bool = True
    ) -> SearchProfile:
        # A fresh dict so the JSON column is flagged dirty.
        profile.scan_progress = dict(progress)
        if commit:
            self.session.commit()
        return profile

    def get_by_status(self, status: str, limit: int = 50) -> list[SearchProfile]:
        stmt = (
            select(SearchProfile)
            .where(SearchProfile.scan_status == status)
            .order_by(SearchProfile.created_at)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def count_active_for_owner(self, owner_id: str) -> int:
        return self.count(
            SearchProfile.owner_id == owner_id,
            SearchProfile.is_active.is_(True),
        )
