"""
Repository for the daily API call ledger.

All admission decisions happen in a single conditional UPDATE so that
concurrent executors can never jointly admit more calls than the limit:

    UPDATE rate_budgets SET calls_made = calls_made + 1
    WHERE <key> AND calls_made < :limit
    RETURNING calls_made

The row for the day is created first with INSERT .. ON CONFLICT DO NOTHING,
which is race-free on both PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from src.core.database import dialect_name
from src.entities.rate_budget import RateBudget
from src.repositories.base_repo import BaseRepository


class RateBudgetRepository(BaseRepository[RateBudget]):
    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=RateBudget)

    def _key(self, api_name: str, credential_id: str, usage_date: date):
        return (
            RateBudget.api_name == api_name,
            RateBudget.credential_id == credential_id,
            RateBudget.usage_date == usage_date,
        )

    def ensure_row(
        self,
        api_name: str,
        credential_id: str,
        usage_date: date,
        calls_limit: int | None,
    ) -> None:
        """Create the (api, credential, day) row if it does not exist yet."""
        values = {
            "api_name": api_name,
            "credential_id": credential_id,
            "usage_date": usage_date,
            "calls_made": 0,
            "calls_limit": calls_limit,
        }
        dialect = dialect_name(self.session)
        if dialect == "postgresql":
            stmt = postgresql.insert(RateBudget).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(RateBudget).values(**values)
        else:
            if self.get_row(api_name, credential_id, usage_date) is None:
                self.session.add(RateBudget(**values))
                self.session.flush()
            return
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["api_name", "credential_id", "usage_date"]
        )
        self.session.execute(stmt)

    def increment_within_limit(
        self,
        api_name: str,
        credential_id: str,
        usage_date: date,
        daily_limit: int | None,
        now: datetime,
    ) -> Optional[int]:
        """
        Atomically add one call if the ceiling allows it.

        Returns the new ``calls_made`` or None when the ceiling is reached.
        ``daily_limit=None`` increments unconditionally. Does not commit.
        """
        criteria = list(self._key(api_name, credential_id, usage_date))
        if daily_limit is not None:
            criteria.append(RateBudget.calls_made < daily_limit)
        stmt = (
            update(RateBudget)
            .where(*criteria)
            .values(calls_made=RateBudget.calls_made + 1, last_call_at=now)
            .returning(RateBudget.calls_made)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_row(
        self, api_name: str, credential_id: str, usage_date: date
    ) -> Optional[RateBudget]:
        stmt = select(RateBudget).where(*self._key(api_name, credential_id, usage_date))
        return self.session.execute(stmt).scalars().first()

    def calls_made(self, api_name: str, credential_id: str, usage_date: date) -> int:
        stmt = select(RateBudget.calls_made).where(
            *self._key(api_name, credential_id, usage_date)
        )
        return self.session.execute(stmt).scalar_one_or_none() or 0

    def get_usage_for_day(self, api_name: str, usage_date: date) -> List[RateBudget]:
        stmt = (
            select(RateBudget)
            .where(RateBudget.api_name == api_name, RateBudget.usage_date == usage_date)
            .order_by(RateBudget.credential_id)
        )
        return list(self.session.execute(stmt).scalars().all())
