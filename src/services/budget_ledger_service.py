"""
Budget ledger: per (api, credential, UTC day) call ceilings.

try_consume() is the admission gate in front of every external search
call. Check and increment happen in one storage-level statement (see
RateBudgetRepository), so concurrent executors never overshoot a limit.

If the ledger itself is unreachable the gate fails OPEN: the call is
allowed and the problem is logged. The external API's own throttling is the
backstop in that case.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.clock import utc_today, utcnow
from src.core.exceptions import LedgerUnavailable
from src.dtos.budget_dto import BudgetDecision
from src.entities.rate_budget import DEFAULT_CREDENTIAL_ID, RateBudget
from src.repositories.rate_budget_repo import RateBudgetRepository

logger = logging.getLogger(__name__)


class BudgetLedger:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.repo = RateBudgetRepository(session)

    def try_consume(
        self,
        api_name: str,
        credential_id: Optional[str],
        daily_limit: Optional[int],
    ) -> BudgetDecision:
        """
        Admit one call against today's budget, or refuse it.

        Args:
            api_name: External API the call is for
            credential_id: Ledger key of the credential; None means the shared default
            daily_limit: Ceiling for the day; None for unlimited credentials

        Returns:
            BudgetDecision with the remaining budget after this call
        """
        credential_id = credential_id or DEFAULT_CREDENTIAL_ID
        try:
            return self._consume(api_name, credential_id, daily_limit)
        except LedgerUnavailable:
            logger.exception(
                "Budget ledger unavailable for %s/%s; allowing call",
                api_name,
                credential_id,
            )
            return BudgetDecision(allowed=True, remaining=0, used=0)

    def _consume(
        self, api_name: str, credential_id: str, daily_limit: Optional[int]
    ) -> BudgetDecision:
        today = utc_today()
        try:
            self.repo.ensure_row(api_name, credential_id, today, daily_limit)
            used = self.repo.increment_within_limit(
                api_name, credential_id, today, daily_limit, utcnow()
            )
            if used is None:
                used = self.repo.calls_made(api_name, credential_id, today)
                self.session.commit()
                logger.info(
                    "Daily budget exhausted for %s/%s (%d/%s)",
                    api_name,
                    credential_id,
                    used,
                    daily_limit,
                )
                return BudgetDecision(allowed=False, remaining=0, used=used)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise LedgerUnavailable(str(exc)) from exc

        remaining = 0 if daily_limit is None else max(0, daily_limit - used)
        return BudgetDecision(allowed=True, remaining=remaining, used=used)

    def remaining_calls(
        self,
        api_name: str,
        credential_id: Optional[str],
        daily_limit: int,
    ) -> int:
        """Calls still available today. Read-only; never increments."""
        credential_id = credential_id or DEFAULT_CREDENTIAL_ID
        try:
            used = self.repo.calls_made(api_name, credential_id, utc_today())
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                "Budget ledger unavailable for %s/%s; assuming full budget",
                api_name,
                credential_id,
            )
            return daily_limit
        return max(0, daily_limit - used)

    def usage_for_day(self, api_name: str, day: Optional[date] = None) -> list[RateBudget]:
        return self.repo.get_usage_for_day(api_name, day or utc_today())
