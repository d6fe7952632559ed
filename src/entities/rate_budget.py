"""
Entity for the daily API call ledger.

One row per (api_name, credential_id, usage_date). A new UTC day simply
starts a fresh row, so no reset job is needed.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.entities.base import Base

# Ledger key of the shared, application-wide credential. A literal value
# rather than NULL keeps the unique constraint effective on PostgreSQL.
DEFAULT_CREDENTIAL_ID = "default"


class RateBudget(Base):
    __tablename__ = "rate_budgets"
    __table_args__ = (
        UniqueConstraint(
            "api_name", "credential_id", "usage_date", name="uq_rate_budgets_key_day"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_name: Mapped[str] = mapped_column(String(50), nullable=False)
    credential_id: Mapped[str] = mapped_column(
        String(36), nullable=False, default=DEFAULT_CREDENTIAL_ID
    )
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)

    calls_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calls_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_call_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
