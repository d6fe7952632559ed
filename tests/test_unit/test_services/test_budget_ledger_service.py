"""
Unit tests for budget_ledger_service.py

Tests cover:
- try_consume: admission up to the daily ceiling, then denial
- remaining_calls: read-only view of the same ledger row
- day rollover, unlimited credentials, fail-open on storage errors

Run with:
    pytest tests/test_unit/test_services/test_budget_ledger_service.py -v
"""

from datetime import date
from unittest.mock import patch

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from src.core.clock import utc_today
from src.entities.rate_budget import DEFAULT_CREDENTIAL_ID
from src.repositories.rate_budget_repo import RateBudgetRepository
from src.services.budget_ledger_service import BudgetLedger

API = "reed"


class TestTryConsume:
    def test_admits_up_to_limit_then_denies(self, db_session):
        """Five calls fit a limit of five; the next three are refused."""
        ledger = BudgetLedger(db_session)

        decisions = [ledger.try_consume(API, "cred-1", 5) for _ in range(8)]

        assert [d.allowed for d in decisions] == [True] * 5 + [False] * 3
        assert [d.remaining for d in decisions[:5]] == [4, 3, 2, 1, 0]
        assert all(d.remaining == 0 for d in decisions[5:])
        assert all(d.used == 5 for d in decisions[5:])

    def test_two_sessions_share_one_ceiling(self, db_session):
        """Interleaved executors with separate sessions never overshoot."""
        other = sessionmaker(bind=db_session.get_bind())()
        first, second = BudgetLedger(db_session), BudgetLedger(other)

        allowed = 0
        for _ in range(4):
            allowed += first.try_consume(API, "cred-1", 5).allowed
            allowed += second.try_consume(API, "cred-1", 5).allowed
        other.close()

        assert allowed == 5
        assert RateBudgetRepository(db_session).calls_made(API, "cred-1", utc_today()) == 5

    def test_none_credential_uses_default_row(self, db_session):
        ledger = BudgetLedger(db_session)

        ledger.try_consume(API, None, 10)

        rows = ledger.usage_for_day(API)
        assert [r.credential_id for r in rows] == [DEFAULT_CREDENTIAL_ID]
        assert rows[0].calls_made == 1
        assert rows[0].calls_limit == 10
        assert rows[0].last_call_at is not None

    def test_credentials_are_independent(self, db_session):
        ledger = BudgetLedger(db_session)

        assert ledger.try_consume(API, "cred-1", 1).allowed is True
        assert ledger.try_consume(API, "cred-1", 1).allowed is False
        assert ledger.try_consume(API, "cred-2", 1).allowed is True
        assert ledger.try_consume("adzuna", "cred-1", 1).allowed is True

    def test_unlimited_never_denies(self, db_session):
        ledger = BudgetLedger(db_session)

        decisions = [ledger.try_consume(API, "cred-u", None) for _ in range(3)]

        assert all(d.allowed for d in decisions)
        assert decisions[-1].used == 3

    def test_new_day_starts_fresh(self, db_session):
        ledger = BudgetLedger(db_session)

        with patch(
            "src.services.budget_ledger_service.utc_today",
            return_value=date(2026, 3, 1),
        ):
            ledger.try_consume(API, "cred-1", 1)
            assert ledger.try_consume(API, "cred-1", 1).allowed is False

        with patch(
            "src.services.budget_ledger_service.utc_today",
            return_value=date(2026, 3, 2),
        ):
            decision = ledger.try_consume(API, "cred-1", 1)

        assert decision.allowed is True
        assert len(ledger.usage_for_day(API, date(2026, 3, 1))) == 1
        assert len(ledger.usage_for_day(API, date(2026, 3, 2))) == 1

    def test_fails_open_when_ledger_unavailable(self, db_session):
        ledger = BudgetLedger(db_session)
        error = OperationalError("INSERT INTO rate_budgets", {}, Exception("down"))

        with patch.object(ledger.repo, "ensure_row", side_effect=error):
            decision = ledger.try_consume(API, "cred-1", 5)

        assert decision.allowed is True


class TestRemainingCalls:
    def test_is_read_only(self, db_session):
        ledger = BudgetLedger(db_session)
        ledger.try_consume(API, "cred-1", 5)
        ledger.try_consume(API, "cred-1", 5)

        assert ledger.remaining_calls(API, "cred-1", 5) == 3
        assert ledger.remaining_calls(API, "cred-1", 5) == 3

    def test_unknown_row_has_full_budget(self, db_session):
        assert BudgetLedger(db_session).remaining_calls(API, "nobody", 100) == 100

    def test_never_negative(self, db_session):
        ledger = BudgetLedger(db_session)
        for _ in range(3):
            ledger.try_consume(API, "cred-1", 3)

        # Limit lowered after the calls were made.
        assert ledger.remaining_calls(API, "cred-1", 2) == 0

    def test_assumes_full_budget_on_error(self, db_session):
        ledger = BudgetLedger(db_session)
        error = OperationalError("SELECT", {}, Exception("down"))

        with patch.object(ledger.repo, "calls_made", side_effect=error):
            assert ledger.remaining_calls(API, "cred-1", 40) == 40
