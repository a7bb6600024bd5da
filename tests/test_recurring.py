from datetime import date
from decimal import Decimal

import pytest

from finflow.models import RecurringTransaction, Transaction
from finflow.services.recurring_service import RecurringService, should_run_today


@pytest.mark.parametrize("frequency,last_run,today,expected", [
    ("DAILY", None, date(2024, 3, 10), True),
    ("DAILY", date(2024, 3, 9), date(2024, 3, 10), True),
    ("WEEKLY", date(2024, 3, 4), date(2024, 3, 10), False),
    ("WEEKLY", date(2024, 3, 3), date(2024, 3, 10), True),
    ("MONTHLY", date(2024, 3, 1), date(2024, 3, 31), False),
    ("MONTHLY", date(2024, 2, 28), date(2024, 3, 1), True),
    ("YEARLY", date(2024, 1, 1), date(2024, 12, 31), False),
    ("YEARLY", date(2023, 12, 31), date(2024, 1, 1), True),
    ("HOURLY", date(2024, 3, 9), date(2024, 3, 10), False),
])
def test_should_run_today(frequency, last_run, today, expected):
    assert should_run_today(frequency, last_run, today) is expected


@pytest.fixture
def make_rule(db_session):
    def _make(user, category, frequency="DAILY", start=date(2024, 1, 1), end=None, last_run=None, active=True):
        rule = RecurringTransaction(
            user_id=user.id,
            category_id=category.id,
            amount=Decimal("15.00"),
            note="subscription",
            frequency=frequency,
            start_date=start,
            end_date=end,
            last_run_date=last_run,
            is_active=active,
        )
        db_session.add(rule)
        db_session.commit()
        return rule
    return _make


def test_run_due_creates_once_per_day(db_session, mutations, user, expense_category, make_rule):
    rule = make_rule(user, expense_category)
    service = RecurringService(db_session, mutations)

    assert service.run_due(date(2024, 3, 10)) == 1
    assert service.run_due(date(2024, 3, 10)) == 0

    txns = db_session.query(Transaction).all()
    assert len(txns) == 1
    assert txns[0].transaction_date == date(2024, 3, 10)
    assert txns[0].amount == Decimal("15.00")
    assert db_session.get(RecurringTransaction, rule.id).last_run_date == date(2024, 3, 10)


def test_inactive_ended_and_future_rules_are_ignored(db_session, mutations, user, expense_category, make_rule):
    make_rule(user, expense_category, active=False)
    make_rule(user, expense_category, end=date(2024, 3, 1))
    make_rule(user, expense_category, start=date(2024, 4, 1))
    make_rule(user, expense_category, frequency="MONTHLY", last_run=date(2024, 3, 2))

    assert RecurringService(db_session, mutations).run_due(date(2024, 3, 10)) == 0
    assert db_session.query(Transaction).count() == 0


def test_failing_rule_is_rolled_back_and_others_continue(db_session, mutations, user, other_user,
                                                         expense_category, private_category, make_rule):
    broken = make_rule(user, private_category)
    healthy = make_rule(user, expense_category)
    broken_id, healthy_id = broken.id, healthy.id

    assert RecurringService(db_session, mutations).run_due(date(2024, 3, 10)) == 1

    assert db_session.get(RecurringTransaction, broken_id).last_run_date is None
    assert db_session.get(RecurringTransaction, healthy_id).last_run_date == date(2024, 3, 10)
    assert db_session.query(Transaction).count() == 1
