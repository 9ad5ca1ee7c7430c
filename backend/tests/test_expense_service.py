# Overview: Pytest coverage for the store expense ledger.

from datetime import date

import pytest

from stockflow.errors import NotFound, ValidationError
from stockflow.models import Expense
from stockflow.services import expense_service


def test_record_expense_trims_category(db_session, store_a):
    expense = expense_service.record_expense(
        store_a.id, "  Rent   office ", 150000, description="March", expense_date="2026-03-01",
    )

    assert expense.category == "Rent office"
    assert expense.amount_cents == 150000
    assert expense.expense_date == date(2026, 3, 1)


@pytest.mark.parametrize("amount", [0, -10, 12.5, None])
def test_amount_must_be_positive_integer_cents(db_session, store_a, amount):
    with pytest.raises(ValidationError):
        expense_service.record_expense(store_a.id, "Rent", amount)


def test_category_required(db_session, store_a):
    with pytest.raises(ValidationError):
        expense_service.record_expense(store_a.id, "   ", 100)


def test_unknown_store(db_session):
    with pytest.raises(NotFound):
        expense_service.record_expense(999, "Rent", 100)


def test_delete_expense(db_session, store_a):
    expense = expense_service.record_expense(store_a.id, "Power", 2000)
    expense_id = expense.id

    expense_service.delete_expense(expense_id)

    assert db_session.get(Expense, expense_id) is None
    with pytest.raises(NotFound):
        expense_service.delete_expense(expense_id)


def test_list_expenses_with_totals(db_session, store_a, store_b):
    expense_service.record_expense(store_a.id, "Rent", 100000, expense_date="2026-04-01")
    expense_service.record_expense(store_a.id, "Power", 2500, expense_date="2026-04-03")
    expense_service.record_expense(store_a.id, "Power", 2700, expense_date="2026-05-03")
    expense_service.record_expense(store_b.id, "Rent", 90000, expense_date="2026-04-01")

    result = expense_service.list_expenses(
        store_id=store_a.id, date_from=date(2026, 4, 1), date_to=date(2026, 4, 30),
    )

    assert result["total"] == 2
    assert result["total_amount_cents"] == 102500
    assert result["by_category"] == {"Power": 2500, "Rent": 100000}
    assert result["items"][0].expense_date == date(2026, 4, 3)


def test_list_expenses_by_category(db_session, store_a):
    expense_service.record_expense(store_a.id, "Rent", 100000)
    expense_service.record_expense(store_a.id, "Power", 2500)

    result = expense_service.list_expenses(category="power")
    assert [e.category for e in result["items"]] == ["Power"]


def test_list_categories_distinct_sorted(db_session, store_a, store_b):
    expense_service.record_expense(store_a.id, "Rent", 1)
    expense_service.record_expense(store_a.id, "Power", 1)
    expense_service.record_expense(store_b.id, "Rent", 1)

    assert expense_service.list_categories() == ["Power", "Rent"]
    assert expense_service.list_categories(store_id=store_b.id) == ["Rent"]
