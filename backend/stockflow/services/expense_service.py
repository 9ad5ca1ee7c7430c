from __future__ import annotations

from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..errors import NotFound
from ..models import Expense
from ..signals import notify_change
from ..time_utils import today
from ..validation import coerce_int, optional_date, optional_text, require_cents, require_text
from .concurrency import run_in_transaction
from .ledger_service import append_ledger_event
from .store_service import require_store


def record_expense(
    store_id: int,
    category: str,
    amount_cents: int,
    *,
    description: str | None = None,
    expense_date: date | str | None = None,
) -> Expense:
    """Append a store expense. Expenses never touch stock."""
    store_id = coerce_int(store_id, "store_id")
    category = " ".join(require_text(category, "category").split())
    amount_cents = require_cents(amount_cents, "amount_cents", positive=True)
    description = optional_text(description, "description")
    expense_day = optional_date(expense_date, "expense_date") or today()

    def _op():
        require_store(store_id)
        expense = Expense(
            store_id=store_id,
            category=category,
            description=description,
            amount_cents=amount_cents,
            expense_date=expense_day,
        )
        db.session.add(expense)
        db.session.flush()

        append_ledger_event(
            store_id=store_id,
            event_type="expense.recorded",
            event_category="expenses",
            entity_type="expense",
            entity_id=expense.id,
            note=category,
            payload={"amount_cents": amount_cents},
        )
        return expense

    expense = run_in_transaction(_op)
    notify_change("expenses", action="created", store_id=store_id, entity_id=expense.id)
    return expense


def delete_expense(expense_id: int) -> None:
    def _op():
        expense = db.session.get(Expense, expense_id)
        if not expense:
            raise NotFound(f"Expense {expense_id} not found", details={"expense_id": expense_id})
        store_id = expense.store_id
        db.session.delete(expense)

        append_ledger_event(
            store_id=store_id,
            event_type="expense.deleted",
            event_category="expenses",
            entity_type="expense",
            entity_id=expense_id,
            payload={"amount_cents": expense.amount_cents},
        )
        return store_id

    store_id = run_in_transaction(_op)
    notify_change("expenses", action="deleted", store_id=store_id, entity_id=expense_id)


def list_expenses(
    *,
    store_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    category: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """
    Page of expenses (newest first) with the period total and a per-category
    breakdown. Totals ignore paging; date bounds are inclusive.
    """
    filters = []
    if store_id is not None:
        filters.append(Expense.store_id == store_id)
    if date_from is not None:
        filters.append(Expense.expense_date >= date_from)
    if date_to is not None:
        filters.append(Expense.expense_date <= date_to)
    if category:
        filters.append(func.lower(Expense.category) == category.strip().lower())

    query = db.session.query(Expense).filter(*filters)
    total = query.count()
    items = (
        query.order_by(Expense.expense_date.desc(), Expense.created_at.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    by_category = {
        name: int(amount)
        for name, amount in (
            db.session.query(Expense.category, func.sum(Expense.amount_cents))
            .filter(*filters)
            .group_by(Expense.category)
            .order_by(Expense.category.asc())
        )
    }

    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
        "total_amount_cents": sum(by_category.values()),
        "by_category": by_category,
    }


def list_categories(*, store_id: int | None = None) -> list[str]:
    """Previously used categories, distinct and sorted, for autocomplete."""
    query = db.session.query(Expense.category)
    if store_id is not None:
        query = query.filter(Expense.store_id == store_id)
    return [row[0] for row in query.distinct().order_by(Expense.category.asc())]
