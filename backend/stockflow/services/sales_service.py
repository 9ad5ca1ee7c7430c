"""
Store sale service - stock-consuming sales with a compensating delete

WHY: A sale must take units out of the store's pool and record the
revenue/cost/profit it produced as one unit of work. Deleting a sale is the
only way to undo it and puts the exact units back into the same store.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import Sale, SaleLine
from ..signals import notify_change
from ..time_utils import today
from ..validation import coerce_int, optional_cents, optional_date, optional_text, require_list, require_quantity
from .concurrency import run_in_transaction
from .ledger_service import append_ledger_event
from . import stock_service
from .stock_service import PRICE_KEEP
from .store_service import require_store


def _normalize_sale_lines(lines) -> list[dict]:
    lines = require_list(lines, "lines")
    normalized = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        brand, rating = stock_service.normalize_key(raw.get("brand"), raw.get("rating"))
        normalized.append({
            "brand": brand,
            "rating": rating,
            "quantity": require_quantity(raw.get("quantity"), f"lines[{index}].quantity"),
            "unit_price_cents": optional_cents(raw.get("unit_price_cents"), f"lines[{index}].unit_price_cents"),
            "unit_cost_cents": optional_cents(raw.get("unit_cost_cents"), f"lines[{index}].unit_cost_cents"),
        })
    return normalized


def register_sale(
    store_id: int,
    lines: list[dict],
    *,
    notes: str | None = None,
    sale_date: date | str | None = None,
) -> Sale:
    """
    Record a sale and take its units out of the store's stock.

    Lines: [{"brand", "rating", "quantity", "unit_price_cents"?, "unit_cost_cents"?}]
    A price or cost given by the caller wins; an omitted one is taken from the
    store line at the moment of the sale. Store lines drained to zero are
    removed. If any line is short, no stock moves and no sale is written;
    InsufficientStock lists every short line in details["items"].

    Repeated (brand, rating) lines are allowed; each one is taken in turn, so
    together they can never exceed what the store holds.
    """
    store_id = coerce_int(store_id, "store_id")
    requested = _normalize_sale_lines(lines)
    notes = optional_text(notes, "notes", max_length=2000)
    sale_day = optional_date(sale_date, "sale_date") or today()

    def _op():
        require_store(store_id)

        sale_lines = []
        shortages = []
        for item in requested:
            try:
                snapshot = stock_service.reserve(
                    store_id, item["brand"], item["rating"], item["quantity"], prune=True
                )
            except InsufficientStock as exc:
                shortages.append(exc.details)
                continue

            price = item["unit_price_cents"]
            if price is None:
                price = snapshot.unit_price_cents
            cost = item["unit_cost_cents"]
            if cost is None:
                cost = snapshot.unit_cost_cents

            qty = item["quantity"]
            sale_lines.append(SaleLine(
                brand=snapshot.brand,
                rating=snapshot.rating,
                quantity=qty,
                unit_price_cents=price,
                unit_cost_cents=cost,
                line_subtotal_cents=qty * price,
                line_profit_cents=qty * (price - cost),
            ))

        if shortages:
            raise InsufficientStock(
                "Insufficient store stock for sale",
                details={"store_id": store_id, "items": shortages},
            )

        revenue = sum(line.line_subtotal_cents for line in sale_lines)
        cost_total = sum(line.quantity * line.unit_cost_cents for line in sale_lines)
        sale = Sale(
            store_id=store_id,
            sale_date=sale_day,
            total_revenue_cents=revenue,
            total_cost_cents=cost_total,
            profit_cents=revenue - cost_total,
            total_units=sum(line.quantity for line in sale_lines),
            notes=notes,
        )
        sale.lines.extend(sale_lines)
        db.session.add(sale)
        db.session.flush()

        append_ledger_event(
            store_id=store_id,
            event_type="sale.registered",
            event_category="sales",
            entity_type="sale",
            entity_id=sale.id,
            note=notes,
            payload={
                "total_units": sale.total_units,
                "total_revenue_cents": sale.total_revenue_cents,
                "profit_cents": sale.profit_cents,
            },
        )
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info(
        "Sale %s registered at store %s: %s units, revenue %s cents",
        sale.id, store_id, sale.total_units, sale.total_revenue_cents,
    )
    notify_change("sales", action="created", store_id=store_id, entity_id=sale.id)
    notify_change("store_stock", action="updated", store_id=store_id)
    return sale


def delete_sale(sale_id: int) -> dict:
    """
    Delete a sale and put its units back into the same store.

    The sale rows are removed with conditional deletes before any stock is
    released, so two concurrent deletes can never restore the units twice.
    A store line pruned by the sale is re-created from the sale line's
    cost/price; an existing line keeps its current values.

    Returns:
        {"sale_id", "store_id", "restored_units"}
    """
    def _op():
        sale = db.session.query(Sale).filter_by(id=sale_id).first()
        if not sale:
            raise NotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        store_id = sale.store_id
        lines = [
            (line.brand, line.rating, line.quantity, line.unit_cost_cents, line.unit_price_cents)
            for line in sale.lines
        ]

        db.session.query(SaleLine).filter(SaleLine.sale_id == sale_id).delete(synchronize_session=False)
        deleted = db.session.query(Sale).filter(Sale.id == sale_id).delete(synchronize_session=False)
        if not deleted:
            raise NotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        db.session.expunge(sale)

        for brand, rating, quantity, cost, price in lines:
            stock_service.release(
                store_id,
                brand,
                rating,
                quantity,
                unit_cost_cents=cost,
                unit_price_cents=price,
                price_policy=PRICE_KEEP,
            )

        restored = sum(quantity for _, _, quantity, _, _ in lines)
        append_ledger_event(
            store_id=store_id,
            event_type="sale.deleted",
            event_category="sales",
            entity_type="sale",
            entity_id=sale_id,
            payload={"restored_units": restored},
        )
        return {"sale_id": sale_id, "store_id": store_id, "restored_units": restored}

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Sale %s deleted; %s units restored to store %s",
        sale_id, result["restored_units"], result["store_id"],
    )
    notify_change("sales", action="deleted", store_id=result["store_id"], entity_id=sale_id)
    notify_change("store_stock", action="updated", store_id=result["store_id"])
    return result


def get_sale(sale_id: int) -> Sale:
    sale = (
        db.session.query(Sale)
        .options(selectinload(Sale.lines))
        .filter_by(id=sale_id)
        .first()
    )
    if not sale:
        raise NotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    store_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """
    Page of sales (newest sale_date first) plus totals for the whole period.

    Date bounds are inclusive. The totals ignore paging.
    """
    filters = []
    if store_id is not None:
        filters.append(Sale.store_id == store_id)
    if date_from is not None:
        filters.append(Sale.sale_date >= date_from)
    if date_to is not None:
        filters.append(Sale.sale_date <= date_to)

    query = db.session.query(Sale).filter(*filters)
    total = query.count()
    items = (
        query.options(selectinload(Sale.lines))
        .order_by(Sale.sale_date.desc(), Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    revenue, cost, profit, units = (
        db.session.query(
            func.coalesce(func.sum(Sale.total_revenue_cents), 0),
            func.coalesce(func.sum(Sale.total_cost_cents), 0),
            func.coalesce(func.sum(Sale.profit_cents), 0),
            func.coalesce(func.sum(Sale.total_units), 0),
        )
        .filter(*filters)
        .one()
    )

    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
        "totals": {
            "revenue_cents": int(revenue),
            "cost_cents": int(cost),
            "profit_cents": int(profit),
            "units": int(units),
        },
    }
