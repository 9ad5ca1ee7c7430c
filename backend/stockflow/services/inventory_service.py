# Overview: Service-layer operations for central and store inventory; encapsulates business logic and database work.

# backend/stockflow/services/inventory_service.py

from __future__ import annotations

import operator
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import NotFound, StockError, ValidationError
from ..models import CentralStockLine, StoreStockLine
from ..signals import notify_change
from ..validation import coerce_int, optional_cents, require_cents, require_list, require_quantity
from .concurrency import run_in_transaction
from .ledger_service import append_ledger_event
from . import stock_service
from .stock_service import CENTRAL, PRICE_KEEP, PRICE_REPLACE
from .store_service import require_store
"""
Inventory invariants & import semantics (authoritative)

Pools:
- Central lines are created by receiving/importing stock and persist at zero.
- Store lines are created by confirmed shipments and opening balances and are
  pruned when a sale or a return drains them.

Returns to central:
- return_all_to_central() moves each store line in its OWN transaction.
  A failure on one line leaves the others moved and is reported; re-running
  finishes the job because moved lines no longer exist in the store.
- A missing central line is created from the store line's cost/price; an
  existing central line keeps its own cost/price.

Imports (opening balances and central stock):
- analyze_*() never writes. Rows are partitioned into new / existing / skipped.
- Keys are matched case-insensitively; repeated keys within one upload are
  merged (quantities summed, the last row's cost/price wins).
- import_*() re-reads current state inside a single transaction, so the
  analysis shown to a user can be stale without corrupting anything.
- mode "sum" adds to the existing quantity; "replace" sets it with one
  conditional UPDATE. A replace that finds no row (the line was pruned
  after it was read) goes through the insert path instead.
- Rows may carry quantity 0: "replace" sets an existing line to zero and
  "sum" only refreshes its price. A zero row for a key with no line is
  skipped; empty lines are never created by an import.
"""

IMPORT_MODE_SUM = "sum"
IMPORT_MODE_REPLACE = "replace"
IMPORT_MODES = (IMPORT_MODE_SUM, IMPORT_MODE_REPLACE)

SKIP_EMPTY_NEW_KEY = "quantity 0 for a key with no stock line"


class InventoryError(StockError):
    """Raised when an inventory maintenance operation is refused."""
    status_code = 409


# ---------------------------------------------------------------------------
# Returns to central
# ---------------------------------------------------------------------------

def _move_store_line_to_central(store_id: int, line_id: int) -> dict | None:
    """Body of one return transaction. None when the line no longer holds stock."""
    line = (
        db.session.query(StoreStockLine)
        .filter(StoreStockLine.id == line_id, StoreStockLine.store_id == store_id)
        .execution_options(populate_existing=True)
        .first()
    )
    if not line or line.quantity <= 0:
        return None

    brand, rating, quantity = line.brand, line.rating, line.quantity
    cost, price = line.unit_cost_cents, line.unit_price_cents

    stock_service.reserve(store_id, brand, rating, quantity, prune=True)
    stock_service.release(
        CENTRAL,
        brand,
        rating,
        quantity,
        unit_cost_cents=cost,
        unit_price_cents=price,
        price_policy=PRICE_KEEP,
    )

    append_ledger_event(
        store_id=store_id,
        event_type="stock.returned_to_central",
        event_category="inventory",
        entity_type="store_stock_line",
        entity_id=line_id,
        payload={"brand": brand, "rating": rating, "quantity": quantity},
    )
    return {"line_id": line_id, "brand": brand, "rating": rating, "returned_units": quantity}


def return_line_to_central(store_id: int, line_id: int) -> dict:
    """Move one store line, in full, back into central stock (atomic)."""
    require_store(store_id)

    def _op():
        moved = _move_store_line_to_central(store_id, line_id)
        if moved is None:
            raise NotFound(
                "Store stock line not found",
                details={"store_id": store_id, "line_id": line_id},
            )
        return moved

    moved = run_in_transaction(_op)
    current_app.logger.info(
        "Returned %s x %s %s from store %s to central",
        moved["returned_units"], moved["brand"], moved["rating"], store_id,
    )
    notify_change("store_stock", action="returned", store_id=store_id)
    notify_change("central_stock", action="updated")
    return moved


def return_all_to_central(store_id: int) -> dict:
    """
    Drain every line of a store back into central stock.

    Best-effort across lines: each line commits on its own and failures are
    collected instead of aborting the batch.

    Returns:
        {"returned_lines", "returned_units", "errors": [{"line_id", "brand", "rating", "error"}]}
    """
    require_store(store_id)
    candidates = (
        db.session.query(StoreStockLine.id, StoreStockLine.brand, StoreStockLine.rating)
        .filter(StoreStockLine.store_id == store_id, StoreStockLine.quantity > 0)
        .order_by(StoreStockLine.brand.asc(), StoreStockLine.rating.asc())
        .all()
    )

    returned_lines = 0
    returned_units = 0
    errors = []
    for line_id, brand, rating in candidates:
        try:
            moved = run_in_transaction(lambda: _move_store_line_to_central(store_id, line_id))
        except StockError as exc:
            errors.append({"line_id": line_id, "brand": brand, "rating": rating, "error": exc.message})
            continue
        except SQLAlchemyError as exc:
            current_app.logger.exception("Return of store line %s to central failed", line_id)
            errors.append({"line_id": line_id, "brand": brand, "rating": rating, "error": str(exc)})
            continue
        if moved:
            returned_lines += 1
            returned_units += moved["returned_units"]

    current_app.logger.info(
        "Store %s returned %s lines (%s units) to central; %s failed",
        store_id, returned_lines, returned_units, len(errors),
    )
    if returned_lines:
        notify_change("store_stock", action="returned", store_id=store_id)
        notify_change("central_stock", action="updated")
    return {"returned_lines": returned_lines, "returned_units": returned_units, "errors": errors}


# ---------------------------------------------------------------------------
# Import row handling
# ---------------------------------------------------------------------------

def _parse_rows(rows, *, require_price: bool) -> tuple[list[dict], list[dict]]:
    """
    Validate and merge uploaded rows.

    Returns (items, skipped). items keep first-seen order; skipped rows carry
    their index and the reason they were rejected.
    """
    rows = require_list(rows, "rows")
    merged: dict[tuple[str, str], dict] = {}
    skipped = []
    for index, raw in enumerate(rows):
        if not isinstance(raw, dict):
            skipped.append({"index": index, "row": raw, "reason": "row must be an object"})
            continue
        try:
            brand, rating = stock_service.normalize_key(raw.get("brand"), raw.get("rating"))
            quantity = require_quantity(raw.get("quantity"), allow_zero=True)
            if require_price:
                price = require_cents(raw.get("unit_price_cents"), "unit_price_cents")
            else:
                price = optional_cents(raw.get("unit_price_cents"), "unit_price_cents")
            cost = optional_cents(raw.get("unit_cost_cents"), "unit_cost_cents")
        except ValidationError as exc:
            skipped.append({"index": index, "row": raw, "reason": exc.message})
            continue

        key = stock_service.key_of(brand, rating)
        item = merged.get(key)
        if item is None:
            merged[key] = {
                "brand": brand,
                "rating": rating,
                "quantity": quantity,
                "unit_cost_cents": cost,
                "unit_price_cents": price,
            }
            continue
        item["quantity"] += quantity
        if cost is not None:
            item["unit_cost_cents"] = cost
        if price is not None:
            item["unit_price_cents"] = price

    return list(merged.values()), skipped


def _partition(location, items: list[dict]) -> tuple[list[dict], list[dict], list[dict]]:
    new_items, existing_items, empty_new = [], [], []
    for item in items:
        line = stock_service.get_line(location, item["brand"], item["rating"])
        if line is None and not item["quantity"]:
            empty_new.append({"row": dict(item), "reason": SKIP_EMPTY_NEW_KEY})
        elif line is None:
            new_items.append(dict(item))
        else:
            existing_items.append({
                **item,
                "line_id": line.id,
                "current_quantity": line.quantity,
                "current_cost_cents": line.unit_cost_cents,
                "current_price_cents": line.unit_price_cents,
            })
    return new_items, existing_items, empty_new


def _validate_mode(mode: str | None, field: str) -> str:
    mode = (mode or IMPORT_MODE_SUM).strip().lower()
    if mode not in IMPORT_MODES:
        raise ValidationError(f"{field} must be one of {', '.join(IMPORT_MODES)}")
    return mode


def _overwrite_line(model, line_id: int, *, quantity: int | None, cost: int | None, price: int | None) -> int:
    """
    Single UPDATE used by imports; quantity None leaves the quantity alone.

    Returns the affected row count (0 when the line has been pruned since
    it was read, or when there is nothing to write).
    """
    values = {}
    if quantity is not None:
        values[model.quantity] = quantity
    if cost is not None:
        values[model.unit_cost_cents] = cost
    if price is not None:
        values[model.unit_price_cents] = price
    if not values:
        return 0
    return (
        db.session.query(model)
        .filter(model.id == line_id)
        .update(values, synchronize_session=False)
    )


def _apply_import_item(
    location,
    model,
    item: dict,
    mode: str,
    *,
    price_policy: str,
    new_line_cost: int | None,
) -> str | None:
    """
    Write one merged import row inside the caller's transaction.

    Returns "inserted", "updated", or None when the row was skipped (zero
    units for a key that has no line).
    """
    brand, rating, quantity = item["brand"], item["rating"], item["quantity"]
    cost, price = item["unit_cost_cents"], item["unit_price_cents"]
    if price_policy == PRICE_KEEP:
        new_cost, new_price = None, None
    else:
        new_cost, new_price = cost, price

    line = stock_service.get_line(location, brand, rating)
    if line is not None:
        if mode == IMPORT_MODE_REPLACE:
            if _overwrite_line(model, line.id, quantity=quantity, cost=new_cost, price=new_price):
                return "updated"
            # Pruned between the read and the UPDATE; recreate it below
        elif quantity:
            stock_service.release(
                location, brand, rating, quantity,
                unit_cost_cents=cost, unit_price_cents=price, price_policy=price_policy,
            )
            return "updated"
        else:
            _overwrite_line(model, line.id, quantity=None, cost=new_cost, price=new_price)
            return "updated"

    if not quantity:
        return None
    stock_service.release(
        location, brand, rating, quantity,
        unit_cost_cents=new_line_cost, unit_price_cents=price, price_policy=PRICE_REPLACE,
    )
    return "inserted"


def estimated_cost_cents(price_cents: int) -> int:
    """Cost seeded for an opening-balance line that arrives with a price only."""
    ratio = Decimal(str(current_app.config["OPENING_BALANCE_COST_RATIO"]))
    return int((Decimal(price_cents) * ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Store opening balances
# ---------------------------------------------------------------------------

def analyze_opening_balance(store_id: int, rows) -> dict:
    """Preview an opening-balance upload for a store. Never writes."""
    require_store(store_id)
    items, skipped = _parse_rows(rows, require_price=True)
    new_items, existing_items, empty_new = _partition(store_id, items)
    return {
        "total": len(rows),
        "new": new_items,
        "existing": existing_items,
        "skipped": skipped + empty_new,
    }


def import_opening_balance(store_id: int, rows, *, mode: str = IMPORT_MODE_SUM) -> dict:
    """
    Load a store's pre-existing stock without touching central stock.

    New keys are created (cost from unit_cost_cents, else estimated from the
    price); existing keys are incremented ("sum") or set ("replace"). The
    uploaded price always becomes the line's price.
    """
    mode = _validate_mode(mode, "mode")
    items, skipped = _parse_rows(rows, require_price=True)
    if not items:
        raise ValidationError("No valid rows to import", details={"skipped": skipped})

    def _op():
        require_store(store_id)
        inserted = updated = units = 0
        row_skips = list(skipped)
        for item in items:
            cost = item["unit_cost_cents"]
            if cost is None:
                cost = estimated_cost_cents(item["unit_price_cents"])
            outcome = _apply_import_item(
                store_id, StoreStockLine, item, mode,
                price_policy=PRICE_REPLACE, new_line_cost=cost,
            )
            if outcome is None:
                row_skips.append({"row": dict(item), "reason": SKIP_EMPTY_NEW_KEY})
                continue
            if outcome == "inserted":
                inserted += 1
            else:
                updated += 1
            units += item["quantity"]

        append_ledger_event(
            store_id=store_id,
            event_type="stock.opening_balance_imported",
            event_category="inventory",
            entity_type="store",
            entity_id=store_id,
            payload={"mode": mode, "inserted": inserted, "updated": updated, "units": units},
        )
        return {"inserted": inserted, "updated": updated, "units": units, "skipped": row_skips}

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Opening balance for store %s (%s): %s new, %s updated, %s skipped",
        store_id, mode, result["inserted"], result["updated"], len(result["skipped"]),
    )
    notify_change("store_stock", action="imported", store_id=store_id)
    return result


# ---------------------------------------------------------------------------
# Central stock maintenance
# ---------------------------------------------------------------------------

def receive_central_stock(
    brand,
    rating,
    quantity,
    *,
    unit_cost_cents: int | None = None,
    unit_price_cents: int | None = None,
) -> CentralStockLine:
    """Purchase: add units to central stock; given cost/price replace the line's."""
    brand, rating = stock_service.normalize_key(brand, rating)
    quantity = require_quantity(quantity)
    unit_cost_cents = optional_cents(unit_cost_cents, "unit_cost_cents")
    unit_price_cents = optional_cents(unit_price_cents, "unit_price_cents")

    def _op():
        line = stock_service.release(
            CENTRAL, brand, rating, quantity,
            unit_cost_cents=unit_cost_cents,
            unit_price_cents=unit_price_cents,
            price_policy=PRICE_REPLACE,
        )
        append_ledger_event(
            event_type="stock.received",
            event_category="inventory",
            entity_type="central_stock_line",
            entity_id=line.id,
            payload={"brand": line.brand, "rating": line.rating, "quantity": quantity},
        )
        return line

    line = run_in_transaction(_op)
    current_app.logger.info("Received %s x %s %s into central", quantity, brand, rating)
    notify_change("central_stock", action="received", entity_id=line.id)
    return line


def _update_line_prices(model, criteria: list, *, unit_cost_cents, unit_price_cents, not_found: dict):
    unit_cost_cents = optional_cents(unit_cost_cents, "unit_cost_cents")
    unit_price_cents = optional_cents(unit_price_cents, "unit_price_cents")
    values = {}
    if unit_cost_cents is not None:
        values[model.unit_cost_cents] = unit_cost_cents
    if unit_price_cents is not None:
        values[model.unit_price_cents] = unit_price_cents
    if not values:
        raise ValidationError("unit_cost_cents or unit_price_cents is required")

    def _op():
        updated = db.session.query(model).filter(*criteria).update(values, synchronize_session=False)
        if not updated:
            raise NotFound("Stock line not found", details=not_found)
        return (
            db.session.query(model)
            .filter(*criteria)
            .execution_options(populate_existing=True)
            .one()
        )

    return run_in_transaction(_op)


def update_central_prices(
    line_id: int,
    *,
    unit_cost_cents: int | None = None,
    unit_price_cents: int | None = None,
) -> CentralStockLine:
    line = _update_line_prices(
        CentralStockLine,
        [CentralStockLine.id == line_id],
        unit_cost_cents=unit_cost_cents,
        unit_price_cents=unit_price_cents,
        not_found={"line_id": line_id},
    )
    notify_change("central_stock", action="updated", entity_id=line_id)
    return line


def update_store_line_prices(
    store_id: int,
    line_id: int,
    *,
    unit_cost_cents: int | None = None,
    unit_price_cents: int | None = None,
) -> StoreStockLine:
    line = _update_line_prices(
        StoreStockLine,
        [StoreStockLine.id == line_id, StoreStockLine.store_id == store_id],
        unit_cost_cents=unit_cost_cents,
        unit_price_cents=unit_price_cents,
        not_found={"store_id": store_id, "line_id": line_id},
    )
    notify_change("store_stock", action="updated", store_id=store_id, entity_id=line_id)
    return line


def delete_central_line(line_id: int) -> None:
    """Remove a central line. Only empty lines can go, so no units are destroyed."""
    def _op():
        deleted = (
            db.session.query(CentralStockLine)
            .filter(CentralStockLine.id == line_id, CentralStockLine.quantity == 0)
            .delete(synchronize_session="fetch")
        )
        if deleted:
            append_ledger_event(
                event_type="stock.line_deleted",
                event_category="inventory",
                entity_type="central_stock_line",
                entity_id=line_id,
            )
            return
        line = db.session.get(CentralStockLine, line_id)
        if line is None:
            raise NotFound("Stock line not found", details={"line_id": line_id})
        raise InventoryError(
            "Only empty stock lines can be deleted",
            details={"line_id": line_id, "quantity": line.quantity},
        )

    run_in_transaction(_op)
    notify_change("central_stock", action="deleted", entity_id=line_id)


def analyze_central_import(rows) -> dict:
    """Preview a central stock upload. Never writes."""
    items, skipped = _parse_rows(rows, require_price=False)
    new_items, existing_items, empty_new = _partition(CENTRAL, items)
    return {
        "total": len(rows),
        "new": new_items,
        "existing": existing_items,
        "skipped": skipped + empty_new,
    }


def import_central_stock(rows, *, update_mode: str = IMPORT_MODE_SUM, update_prices: bool = False) -> dict:
    """
    Bulk load central stock.

    New keys are created with the uploaded cost/price (0 when absent).
    Existing keys are incremented ("sum") or set ("replace"); their cost and
    price change only with update_prices.
    """
    update_mode = _validate_mode(update_mode, "update_mode")
    items, skipped = _parse_rows(rows, require_price=False)
    if not items:
        raise ValidationError("No valid rows to import", details={"skipped": skipped})

    def _op():
        inserted = updated = units = 0
        row_skips = list(skipped)
        for item in items:
            outcome = _apply_import_item(
                CENTRAL, CentralStockLine, item, update_mode,
                price_policy=PRICE_REPLACE if update_prices else PRICE_KEEP,
                new_line_cost=item["unit_cost_cents"],
            )
            if outcome is None:
                row_skips.append({"row": dict(item), "reason": SKIP_EMPTY_NEW_KEY})
                continue
            if outcome == "inserted":
                inserted += 1
            else:
                updated += 1
            units += item["quantity"]

        append_ledger_event(
            event_type="stock.central_imported",
            event_category="inventory",
            entity_type="central_stock",
            entity_id=0,
            payload={
                "update_mode": update_mode,
                "update_prices": update_prices,
                "inserted": inserted,
                "updated": updated,
                "units": units,
            },
        )
        return {"inserted": inserted, "updated": updated, "units": units, "skipped": row_skips}

    result = run_in_transaction(_op)
    current_app.logger.info(
        "Central import (%s): %s new, %s updated, %s skipped",
        update_mode, result["inserted"], result["updated"], len(result["skipped"]),
    )
    notify_change("central_stock", action="imported")
    return result


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

QUANTITY_OPS = {
    "eq": operator.eq,
    "gt": operator.gt,
    "lt": operator.lt,
    "gte": operator.ge,
    "lte": operator.le,
}


def _quantity_filter(model, quantity_op: str | None, quantity_value):
    """Comparator filter on quantity, e.g. ("lt", 5). None when not requested."""
    if not quantity_op or quantity_value is None:
        return None
    compare = QUANTITY_OPS.get(quantity_op.strip().lower())
    if compare is None:
        raise ValidationError(f"quantity_op must be one of {', '.join(QUANTITY_OPS)}")
    return compare(model.quantity, coerce_int(quantity_value, "quantity_value"))


def _stock_listing(
    model,
    base_filters: list,
    *,
    search,
    brand,
    rating,
    min_quantity,
    page,
    limit,
    quantity_op=None,
    quantity_value=None,
) -> dict:
    filters = list(base_filters)
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(or_(func.lower(model.brand).like(pattern), func.lower(model.rating).like(pattern)))
    if brand:
        filters.append(func.lower(model.brand) == brand.strip().lower())
    if rating:
        filters.append(func.lower(model.rating) == rating.strip().lower())
    if min_quantity is not None:
        filters.append(model.quantity >= coerce_int(min_quantity, "min_quantity"))
    comparison = _quantity_filter(model, quantity_op, quantity_value)
    if comparison is not None:
        filters.append(comparison)

    query = db.session.query(model).filter(*filters)
    total = query.count()
    items = (
        query.order_by(model.brand.asc(), model.rating.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    lines, units, cost_value, sale_value = (
        db.session.query(
            func.count(model.id),
            func.coalesce(func.sum(model.quantity), 0),
            func.coalesce(func.sum(model.quantity * model.unit_cost_cents), 0),
            func.coalesce(func.sum(model.quantity * model.unit_price_cents), 0),
        )
        .filter(*filters)
        .one()
    )

    brands = [
        row[0] for row in
        db.session.query(model.brand).filter(*base_filters).distinct().order_by(model.brand.asc())
    ]
    rating_query = db.session.query(model.rating).filter(*base_filters)
    if brand:
        rating_query = rating_query.filter(func.lower(model.brand) == brand.strip().lower())
    ratings = [row[0] for row in rating_query.distinct().order_by(model.rating.asc())]

    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
        "stats": {
            "lines": int(lines),
            "units": int(units),
            "cost_value_cents": int(cost_value),
            "sale_value_cents": int(sale_value),
        },
        "brands": brands,
        "ratings": ratings,
    }


def list_central_stock(
    *,
    search: str | None = None,
    brand: str | None = None,
    rating: str | None = None,
    min_quantity: int | None = None,
    quantity_op: str | None = None,
    quantity_value: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Central lines ordered by brand/rating, with stats over the filtered set."""
    return _stock_listing(
        CentralStockLine, [],
        search=search, brand=brand, rating=rating, min_quantity=min_quantity,
        quantity_op=quantity_op, quantity_value=quantity_value,
        page=page, limit=limit,
    )


def list_store_stock(
    store_id: int,
    *,
    search: str | None = None,
    brand: str | None = None,
    rating: str | None = None,
    min_quantity: int | None = None,
    quantity_op: str | None = None,
    quantity_value: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    require_store(store_id)
    return _stock_listing(
        StoreStockLine, [StoreStockLine.store_id == store_id],
        search=search, brand=brand, rating=rating, min_quantity=min_quantity,
        quantity_op=quantity_op, quantity_value=quantity_value,
        page=page, limit=limit,
    )


def low_stock(threshold: int | None = None, *, store_id: int | None = None) -> dict:
    """
    Lines holding fewer than `threshold` units, emptiest first.

    Reads central stock unless store_id is given. The threshold defaults to
    LOW_STOCK_THRESHOLD. Empty lines count as out of stock, the rest as low.
    """
    if threshold is None:
        threshold = current_app.config["LOW_STOCK_THRESHOLD"]
    threshold = coerce_int(threshold, "threshold")
    if threshold <= 0:
        raise ValidationError("threshold must be positive", details={"threshold": threshold})

    if store_id is None:
        model, filters = CentralStockLine, []
    else:
        require_store(store_id)
        model, filters = StoreStockLine, [StoreStockLine.store_id == store_id]

    items = (
        db.session.query(model)
        .filter(*filters, model.quantity < threshold)
        .order_by(model.quantity.asc(), model.brand.asc(), model.rating.asc())
        .all()
    )
    out_of_stock = sum(1 for line in items if line.quantity == 0)
    return {
        "threshold": threshold,
        "store_id": store_id,
        "total": len(items),
        "out_of_stock": out_of_stock,
        "low": len(items) - out_of_stock,
        "items": items,
    }
