# Overview: Atomic reserve/release primitives on stock counters keyed by (location, brand, rating).

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientStock, ValidationError
from ..models import (
    CentralStockLine,
    Sale,
    SaleLine,
    Shipment,
    ShipmentLine,
    StoreStockLine,
)
from ..models.shipments import SHIPMENT_OPEN_STATUSES
from ..validation import optional_cents, require_quantity, require_text
"""
Stock ledger invariants (authoritative)

- Every quantity change goes through reserve() or release(); nothing else
  writes StockLine.quantity except the opening-balance "replace" import,
  which is itself a single conditional UPDATE.
- reserve() is one compare-and-decrement statement:
      UPDATE ... SET quantity = quantity - :qty WHERE <key> AND quantity >= :qty
  Zero rows affected means InsufficientStock. There is never a separate read
  followed by a write, so concurrent callers cannot over-draw a line.
- release() is one increment statement; a missing line is inserted inside a
  SAVEPOINT and a concurrent insert falls back to the increment.
- Keys match case-insensitively on trimmed, whitespace-collapsed brand/rating.
- Callers compose these inside concurrency.run_in_transaction(), which gives
  multi-line operations their all-or-nothing behaviour.
"""

CENTRAL = "central"

PRICE_KEEP = "keep"
PRICE_REPLACE = "replace"
PRICE_POLICIES = (PRICE_KEEP, PRICE_REPLACE)


@dataclass(frozen=True)
class StockSnapshot:
    """Line state captured by reserve(); cost/price are what callers snapshot."""
    location: object
    line_id: int
    brand: str
    rating: str
    unit_cost_cents: int
    unit_price_cents: int
    remaining: int
    pruned: bool = False


def normalize_key(brand, rating) -> tuple[str, str]:
    brand = " ".join(require_text(brand, "brand").split())
    rating = " ".join(require_text(rating, "rating", max_length=64).split())
    return brand, rating


def key_of(brand: str, rating: str) -> tuple[str, str]:
    """Case-folded key for grouping lines in Python."""
    return brand.lower(), rating.lower()


def _model_for(location):
    if location == CENTRAL:
        return CentralStockLine
    if isinstance(location, int) and not isinstance(location, bool):
        return StoreStockLine
    raise ValidationError(f"Invalid stock location: {location!r}")


def _key_criteria(model, location, brand: str, rating: str) -> list:
    criteria = [
        func.lower(model.brand) == brand.lower(),
        func.lower(model.rating) == rating.lower(),
    ]
    if model is StoreStockLine:
        criteria.append(model.store_id == location)
    return criteria


def get_line(location, brand, rating):
    """Current line for a key, refreshed from the database (None if absent)."""
    model = _model_for(location)
    brand, rating = normalize_key(brand, rating)
    return (
        db.session.query(model)
        .filter(*_key_criteria(model, location, brand, rating))
        .execution_options(populate_existing=True)
        .first()
    )


def available_quantity(location, brand, rating) -> int:
    line = get_line(location, brand, rating)
    return line.quantity if line else 0


def reserve(location, brand, rating, quantity, *, prune: bool = False) -> StockSnapshot:
    """
    Atomically take `quantity` units from a line.

    Raises InsufficientStock when the line is missing or holds fewer units.
    With prune=True a line drained to zero is deleted (store pools only
    need this; central lines are kept at zero).
    """
    model = _model_for(location)
    brand, rating = normalize_key(brand, rating)
    quantity = require_quantity(quantity)
    criteria = _key_criteria(model, location, brand, rating)

    updated = (
        db.session.query(model)
        .filter(*criteria, model.quantity >= quantity)
        .update({model.quantity: model.quantity - quantity}, synchronize_session=False)
    )
    if not updated:
        available = available_quantity(location, brand, rating)
        raise InsufficientStock(
            f"Insufficient stock for {brand} {rating}: available {available}, requested {quantity}",
            details={
                "location": location,
                "brand": brand,
                "rating": rating,
                "requested_quantity": quantity,
                "available": available,
            },
        )

    line = get_line(location, brand, rating)
    snapshot = StockSnapshot(
        location=location,
        line_id=line.id,
        brand=line.brand,
        rating=line.rating,
        unit_cost_cents=line.unit_cost_cents,
        unit_price_cents=line.unit_price_cents,
        remaining=line.quantity,
    )

    if prune and line.quantity == 0:
        deleted = (
            db.session.query(model)
            .filter(model.id == line.id, model.quantity == 0)
            .delete(synchronize_session="fetch")
        )
        if deleted:
            snapshot = replace(snapshot, pruned=True)

    return snapshot


def release(
    location,
    brand,
    rating,
    quantity,
    *,
    unit_cost_cents: int | None = None,
    unit_price_cents: int | None = None,
    price_policy: str = PRICE_KEEP,
):
    """
    Atomically add `quantity` units to a line, creating it when absent.

    A new line is seeded with the given cost/price (0 when omitted). On an
    existing line, price_policy="replace" overwrites cost/price with the
    given non-None values; "keep" leaves them untouched.
    """
    if price_policy not in PRICE_POLICIES:
        raise ValidationError(f"Unknown price policy: {price_policy}")
    model = _model_for(location)
    brand, rating = normalize_key(brand, rating)
    quantity = require_quantity(quantity)
    unit_cost_cents = optional_cents(unit_cost_cents, "unit_cost_cents")
    unit_price_cents = optional_cents(unit_price_cents, "unit_price_cents")
    criteria = _key_criteria(model, location, brand, rating)

    values = {model.quantity: model.quantity + quantity}
    if price_policy == PRICE_REPLACE:
        if unit_cost_cents is not None:
            values[model.unit_cost_cents] = unit_cost_cents
        if unit_price_cents is not None:
            values[model.unit_price_cents] = unit_price_cents

    def _increment() -> int:
        return db.session.query(model).filter(*criteria).update(values, synchronize_session=False)

    if not _increment():
        fields = dict(
            brand=brand,
            rating=rating,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents or 0,
            unit_price_cents=unit_price_cents or 0,
        )
        if model is StoreStockLine:
            fields["store_id"] = location
        try:
            with db.session.begin_nested():
                db.session.add(model(**fields))
        except IntegrityError:
            # A concurrent caller created the line first
            if not _increment():
                raise

    return get_line(location, brand, rating)


def conservation_report() -> list[dict]:
    """
    Per (brand, rating) unit totals across every pool.

    `on_hand_total` (central + stores + open shipments) plus `sold` equals
    the units ever received for that key.
    """
    totals: dict[tuple[str, str], dict] = defaultdict(
        lambda: {"central": 0, "stores": 0, "in_transit": 0, "sold": 0}
    )

    def _accumulate(rows, bucket: str) -> None:
        for brand, rating, qty in rows:
            totals[(brand, rating)][bucket] += int(qty or 0)

    _accumulate(
        db.session.query(
            func.lower(CentralStockLine.brand), func.lower(CentralStockLine.rating), func.sum(CentralStockLine.quantity)
        ).group_by(func.lower(CentralStockLine.brand), func.lower(CentralStockLine.rating)),
        "central",
    )
    _accumulate(
        db.session.query(
            func.lower(StoreStockLine.brand), func.lower(StoreStockLine.rating), func.sum(StoreStockLine.quantity)
        ).group_by(func.lower(StoreStockLine.brand), func.lower(StoreStockLine.rating)),
        "stores",
    )
    _accumulate(
        db.session.query(
            func.lower(ShipmentLine.brand), func.lower(ShipmentLine.rating), func.sum(ShipmentLine.quantity)
        )
        .join(Shipment, Shipment.id == ShipmentLine.shipment_id)
        .filter(Shipment.status.in_(SHIPMENT_OPEN_STATUSES))
        .group_by(func.lower(ShipmentLine.brand), func.lower(ShipmentLine.rating)),
        "in_transit",
    )
    _accumulate(
        db.session.query(
            func.lower(SaleLine.brand), func.lower(SaleLine.rating), func.sum(SaleLine.quantity)
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .group_by(func.lower(SaleLine.brand), func.lower(SaleLine.rating)),
        "sold",
    )

    report = []
    for (brand, rating), bucket in sorted(totals.items()):
        report.append({
            "brand": brand,
            "rating": rating,
            **bucket,
            "on_hand_total": bucket["central"] + bucket["stores"] + bucket["in_transit"],
        })
    return report
