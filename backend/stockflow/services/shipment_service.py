# backend/stockflow/services/shipment_service.py
"""
Central-to-store shipment service.

WHY: Stock leaves the warehouse the moment a shipment is staged, but only
lands in the store once every line has a store price and the shipment is
confirmed. Cancelling puts the staged units back into central stock.

LIFECYCLE:
1. PENDING: Shipment created, central stock reserved
2. PRICES_ASSIGNED: Every line has a store price
3. COMPLETED: Lines released into the store (terminal)
4. CANCELLED: Lines released back into central (terminal)
"""
from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..errors import (
    AlreadyCompleted,
    AlreadyTerminal,
    IncompletePricing,
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from ..models import Shipment, ShipmentLine
from ..models.shipments import (
    SHIPMENT_STATUS_CANCELLED,
    SHIPMENT_STATUS_COMPLETED,
    SHIPMENT_STATUS_PENDING,
    SHIPMENT_STATUS_PRICES_ASSIGNED,
    SHIPMENT_TERMINAL_STATUSES,
)
from ..signals import notify_change
from ..time_utils import utcnow
from ..validation import coerce_int, optional_cents, optional_text, require_list, require_quantity
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_ledger_event
from . import stock_service
from .stock_service import CENTRAL, PRICE_KEEP, PRICE_REPLACE
from .store_service import require_store


ACTION_ASSIGN_PRICES = "assign_prices"
ACTION_CONFIRM = "confirm"
ACTION_CANCEL = "cancel"

# (status, action) -> next status. Any pair not listed is rejected.
# assign_prices lands on PENDING here; the final status is re-derived from
# the lines after the write.
TRANSITIONS = {
    (SHIPMENT_STATUS_PENDING, ACTION_ASSIGN_PRICES): SHIPMENT_STATUS_PENDING,
    (SHIPMENT_STATUS_PRICES_ASSIGNED, ACTION_ASSIGN_PRICES): SHIPMENT_STATUS_PENDING,
    (SHIPMENT_STATUS_PENDING, ACTION_CONFIRM): SHIPMENT_STATUS_COMPLETED,
    (SHIPMENT_STATUS_PRICES_ASSIGNED, ACTION_CONFIRM): SHIPMENT_STATUS_COMPLETED,
    (SHIPMENT_STATUS_PENDING, ACTION_CANCEL): SHIPMENT_STATUS_CANCELLED,
    (SHIPMENT_STATUS_PRICES_ASSIGNED, ACTION_CANCEL): SHIPMENT_STATUS_CANCELLED,
}


def next_status(status: str, action: str) -> str:
    """
    Look up the transition table.

    Raises:
        AlreadyCompleted: confirm on a COMPLETED shipment
        AlreadyTerminal: any action on a COMPLETED/CANCELLED shipment
        InvalidStateTransition: any other unlisted pair
    """
    target = TRANSITIONS.get((status, action))
    if target is not None:
        return target

    details = {"status": status, "action": action}
    if status == SHIPMENT_STATUS_COMPLETED and action == ACTION_CONFIRM:
        raise AlreadyCompleted("Shipment was already completed", details=details)
    if status in SHIPMENT_TERMINAL_STATUSES:
        raise AlreadyTerminal(f"Cannot {action} a shipment in {status} status", details=details)
    raise InvalidStateTransition(f"Cannot {action} a shipment in {status} status", details=details)


def _derive_pricing_status(lines: list[ShipmentLine]) -> str:
    if lines and all(line.store_price_cents is not None for line in lines):
        return SHIPMENT_STATUS_PRICES_ASSIGNED
    return SHIPMENT_STATUS_PENDING


def _lock_shipment(shipment_id: int) -> Shipment:
    shipment = lock_for_update(
        db.session.query(Shipment).filter_by(id=shipment_id)
    ).execution_options(populate_existing=True).first()
    if not shipment:
        raise NotFound(f"Shipment {shipment_id} not found", details={"shipment_id": shipment_id})
    return shipment


def _normalize_request_lines(lines) -> list[dict]:
    lines = require_list(lines, "lines")
    normalized = []
    seen: set[tuple[str, str]] = set()
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        brand, rating = stock_service.normalize_key(raw.get("brand"), raw.get("rating"))
        quantity = require_quantity(raw.get("quantity"), f"lines[{index}].quantity")
        key = stock_service.key_of(brand, rating)
        if key in seen:
            raise ValidationError(
                f"{brand} {rating} appears more than once on this shipment",
                details={"brand": brand, "rating": rating},
            )
        seen.add(key)
        normalized.append({"brand": brand, "rating": rating, "quantity": quantity})
    return normalized


def create_shipment(
    store_id: int,
    lines: list[dict],
    *,
    notes: str | None = None,
    created_by: str | None = None,
) -> Shipment:
    """
    Stage a shipment of central stock to a store (status: PENDING).

    Every line is reserved from central stock in one transaction. If any
    line cannot be covered, nothing is reserved and InsufficientStock lists
    every short line in details["items"].

    Args:
        store_id: Destination store
        lines: [{"brand", "rating", "quantity"}]
        notes: Optional free text
        created_by: Optional operator name

    Returns:
        Shipment: The created shipment with its lines

    Raises:
        ValidationError, NotFound, InsufficientStock
    """
    store_id = coerce_int(store_id, "store_id")
    requested = _normalize_request_lines(lines)
    notes = optional_text(notes, "notes", max_length=2000)
    created_by = optional_text(created_by, "created_by", max_length=120)

    def _op():
        require_store(store_id)

        snapshots = []
        shortages = []
        for item in requested:
            try:
                snapshots.append(
                    (item, stock_service.reserve(CENTRAL, item["brand"], item["rating"], item["quantity"]))
                )
            except InsufficientStock as exc:
                shortages.append(exc.details)

        if shortages:
            # run_in_transaction rolls back the reservations already applied
            raise InsufficientStock(
                "Insufficient central stock for shipment",
                details={"items": shortages},
            )

        shipment = Shipment(
            store_id=store_id,
            status=SHIPMENT_STATUS_PENDING,
            total_line_items=len(requested),
            total_units=sum(item["quantity"] for item in requested),
            notes=notes,
            created_by=created_by,
        )
        db.session.add(shipment)

        for item, snapshot in snapshots:
            shipment.lines.append(
                ShipmentLine(
                    brand=snapshot.brand,
                    rating=snapshot.rating,
                    quantity=item["quantity"],
                    original_cost_cents=snapshot.unit_cost_cents,
                    original_price_cents=snapshot.unit_price_cents,
                    store_price_cents=None,
                )
            )

        db.session.flush()  # Get IDs

        append_ledger_event(
            store_id=store_id,
            event_type="shipment.created",
            event_category="shipments",
            entity_type="shipment",
            entity_id=shipment.id,
            occurred_at=shipment.created_at,
            note=notes,
            payload={
                "total_line_items": shipment.total_line_items,
                "total_units": shipment.total_units,
            },
        )
        return shipment

    shipment = run_in_transaction(_op)
    current_app.logger.info(
        "Shipment %s staged for store %s (%s units)", shipment.id, store_id, shipment.total_units
    )
    notify_change("shipments", action="created", store_id=store_id, entity_id=shipment.id)
    notify_change("central_stock", action="updated")
    return shipment


def assign_prices(shipment_id: int, prices: list[dict]) -> Shipment:
    """
    Set (or clear, with None) the store price on one or more lines.

    Never changes status by itself: afterwards the status is re-derived as
    PRICES_ASSIGNED when every line is priced, PENDING otherwise.

    Args:
        shipment_id: Shipment ID
        prices: [{"line_id", "store_price_cents"}]

    Raises:
        ValidationError, NotFound, AlreadyTerminal
    """
    prices = require_list(prices, "prices")
    updates: dict[int, int | None] = {}
    for index, raw in enumerate(prices):
        if not isinstance(raw, dict):
            raise ValidationError(f"prices[{index}] must be an object")
        if raw.get("line_id") is None:
            raise ValidationError(f"prices[{index}].line_id is required")
        if "store_price_cents" not in raw:
            raise ValidationError(f"prices[{index}].store_price_cents is required")
        line_id = coerce_int(raw["line_id"], f"prices[{index}].line_id")
        updates[line_id] = optional_cents(raw["store_price_cents"], f"prices[{index}].store_price_cents")

    def _op():
        shipment = _lock_shipment(shipment_id)
        next_status(shipment.status, ACTION_ASSIGN_PRICES)

        lines_by_id = {line.id: line for line in shipment.lines}
        unknown = sorted(set(updates) - set(lines_by_id))
        if unknown:
            raise NotFound(
                "Shipment line not found on this shipment",
                details={"shipment_id": shipment_id, "line_ids": unknown},
            )

        for line_id, price in updates.items():
            lines_by_id[line_id].store_price_cents = price

        shipment.status = _derive_pricing_status(shipment.lines)
        db.session.flush()
        return shipment

    shipment = run_in_transaction(_op)
    notify_change("shipments", action="priced", store_id=shipment.store_id, entity_id=shipment.id)
    return shipment


def confirm_shipment(shipment_id: int) -> Shipment:
    """
    Confirm a shipment: release every line into the store's stock.

    The pricing check, the status change and the stock release happen in one
    transaction with the shipment row locked, so a concurrent price change
    cannot produce a partially priced COMPLETED shipment, and a second
    confirm can never apply stock twice.

    Raises:
        NotFound, IncompletePricing, AlreadyCompleted, AlreadyTerminal
    """
    def _op():
        shipment = _lock_shipment(shipment_id)
        target = next_status(shipment.status, ACTION_CONFIRM)

        unpriced = [line.id for line in shipment.lines if line.store_price_cents is None]
        if unpriced:
            raise IncompletePricing(
                f"{len(unpriced)} shipment line(s) have no store price",
                details={"shipment_id": shipment_id, "line_ids": unpriced},
            )

        # Claim the transition first; a stale version aborts before any stock moves
        shipment.status = target
        shipment.completed_at = utcnow()
        db.session.flush()

        for line in shipment.lines:
            stock_service.release(
                shipment.store_id,
                line.brand,
                line.rating,
                line.quantity,
                unit_cost_cents=line.original_cost_cents,
                unit_price_cents=line.store_price_cents,
                price_policy=PRICE_REPLACE,
            )

        append_ledger_event(
            store_id=shipment.store_id,
            event_type="shipment.completed",
            event_category="shipments",
            entity_type="shipment",
            entity_id=shipment.id,
            occurred_at=shipment.completed_at,
            payload={"total_units": shipment.total_units},
        )
        return shipment

    shipment = run_in_transaction(_op)
    current_app.logger.info("Shipment %s completed into store %s", shipment.id, shipment.store_id)
    notify_change("shipments", action="completed", store_id=shipment.store_id, entity_id=shipment.id)
    notify_change("store_stock", action="updated", store_id=shipment.store_id)
    return shipment


def cancel_shipment(shipment_id: int, reason: str | None = None) -> Shipment:
    """
    Cancel an open shipment and return its units to central stock.

    Central lines keep their current cost/price; a line removed in the
    meantime is re-created from the shipment's original snapshot.

    Raises:
        NotFound, AlreadyTerminal
    """
    reason = optional_text(reason, "reason", max_length=2000)

    def _op():
        shipment = _lock_shipment(shipment_id)
        target = next_status(shipment.status, ACTION_CANCEL)

        shipment.status = target
        shipment.cancelled_at = utcnow()
        shipment.cancellation_reason = reason
        db.session.flush()

        for line in shipment.lines:
            stock_service.release(
                CENTRAL,
                line.brand,
                line.rating,
                line.quantity,
                unit_cost_cents=line.original_cost_cents,
                unit_price_cents=line.original_price_cents,
                price_policy=PRICE_KEEP,
            )

        append_ledger_event(
            store_id=shipment.store_id,
            event_type="shipment.cancelled",
            event_category="shipments",
            entity_type="shipment",
            entity_id=shipment.id,
            occurred_at=shipment.cancelled_at,
            note=reason,
            payload={"total_units": shipment.total_units},
        )
        return shipment

    shipment = run_in_transaction(_op)
    current_app.logger.info("Shipment %s cancelled; %s units back in central", shipment.id, shipment.total_units)
    notify_change("shipments", action="cancelled", store_id=shipment.store_id, entity_id=shipment.id)
    notify_change("central_stock", action="updated")
    return shipment


def get_shipment(shipment_id: int) -> Shipment:
    shipment = (
        db.session.query(Shipment)
        .options(selectinload(Shipment.lines))
        .filter_by(id=shipment_id)
        .first()
    )
    if not shipment:
        raise NotFound(f"Shipment {shipment_id} not found", details={"shipment_id": shipment_id})
    return shipment


def list_shipments(
    *,
    store_id: int | None = None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Newest first; date bounds are inclusive and apply to created_at's day."""
    query = db.session.query(Shipment)
    if store_id is not None:
        query = query.filter(Shipment.store_id == store_id)
    if status:
        query = query.filter(Shipment.status == status.upper())
    if date_from is not None:
        query = query.filter(db.func.date(Shipment.created_at) >= date_from.isoformat())
    if date_to is not None:
        query = query.filter(db.func.date(Shipment.created_at) <= date_to.isoformat())

    total = query.count()
    items = (
        query.order_by(Shipment.created_at.desc(), Shipment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }
