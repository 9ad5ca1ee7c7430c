from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import NotFound, StockError, ValidationError
from ..models import Expense, Sale, Shipment, Store, StoreStockLine
from ..models.shipments import SHIPMENT_OPEN_STATUSES
from ..models.stores import STORE_KIND_BRANCH, STORE_KIND_MAIN, STORE_KINDS
from ..signals import notify_change
from ..validation import optional_text, require_text
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_ledger_event


class StoreError(StockError):
    """Raised when store operations fail."""
    status_code = 409


_UNSET = object()


def _validate_kind(kind: str | None) -> str:
    kind = (kind or STORE_KIND_BRANCH).strip().upper()
    if kind not in STORE_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(STORE_KINDS)}")
    return kind


def _ensure_unique_name(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Store).filter(func.lower(Store.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Store.id != exclude_id)
    if query.first():
        raise StoreError(f"A store named {name!r} already exists")


def create_store(
    name: str,
    *,
    kind: str | None = None,
    manager_name: str | None = None,
    city: str | None = None,
    address: str | None = None,
) -> Store:
    name = require_text(name, "name")
    kind = _validate_kind(kind)

    def _op():
        _ensure_unique_name(name)
        store = Store(
            name=name,
            kind=kind,
            manager_name=optional_text(manager_name, "manager_name", max_length=120),
            city=optional_text(city, "city", max_length=120),
            address=optional_text(address, "address"),
        )
        db.session.add(store)
        db.session.flush()

        append_ledger_event(
            store_id=store.id,
            event_type="store.created",
            event_category="stores",
            entity_type="store",
            entity_id=store.id,
            note=name,
        )
        return store

    store = run_in_transaction(_op)
    notify_change("stores", action="created", store_id=store.id, entity_id=store.id)
    return store


def update_store(
    store_id: int,
    *,
    name=_UNSET,
    kind=_UNSET,
    manager_name=_UNSET,
    city=_UNSET,
    address=_UNSET,
) -> Store:
    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFound("Store not found", details={"store_id": store_id})

        if name is not _UNSET:
            new_name = require_text(name, "name")
            _ensure_unique_name(new_name, exclude_id=store_id)
            store.name = new_name
        if kind is not _UNSET:
            store.kind = _validate_kind(kind)
        if manager_name is not _UNSET:
            store.manager_name = optional_text(manager_name, "manager_name", max_length=120)
        if city is not _UNSET:
            store.city = optional_text(city, "city", max_length=120)
        if address is not _UNSET:
            store.address = optional_text(address, "address")

        return store

    store = run_in_transaction(_op)
    notify_change("stores", action="updated", store_id=store.id, entity_id=store.id)
    return store


def delete_store(store_id: int) -> None:
    """
    Delete a store that holds no stock and has no open shipments.

    Stock must be returned to central (or sold) first so no units vanish.
    Stores with recorded shipments, sales or expenses are kept for their
    history.
    """
    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFound("Store not found", details={"store_id": store_id})

        units = (
            db.session.query(func.coalesce(func.sum(StoreStockLine.quantity), 0))
            .filter(StoreStockLine.store_id == store_id)
            .scalar()
        )
        if units:
            raise StoreError(
                "Store still holds stock; return it to central first",
                details={"store_id": store_id, "units": int(units)},
            )

        open_shipments = (
            db.session.query(Shipment.id)
            .filter(Shipment.store_id == store_id, Shipment.status.in_(SHIPMENT_OPEN_STATUSES))
            .count()
        )
        if open_shipments:
            raise StoreError(
                "Store has open shipments; confirm or cancel them first",
                details={"store_id": store_id, "open_shipments": open_shipments},
            )

        history = {
            "shipments": db.session.query(Shipment.id).filter_by(store_id=store_id).count(),
            "sales": db.session.query(Sale.id).filter_by(store_id=store_id).count(),
            "expenses": db.session.query(Expense.id).filter_by(store_id=store_id).count(),
        }
        if any(history.values()):
            raise StoreError("Store has recorded history and cannot be deleted", details=history)

        db.session.query(StoreStockLine).filter_by(store_id=store_id).delete(synchronize_session=False)
        db.session.delete(store)

        append_ledger_event(
            store_id=store_id,
            event_type="store.deleted",
            event_category="stores",
            entity_type="store",
            entity_id=store_id,
        )

    run_in_transaction(_op)
    notify_change("stores", action="deleted", store_id=store_id, entity_id=store_id)


def get_store(store_id: int) -> Store | None:
    return db.session.get(Store, store_id)


def require_store(store_id: int) -> Store:
    store = get_store(store_id)
    if not store:
        raise NotFound("Store not found", details={"store_id": store_id})
    return store


def list_stores(*, kind: str | None = None, city: str | None = None) -> list[Store]:
    query = db.session.query(Store)
    if kind:
        query = query.filter(Store.kind == kind.upper())
    if city:
        query = query.filter(Store.city == city)
    return query.order_by(Store.name.asc()).all()


def page_stores(
    *,
    kind: str | None = None,
    city: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """
    One page of stores plus the values the list filters need.

    stats and cities cover every store, not just the filtered page, so the
    filter dropdowns never lose options.
    """
    query = db.session.query(Store)
    if kind:
        query = query.filter(Store.kind == kind.strip().upper())
    if city:
        query = query.filter(Store.city == city)

    total = query.count()
    items = (
        query.order_by(Store.name.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    by_kind = dict(
        db.session.query(Store.kind, func.count(Store.id)).group_by(Store.kind).all()
    )
    cities = [
        row[0] for row in
        db.session.query(Store.city).filter(Store.city.isnot(None)).distinct().order_by(Store.city.asc())
    ]
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
        "stats": {
            "stores": sum(by_kind.values()),
            "main": by_kind.get(STORE_KIND_MAIN, 0),
            "branch": by_kind.get(STORE_KIND_BRANCH, 0),
        },
        "cities": cities,
    }
