from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

SHIPMENT_STATUS_PENDING = "PENDING"
SHIPMENT_STATUS_PRICES_ASSIGNED = "PRICES_ASSIGNED"
SHIPMENT_STATUS_COMPLETED = "COMPLETED"
SHIPMENT_STATUS_CANCELLED = "CANCELLED"

SHIPMENT_OPEN_STATUSES = (SHIPMENT_STATUS_PENDING, SHIPMENT_STATUS_PRICES_ASSIGNED)
SHIPMENT_TERMINAL_STATUSES = (SHIPMENT_STATUS_COMPLETED, SHIPMENT_STATUS_CANCELLED)


class Shipment(db.Model):
    """
    Staged transfer of stock from the central warehouse to one store.

    LIFECYCLE:
    1. PENDING: Created; central stock already reserved
    2. PRICES_ASSIGNED: Every line carries a store price (derived, re-checked on confirm)
    3. COMPLETED: Lines released into the store's stock
    4. CANCELLED: Lines released back into central stock

    COMPLETED and CANCELLED are terminal. Shipments and their lines are kept
    as an audit trail and never purged.

    total_line_items / total_units are derived from the lines at creation.
    """
    __tablename__ = "shipments"
    __table_args__ = (
        db.Index("ix_shipments_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SHIPMENT_STATUS_PENDING, index=True)

    total_line_items = db.Column(db.Integer, nullable=False, default=0)
    total_units = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("shipments", lazy=True))
    lines = db.relationship(
        "ShipmentLine",
        back_populates="shipment",
        order_by="ShipmentLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in SHIPMENT_TERMINAL_STATUSES

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "status": self.status,
            "total_line_items": self.total_line_items,
            "total_units": self.total_units,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class ShipmentLine(db.Model):
    """
    One (brand, rating) quantity staged on a shipment.

    quantity and the original_* snapshots are fixed at creation; the units
    already left central stock, so they are never re-validated against it.
    Only store_price_cents changes afterwards.
    """
    __tablename__ = "shipment_lines"
    __table_args__ = (
        db.UniqueConstraint("shipment_id", "brand", "rating", name="uq_shipment_lines_shipment_key"),
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey("shipments.id"), nullable=False, index=True)

    brand = db.Column(db.String(120), nullable=False)
    rating = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    original_cost_cents = db.Column(db.Integer, nullable=False)
    original_price_cents = db.Column(db.Integer, nullable=False)
    store_price_cents = db.Column(db.Integer, nullable=True)

    shipment = db.relationship("Shipment", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shipment_id": self.shipment_id,
            "brand": self.brand,
            "rating": self.rating,
            "quantity": self.quantity,
            "original_cost_cents": self.original_cost_cents,
            "original_price_cents": self.original_price_cents,
            "store_price_cents": self.store_price_cents,
        }
