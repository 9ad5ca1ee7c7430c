from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockLineMixin:
    """
    Quantity counter for one (brand, rating) at one location.

    INVARIANT: quantity is never negative. The CHECK constraint is the last
    line of defence; stock_service only ever changes quantity through
    conditional UPDATE statements.

    unit_cost_cents / unit_price_cents are informational except where a
    caller snapshots them (shipments, sales).
    """
    id = db.Column(db.Integer, primary_key=True)
    brand = db.Column(db.String(120), nullable=False)
    rating = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "brand": self.brand,
            "rating": self.rating,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "unit_price_cents": self.unit_price_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CentralStockLine(StockLineMixin, db.Model):
    """Warehouse pool: source for shipments, destination for returns."""
    __tablename__ = "central_stock_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="quantity_non_negative"),
        db.CheckConstraint("unit_cost_cents >= 0", name="cost_non_negative"),
        db.CheckConstraint("unit_price_cents >= 0", name="price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<CentralStockLine {self.brand!r}/{self.rating!r} qty={self.quantity}>"


class StoreStockLine(StockLineMixin, db.Model):
    """Per-store pool: fed by confirmed shipments and opening balances."""
    __tablename__ = "store_stock_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="quantity_non_negative"),
        db.CheckConstraint("unit_cost_cents >= 0", name="cost_non_negative"),
        db.CheckConstraint("unit_price_cents >= 0", name="price_non_negative"),
        db.Index("ix_store_stock_store_brand", "store_id", "brand"),
        {"sqlite_autoincrement": True},
    )

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    store = db.relationship("Store", backref=db.backref("stock_lines", lazy=True))

    def __repr__(self) -> str:
        return f"<StoreStockLine store={self.store_id} {self.brand!r}/{self.rating!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["store_id"] = self.store_id
        return data


# Keys are matched case-insensitively, so uniqueness has to be too.
db.Index(
    "uq_central_stock_key",
    db.func.lower(CentralStockLine.brand),
    db.func.lower(CentralStockLine.rating),
    unique=True,
)
db.Index(
    "uq_store_stock_key",
    StoreStockLine.store_id,
    db.func.lower(StoreStockLine.brand),
    db.func.lower(StoreStockLine.rating),
    unique=True,
)
