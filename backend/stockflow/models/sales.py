from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Sale(db.Model):
    """
    Store sale: consumes store stock and records revenue, cost and profit.

    Totals are derived from the lines when the sale is registered
    (profit_cents == total_revenue_cents - total_cost_cents == sum of line profits).
    Deleting a sale is a compensating action that releases the units back
    into the same store.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_date", "store_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sale_date = db.Column(db.Date, nullable=False, index=True)

    # All amounts in cents
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_units = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "sale_date": to_iso_date(self.sale_date),
            "total_revenue_cents": self.total_revenue_cents,
            "total_cost_cents": self.total_cost_cents,
            "profit_cents": self.profit_cents,
            "total_units": self.total_units,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale. Immutable after creation."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    brand = db.Column(db.String(120), nullable=False)
    rating = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    # Snapshots at sale time (caller-negotiated, not necessarily the stored price)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_subtotal_cents = db.Column(db.Integer, nullable=False)
    line_profit_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "brand": self.brand,
            "rating": self.rating,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_subtotal_cents": self.line_subtotal_cents,
            "line_profit_cents": self.line_profit_cents,
        }
