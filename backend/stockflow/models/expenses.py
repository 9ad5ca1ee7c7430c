from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Expense(db.Model):
    """
    Store operating expense. Append/delete-only; no stock interaction.

    category is free text; previously used categories are offered back as
    suggestions.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_store_date", "store_id", "expense_date"),
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    category = db.Column(db.String(120), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    expense_date = db.Column(db.Date, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("expenses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "category": self.category,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "expense_date": to_iso_date(self.expense_date),
            "created_at": to_utc_z(self.created_at),
        }
