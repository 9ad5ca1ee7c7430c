from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

STORE_KIND_MAIN = "MAIN"
STORE_KIND_BRANCH = "BRANCH"
STORE_KINDS = (STORE_KIND_MAIN, STORE_KIND_BRANCH)


class Store(db.Model):
    """
    Retail location holding its own stock pool.

    The central warehouse is not a Store row; its pool lives in
    CentralStockLine.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    kind = db.Column(db.String(16), nullable=False, default=STORE_KIND_BRANCH)
    manager_name = db.Column(db.String(120), nullable=True)
    city = db.Column(db.String(120), nullable=True, index=True)
    address = db.Column(db.String(255), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "manager_name": self.manager_name,
            "city": self.city,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }
