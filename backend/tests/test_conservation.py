# Overview: Seeded random sequences of stock operations, checking unit conservation after every step.

import random

import pytest

from stockflow.errors import StockError
from stockflow.models import Sale, Shipment, StoreStockLine
from stockflow.models.shipments import SHIPMENT_OPEN_STATUSES
from stockflow.services import inventory_service, sales_service, shipment_service, stock_service

KEYS = [("Bosch", "75Ah"), ("Varta", "60Ah"), ("Exide", "45Ah")]


class OperationMix:
    """Picks a random operation and applies it; domain refusals are part of the mix."""

    def __init__(self, rng, db_session, stores, received):
        self.rng = rng
        self.session = db_session
        self.stores = stores
        self.received = received

    def _open_shipments(self):
        return (
            self.session.query(Shipment)
            .filter(Shipment.status.in_(SHIPMENT_OPEN_STATUSES))
            .order_by(Shipment.id)
            .all()
        )

    def create_shipment(self):
        brand, rating = self.rng.choice(KEYS)
        shipment_service.create_shipment(
            self.rng.choice(self.stores).id,
            [{"brand": brand, "rating": rating, "quantity": self.rng.randint(1, 4)}],
        )

    def assign_prices(self):
        open_shipments = self._open_shipments()
        if not open_shipments:
            return
        shipment = self.rng.choice(open_shipments)
        shipment_service.assign_prices(
            shipment.id,
            [{"line_id": line.id, "store_price_cents": self.rng.choice([None, 9000, 9900])} for line in shipment.lines],
        )

    def confirm(self):
        open_shipments = self._open_shipments()
        if open_shipments:
            shipment_service.confirm_shipment(self.rng.choice(open_shipments).id)

    def cancel(self):
        open_shipments = self._open_shipments()
        if open_shipments:
            shipment_service.cancel_shipment(self.rng.choice(open_shipments).id, reason="random")

    def sell(self):
        store = self.rng.choice(self.stores)
        lines = self.session.query(StoreStockLine).filter_by(store_id=store.id).order_by(StoreStockLine.id).all()
        brand, rating = self.rng.choice([(line.brand, line.rating) for line in lines] or KEYS)
        sales_service.register_sale(
            store.id, [{"brand": brand, "rating": rating, "quantity": self.rng.randint(1, 3)}]
        )

    def delete_sale(self):
        sale_ids = [row[0] for row in self.session.query(Sale.id).order_by(Sale.id)]
        if sale_ids:
            sales_service.delete_sale(self.rng.choice(sale_ids))

    def return_all(self):
        inventory_service.return_all_to_central(self.rng.choice(self.stores).id)

    def return_line(self):
        lines = self.session.query(StoreStockLine).order_by(StoreStockLine.id).all()
        if lines:
            line = self.rng.choice(lines)
            inventory_service.return_line_to_central(line.store_id, line.id)

    def receive(self):
        brand, rating = self.rng.choice(KEYS)
        quantity = self.rng.randint(1, 5)
        inventory_service.receive_central_stock(brand, rating, quantity)
        self.received[f"{brand} {rating}".lower()] += quantity

    OPERATIONS = (
        "create_shipment", "create_shipment", "assign_prices", "assign_prices", "confirm",
        "cancel", "sell", "sell", "delete_sale", "return_all", "return_line", "receive",
    )

    def step(self) -> str:
        name = self.rng.choice(self.OPERATIONS)
        try:
            getattr(self, name)()
        except StockError:
            self.session.rollback()
        return name


@pytest.mark.parametrize("seed", [7, 21, 1234, 90210])
def test_random_operation_sequence_conserves_units(
    db_session, central_seed, store_a, store_b, assert_conserved, seed
):
    received = dict(central_seed)
    mix = OperationMix(random.Random(seed), db_session, [store_a, store_b], received)

    for index in range(60):
        name = mix.step()
        db_session.expire_all()
        try:
            assert_conserved(received)
        except AssertionError as exc:
            raise AssertionError(f"seed {seed}, step {index} ({name}): {exc}") from exc

    for row in stock_service.conservation_report():
        assert row["central"] >= 0 and row["stores"] >= 0 and row["in_transit"] >= 0
