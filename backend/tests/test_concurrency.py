# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Scripted concurrency tests for stockflow.

Run with:
    python -m pytest backend/tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest

from stockflow import create_app
from stockflow.errors import AlreadyTerminal, InsufficientStock, NotFound
from stockflow.extensions import db
from stockflow.models import CentralStockLine, Sale, StoreStockLine
from stockflow.services import inventory_service, sales_service, shipment_service, stock_service, store_service
from stockflow.services.stock_service import CENTRAL


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "LOG_LEVEL": "WARNING",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            store = store_service.create_store("Concurrency Store")
            self.store_id = store.id

            inventory_service.receive_central_stock(
                "Bosch", "75Ah", 10, unit_cost_cents=5000, unit_price_cents=8000,
            )

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, args_list):
        results = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    outcome = target(*args)
                    with lock:
                        results.append(("ok", outcome))
                except Exception as exc:
                    with lock:
                        results.append(("error", exc))
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _staged_and_priced(self, quantity):
        with self.app.app_context():
            shipment = shipment_service.create_shipment(
                self.store_id, [{"brand": "Bosch", "rating": "75Ah", "quantity": quantity}],
            )
            shipment_service.assign_prices(
                shipment.id, [{"line_id": shipment.lines[0].id, "store_price_cents": 9000}],
            )
            return shipment.id

    def test_concurrent_shipments_never_overdraw_central(self):
        def stage():
            shipment = shipment_service.create_shipment(
                self.store_id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 3}],
            )
            return shipment.id

        results = self._run_threads(stage, [()] * 8)

        ok = [r for r in results if r[0] == "ok"]
        errors = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(ok), 3)
        self.assertTrue(all(isinstance(e, InsufficientStock) for e in errors), errors)

        with self.app.app_context():
            self.assertEqual(stock_service.available_quantity(CENTRAL, "Bosch", "75Ah"), 1)
            line = db.session.query(CentralStockLine).one()
            self.assertGreaterEqual(line.quantity, 0)

    def test_double_confirm_applies_stock_once(self):
        shipment_id = self._staged_and_priced(4)

        results = self._run_threads(shipment_service.confirm_shipment, [(shipment_id,)] * 5)

        ok = [r for r in results if r[0] == "ok"]
        errors = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(ok), 1)
        self.assertTrue(all(isinstance(e, AlreadyTerminal) for e in errors), errors)

        with self.app.app_context():
            self.assertEqual(stock_service.available_quantity(self.store_id, "Bosch", "75Ah"), 4)
            self.assertEqual(stock_service.available_quantity(CENTRAL, "Bosch", "75Ah"), 6)

    def test_confirm_cancel_race_has_one_winner(self):
        shipment_id = self._staged_and_priced(4)

        results = self._run_threads(
            lambda action: action(shipment_id),
            [(shipment_service.confirm_shipment,), (shipment_service.cancel_shipment,)],
        )

        ok = [r for r in results if r[0] == "ok"]
        self.assertEqual(len(ok), 1)

        with self.app.app_context():
            central = stock_service.available_quantity(CENTRAL, "Bosch", "75Ah")
            store = stock_service.available_quantity(self.store_id, "Bosch", "75Ah")
            self.assertEqual(central + store, 10)
            status = shipment_service.get_shipment(shipment_id).status
            if status == "COMPLETED":
                self.assertEqual(store, 4)
            else:
                self.assertEqual(status, "CANCELLED")
                self.assertEqual(central, 10)

    def test_concurrent_sales_never_oversell(self):
        shipment_id = self._staged_and_priced(5)
        with self.app.app_context():
            shipment_service.confirm_shipment(shipment_id)

        def sell():
            sale = sales_service.register_sale(
                self.store_id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 2}],
            )
            return sale.id

        results = self._run_threads(sell, [()] * 6)

        ok = [r for r in results if r[0] == "ok"]
        errors = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(ok), 2)
        self.assertTrue(all(isinstance(e, InsufficientStock) for e in errors), errors)

        with self.app.app_context():
            self.assertEqual(stock_service.available_quantity(self.store_id, "Bosch", "75Ah"), 1)
            self.assertEqual(db.session.query(Sale).count(), 2)

    def test_concurrent_sale_deletes_restore_once(self):
        shipment_id = self._staged_and_priced(3)
        with self.app.app_context():
            shipment_service.confirm_shipment(shipment_id)
            sale = sales_service.register_sale(
                self.store_id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 3}],
            )
            sale_id = sale.id

        results = self._run_threads(sales_service.delete_sale, [(sale_id,)] * 4)

        ok = [r for r in results if r[0] == "ok"]
        errors = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(ok), 1)
        self.assertTrue(all(isinstance(e, NotFound) for e in errors), errors)

        with self.app.app_context():
            self.assertEqual(stock_service.available_quantity(self.store_id, "Bosch", "75Ah"), 3)

    def test_concurrent_release_creates_single_line(self):
        def receive():
            return inventory_service.receive_central_stock("Yuasa", "100Ah", 2).id

        results = self._run_threads(receive, [()] * 6)

        self.assertTrue(all(r[0] == "ok" for r in results), results)
        with self.app.app_context():
            lines = db.session.query(CentralStockLine).filter_by(brand="Yuasa").all()
            self.assertEqual(len(lines), 1)
            self.assertEqual(lines[0].quantity, 12)

    def test_return_all_racing_sale_conserves_units(self):
        shipment_id = self._staged_and_priced(6)
        with self.app.app_context():
            shipment_service.confirm_shipment(shipment_id)

        def sell():
            return sales_service.register_sale(
                self.store_id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 2}],
            ).id

        def drain():
            return inventory_service.return_all_to_central(self.store_id)

        self._run_threads(lambda fn: fn(), [(sell,), (drain,)])

        with self.app.app_context():
            sold = sum(line.quantity for sale in db.session.query(Sale).all() for line in sale.lines)
            central = stock_service.available_quantity(CENTRAL, "Bosch", "75Ah")
            store_units = sum(
                line.quantity for line in db.session.query(StoreStockLine).filter_by(store_id=self.store_id)
            )
            self.assertEqual(central + store_units + sold, 10)


if __name__ == "__main__":
    unittest.main()
