# Overview: Pytest coverage for store sales and their compensating delete.

from datetime import date

import pytest

from stockflow.errors import InsufficientStock, NotFound, ValidationError
from stockflow.models import Sale, SaleLine, StoreStockLine
from stockflow.services import sales_service, stock_service


@pytest.fixture
def stocked_store(db_session, store_a):
    """Store A holding Bosch 75Ah x5 (cost 5000, price 9000) and Varta 60Ah x2 (4000/7000)."""
    stock_service.release(store_a.id, "Bosch", "75Ah", 5, unit_cost_cents=5000, unit_price_cents=9000)
    stock_service.release(store_a.id, "Varta", "60Ah", 2, unit_cost_cents=4000, unit_price_cents=7000)
    db_session.commit()
    return store_a


class TestRegisterSale:

    def test_sale_uses_store_snapshot_when_price_omitted(self, db_session, stocked_store, stock_qty):
        sale = sales_service.register_sale(
            stocked_store.id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 2}]
        )

        assert sale.total_units == 2
        assert sale.total_revenue_cents == 18000
        assert sale.total_cost_cents == 10000
        assert sale.profit_cents == 8000
        line = sale.lines[0]
        assert line.unit_price_cents == 9000
        assert line.line_subtotal_cents == 18000
        assert line.line_profit_cents == 8000
        assert stock_qty(stocked_store.id, "Bosch", "75Ah") == 3

    def test_caller_price_and_cost_win(self, db_session, stocked_store):
        sale = sales_service.register_sale(
            stocked_store.id,
            [{"brand": "Bosch", "rating": "75Ah", "quantity": 1, "unit_price_cents": 8500, "unit_cost_cents": 4800}],
        )

        assert sale.total_revenue_cents == 8500
        assert sale.total_cost_cents == 4800
        assert sale.profit_cents == 3700

    def test_profit_equals_sum_of_line_profits(self, db_session, stocked_store):
        sale = sales_service.register_sale(
            stocked_store.id,
            [
                {"brand": "Bosch", "rating": "75Ah", "quantity": 2, "unit_price_cents": 9500},
                {"brand": "Varta", "rating": "60Ah", "quantity": 1},
            ],
        )

        assert sale.profit_cents == sum(line.line_profit_cents for line in sale.lines)
        assert sale.profit_cents == sale.total_revenue_cents - sale.total_cost_cents

    def test_draining_a_line_prunes_it(self, db_session, stocked_store):
        sales_service.register_sale(
            stocked_store.id, [{"brand": "Varta", "rating": "60Ah", "quantity": 2}]
        )

        keys = {line.brand for line in db_session.query(StoreStockLine).filter_by(store_id=stocked_store.id)}
        assert keys == {"Bosch"}

    def test_sale_exceeding_stock_changes_nothing(self, db_session, stocked_store, stock_qty):
        """Scenario: selling more than the store holds writes no sale and moves no stock."""
        with pytest.raises(InsufficientStock) as excinfo:
            sales_service.register_sale(
                stocked_store.id,
                [
                    {"brand": "Bosch", "rating": "75Ah", "quantity": 1},
                    {"brand": "Varta", "rating": "60Ah", "quantity": 3},
                ],
            )

        assert excinfo.value.details["items"][0]["available"] == 2
        assert stock_qty(stocked_store.id, "Bosch", "75Ah") == 5
        assert stock_qty(stocked_store.id, "Varta", "60Ah") == 2
        assert db_session.query(Sale).count() == 0

    def test_repeated_lines_cannot_exceed_stock_together(self, db_session, stocked_store, stock_qty):
        with pytest.raises(InsufficientStock):
            sales_service.register_sale(
                stocked_store.id,
                [
                    {"brand": "Varta", "rating": "60Ah", "quantity": 2},
                    {"brand": "varta", "rating": "60ah", "quantity": 1},
                ],
            )
        assert stock_qty(stocked_store.id, "Varta", "60Ah") == 2

    def test_sale_in_other_store_does_not_touch_stock(self, db_session, stocked_store, store_b):
        with pytest.raises(InsufficientStock):
            sales_service.register_sale(store_b.id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}])

    def test_sale_date_defaults_to_today_and_accepts_iso(self, db_session, stocked_store):
        sale = sales_service.register_sale(
            stocked_store.id,
            [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}],
            sale_date="2026-03-14",
        )
        assert sale.sale_date == date(2026, 3, 14)

    @pytest.mark.parametrize("lines", [
        [],
        [{"brand": "Bosch", "rating": "75Ah", "quantity": 0}],
        [{"brand": "", "rating": "75Ah", "quantity": 1}],
        [{"brand": "Bosch", "rating": "75Ah", "quantity": 1, "unit_price_cents": -1}],
        ["Bosch"],
    ])
    def test_invalid_lines_rejected(self, db_session, stocked_store, lines):
        with pytest.raises(ValidationError):
            sales_service.register_sale(stocked_store.id, lines)

    def test_unknown_store(self, db_session):
        with pytest.raises(NotFound):
            sales_service.register_sale(777, [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}])


class TestDeleteSale:

    def test_delete_restores_quantities(self, db_session, stocked_store, stock_qty):
        sale = sales_service.register_sale(
            stocked_store.id,
            [
                {"brand": "Bosch", "rating": "75Ah", "quantity": 3},
                {"brand": "Varta", "rating": "60Ah", "quantity": 1},
            ],
        )

        result = sales_service.delete_sale(sale.id)

        assert result["restored_units"] == 4
        assert stock_qty(stocked_store.id, "Bosch", "75Ah") == 5
        assert stock_qty(stocked_store.id, "Varta", "60Ah") == 2
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0

    def test_delete_recreates_pruned_line_from_sale_snapshot(self, db_session, stocked_store):
        sale = sales_service.register_sale(
            stocked_store.id,
            [{"brand": "Varta", "rating": "60Ah", "quantity": 2, "unit_price_cents": 7500}],
        )
        sales_service.delete_sale(sale.id)

        line = db_session.query(StoreStockLine).filter_by(store_id=stocked_store.id, brand="Varta").one()
        assert line.quantity == 2
        assert line.unit_cost_cents == 4000
        assert line.unit_price_cents == 7500

    def test_delete_keeps_existing_line_price(self, db_session, stocked_store):
        sale = sales_service.register_sale(
            stocked_store.id,
            [{"brand": "Bosch", "rating": "75Ah", "quantity": 1, "unit_price_cents": 100}],
        )
        sales_service.delete_sale(sale.id)

        line = db_session.query(StoreStockLine).filter_by(store_id=stocked_store.id, brand="Bosch").one()
        assert line.unit_price_cents == 9000

    def test_delete_twice_is_not_found(self, db_session, stocked_store, stock_qty):
        sale = sales_service.register_sale(stocked_store.id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}])
        sale_id = sale.id
        sales_service.delete_sale(sale_id)

        with pytest.raises(NotFound):
            sales_service.delete_sale(sale_id)
        assert stock_qty(stocked_store.id, "Bosch", "75Ah") == 5


class TestListSales:

    def test_period_totals_ignore_paging(self, db_session, stocked_store):
        for day in ("2026-01-05", "2026-01-10", "2026-02-01"):
            sales_service.register_sale(
                stocked_store.id,
                [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}],
                sale_date=day,
            )

        result = sales_service.list_sales(
            store_id=stocked_store.id,
            date_from=date(2026, 1, 1),
            date_to=date(2026, 1, 31),
            page=1,
            limit=1,
        )

        assert result["total"] == 2
        assert len(result["items"]) == 1
        assert result["items"][0].sale_date == date(2026, 1, 10)
        assert result["totals"]["revenue_cents"] == 18000
        assert result["totals"]["cost_cents"] == 10000
        assert result["totals"]["profit_cents"] == 8000
        assert result["totals"]["units"] == 2

    def test_get_sale_includes_lines(self, db_session, stocked_store):
        sale = sales_service.register_sale(stocked_store.id, [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}])

        loaded = sales_service.get_sale(sale.id)
        assert loaded.to_dict(include_lines=True)["lines"][0]["brand"] == "Bosch"

    def test_get_unknown_sale(self, db_session):
        with pytest.raises(NotFound):
            sales_service.get_sale(31337)


class TestSaleConservation:
    """Units in stores plus units sold stay equal to what the store was given."""

    RECEIVED = {"bosch 75ah": 5, "varta 60ah": 2}

    def test_sale_and_delete_conserve_units(self, db_session, stocked_store, assert_conserved):
        sale = sales_service.register_sale(
            stocked_store.id,
            [{"brand": "Bosch", "rating": "75Ah", "quantity": 5}, {"brand": "Varta", "rating": "60Ah", "quantity": 1}],
        )
        assert_conserved(self.RECEIVED)

        sales_service.delete_sale(sale.id)
        assert_conserved(self.RECEIVED)

    def test_failed_sale_conserves_units(self, db_session, stocked_store, assert_conserved):
        with pytest.raises(InsufficientStock):
            sales_service.register_sale(
                stocked_store.id,
                [{"brand": "Bosch", "rating": "75Ah", "quantity": 1}, {"brand": "Varta", "rating": "60Ah", "quantity": 3}],
            )
        assert_conserved(self.RECEIVED)
