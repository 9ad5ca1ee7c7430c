# Overview: Flask API routes for store sales; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..errors import StockError
from ..services import sales_service
from .common import date_arg, error_response, int_arg, json_body, page_args, paged


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def register_sale():
    """
    Register a store sale; store stock is taken immediately.

    Request body:
    {
        "store_id": int,
        "lines": [{"brand", "rating", "quantity", "unit_price_cents"?, "unit_cost_cents"?}],
        "notes": str (optional),
        "sale_date": "YYYY-MM-DD" (optional, defaults to today)
    }

    Returns:
        201: Sale registered
        400: Invalid request
        404: Store not found
        409: Insufficient store stock
    """
    try:
        data = json_body()
        sale = sales_service.register_sale(
            data.get("store_id"),
            data.get("lines"),
            notes=data.get("notes"),
            sale_date=data.get("sale_date"),
        )
        return jsonify(sale.to_dict(include_lines=True)), 201
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify(sale.to_dict(include_lines=True)), 200
    except StockError as exc:
        return error_response(exc)


@sales_bp.delete("/<int:sale_id>")
def delete_sale(sale_id: int):
    """Delete a sale and restore its units to the store."""
    try:
        result = sales_service.delete_sale(sale_id)
        return jsonify(result), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales():
    """
    Query params: store_id, date_from, date_to, page, limit

    "totals" cover the whole filtered period, not just the page.
    """
    try:
        page, limit = page_args()
        result = sales_service.list_sales(
            store_id=int_arg("store_id"),
            date_from=date_arg("date_from"),
            date_to=date_arg("date_to"),
            page=page,
            limit=limit,
        )
        return jsonify(paged(result, lambda sale: sale.to_dict(include_lines=True))), 200
    except StockError as exc:
        return error_response(exc)
