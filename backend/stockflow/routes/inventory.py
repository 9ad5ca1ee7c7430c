# Overview: Flask API routes for central warehouse stock; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..errors import StockError
from ..services import inventory_service, stock_service
from .common import error_response, json_body, page_args, int_arg, paged


central_stock_bp = Blueprint("central_stock", __name__, url_prefix="/api/central-stock")


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


@central_stock_bp.get("")
def list_central_stock():
    """
    Query params: search, brand, rating, min_quantity, quantity_op
    (eq|gt|lt|gte|lte) with quantity_value, page, limit

    Response carries stats over the filtered set and the distinct
    brand/rating values for filter dropdowns.
    """
    try:
        page, limit = page_args()
        result = inventory_service.list_central_stock(
            search=request.args.get("search"),
            brand=request.args.get("brand"),
            rating=request.args.get("rating"),
            min_quantity=int_arg("min_quantity"),
            quantity_op=request.args.get("quantity_op"),
            quantity_value=int_arg("quantity_value"),
            page=page,
            limit=limit,
        )
        return jsonify(paged(result, lambda line: line.to_dict())), 200
    except StockError as exc:
        return error_response(exc)


@central_stock_bp.post("/receive")
def receive_central_stock():
    """
    Receive purchased stock into the warehouse.

    Request body:
    {
        "brand": str,
        "rating": str,
        "quantity": int,
        "unit_cost_cents": int (optional),
        "unit_price_cents": int (optional)
    }
    """
    try:
        data = json_body()
        line = inventory_service.receive_central_stock(
            data.get("brand"),
            data.get("rating"),
            data.get("quantity"),
            unit_cost_cents=data.get("unit_cost_cents"),
            unit_price_cents=data.get("unit_price_cents"),
        )
        return jsonify(line.to_dict()), 201
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive central stock")
        return jsonify({"error": "Internal server error"}), 500


@central_stock_bp.post("/import")
def import_central_stock():
    """
    Bulk upload.

    Request body:
    {
        "rows": [{"brand", "rating", "quantity", "unit_cost_cents"?, "unit_price_cents"?}],
        "mode": "analyze" | "import"        (default "import"),
        "update_mode": "sum" | "replace"    (default "sum"),
        "update_prices": bool               (default false)
    }
    """
    try:
        data = json_body()
        if str(data.get("mode") or "import").strip().lower() == "analyze":
            return jsonify(inventory_service.analyze_central_import(data.get("rows"))), 200
        result = inventory_service.import_central_stock(
            data.get("rows"),
            update_mode=data.get("update_mode"),
            update_prices=_truthy(data.get("update_prices")),
        )
        return jsonify(result), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import central stock")
        return jsonify({"error": "Internal server error"}), 500


@central_stock_bp.get("/lookup")
def lookup_central_line():
    """Exact (case-insensitive) brand/rating lookup; "line" is null when absent."""
    try:
        line = stock_service.get_line(
            stock_service.CENTRAL,
            request.args.get("brand"),
            request.args.get("rating"),
        )
        return jsonify({"line": line.to_dict() if line else None}), 200
    except StockError as exc:
        return error_response(exc)


@central_stock_bp.get("/low-stock")
def central_low_stock():
    """
    Query params: threshold (defaults to LOW_STOCK_THRESHOLD)

    Lines under the threshold, emptiest first, with out-of-stock/low counts.
    """
    try:
        result = inventory_service.low_stock(int_arg("threshold"))
        return jsonify(paged(result, lambda line: line.to_dict())), 200
    except StockError as exc:
        return error_response(exc)


@central_stock_bp.patch("/<int:line_id>")
def update_central_prices(line_id: int):
    try:
        data = json_body()
        line = inventory_service.update_central_prices(
            line_id,
            unit_cost_cents=data.get("unit_cost_cents"),
            unit_price_cents=data.get("unit_price_cents"),
        )
        return jsonify(line.to_dict()), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update central prices")
        return jsonify({"error": "Internal server error"}), 500


@central_stock_bp.delete("/<int:line_id>")
def delete_central_line(line_id: int):
    try:
        inventory_service.delete_central_line(line_id)
        return jsonify({"deleted": True, "line_id": line_id}), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete central line")
        return jsonify({"error": "Internal server error"}), 500


@central_stock_bp.get("/conservation")
def conservation_report():
    """Per (brand, rating) totals across central, stores, open shipments and sales."""
    return jsonify(stock_service.conservation_report()), 200
