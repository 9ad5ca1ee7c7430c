# Overview: Flask API routes for store management, store stock, returns and opening balances.

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..errors import StockError
from ..services import inventory_service, store_service
from .common import error_response, json_body, page_args, int_arg, paged


stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")

_STORE_FIELDS = ("name", "kind", "manager_name", "city", "address")


@stores_bp.get("")
def list_stores():
    """
    Query params: kind, city, page, limit; all=true returns every store
    as a plain list (for selects).

    The paged response carries per-kind counts and the distinct cities for
    the filter dropdown.
    """
    try:
        kind = request.args.get("kind")
        city = request.args.get("city")
        if str(request.args.get("all") or "").strip().lower() in {"1", "true", "yes"}:
            stores = store_service.list_stores(kind=kind, city=city)
            return jsonify([store.to_dict() for store in stores]), 200
        page, limit = page_args()
        result = store_service.page_stores(kind=kind, city=city, page=page, limit=limit)
        return jsonify(paged(result, lambda store: store.to_dict())), 200
    except StockError as exc:
        return error_response(exc)


@stores_bp.post("")
def create_store():
    try:
        data = json_body()
        store = store_service.create_store(
            data.get("name"),
            kind=data.get("kind"),
            manager_name=data.get("manager_name"),
            city=data.get("city"),
            address=data.get("address"),
        )
        return jsonify(store.to_dict()), 201
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create store")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.get("/<int:store_id>")
def get_store(store_id: int):
    store = store_service.get_store(store_id)
    if not store:
        return jsonify({"error": "Store not found"}), 404
    return jsonify(store.to_dict()), 200


@stores_bp.put("/<int:store_id>")
def update_store(store_id: int):
    """Partial update: only the fields present in the body change."""
    try:
        data = json_body()
        changes = {field: data[field] for field in _STORE_FIELDS if field in data}
        store = store_service.update_store(store_id, **changes)
        return jsonify(store.to_dict()), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update store")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.delete("/<int:store_id>")
def delete_store(store_id: int):
    try:
        store_service.delete_store(store_id)
        return jsonify({"deleted": True, "store_id": store_id}), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete store")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STORE STOCK
# =============================================================================

@stores_bp.get("/<int:store_id>/stock")
def list_store_stock(store_id: int):
    """
    Query params: search, brand, rating, min_quantity, quantity_op
    (eq|gt|lt|gte|lte) with quantity_value, page, limit
    """
    try:
        page, limit = page_args()
        result = inventory_service.list_store_stock(
            store_id,
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


@stores_bp.get("/<int:store_id>/stock/low")
def store_low_stock(store_id: int):
    try:
        result = inventory_service.low_stock(int_arg("threshold"), store_id=store_id)
        return jsonify(paged(result, lambda line: line.to_dict())), 200
    except StockError as exc:
        return error_response(exc)


@stores_bp.patch("/<int:store_id>/stock/<int:line_id>")
def update_store_line_prices(store_id: int, line_id: int):
    try:
        data = json_body()
        line = inventory_service.update_store_line_prices(
            store_id,
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
        current_app.logger.exception("Failed to update store line prices")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.post("/<int:store_id>/stock/<int:line_id>/return")
def return_line_to_central(store_id: int, line_id: int):
    try:
        moved = inventory_service.return_line_to_central(store_id, line_id)
        return jsonify(moved), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to return store line to central")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.post("/<int:store_id>/stock/return-all")
def return_all_to_central(store_id: int):
    """
    Drain the store into central stock, line by line.

    Returns:
        200: Every line returned
        207: Some lines failed (see "errors"; re-run to finish)
    """
    try:
        report = inventory_service.return_all_to_central(store_id)
        return jsonify(report), 207 if report["errors"] else 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to return store stock to central")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.post("/<int:store_id>/opening-balance")
def opening_balance(store_id: int):
    """
    Analyze or import a store's opening balance.

    Request body:
    {
        "rows": [{"brand", "rating", "quantity", "unit_price_cents", "unit_cost_cents"?}],
        "mode": "analyze" | "sum" | "replace"   (default "sum")
    }
    """
    try:
        data = json_body()
        mode = str(data.get("mode") or "sum").strip().lower()
        if mode == "analyze":
            return jsonify(inventory_service.analyze_opening_balance(store_id, data.get("rows"))), 200
        result = inventory_service.import_opening_balance(store_id, data.get("rows"), mode=mode)
        return jsonify(result), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import opening balance")
        return jsonify({"error": "Internal server error"}), 500
