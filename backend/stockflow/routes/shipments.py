# backend/stockflow/routes/shipments.py
"""
Central-to-store shipment API routes.
"""
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..errors import StockError
from ..services import shipment_service
from .common import date_arg, error_response, int_arg, json_body, page_args, paged


shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")


@shipments_bp.route("", methods=["POST"])
def create_shipment():
    """
    Stage a shipment; central stock is reserved immediately.

    Request body:
    {
        "store_id": int,
        "lines": [{"brand": str, "rating": str, "quantity": int}],
        "notes": str (optional),
        "created_by": str (optional)
    }

    Returns:
        201: Shipment created (PENDING)
        400: Invalid request
        404: Store not found
        409: Insufficient central stock (details.items lists every short line)
    """
    try:
        data = json_body()
        shipment = shipment_service.create_shipment(
            data.get("store_id"),
            data.get("lines"),
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
        return jsonify(shipment.to_dict(include_lines=True)), 201

    except StockError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.route("/<int:shipment_id>/prices", methods=["PUT"])
def assign_prices(shipment_id: int):
    """
    Set or clear store prices on shipment lines.

    Request body:
    {
        "prices": [{"line_id": int, "store_price_cents": int | null}]
    }

    Returns:
        200: Prices saved; status re-derived
        404: Shipment or line not found
        409: Shipment is COMPLETED or CANCELLED
    """
    try:
        data = json_body()
        shipment = shipment_service.assign_prices(shipment_id, data.get("prices"))
        return jsonify(shipment.to_dict(include_lines=True)), 200

    except StockError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to assign shipment prices")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.route("/<int:shipment_id>/confirm", methods=["POST"])
def confirm_shipment(shipment_id: int):
    """
    Confirm a fully priced shipment into the store.

    Returns:
        200: Shipment COMPLETED
        404: Shipment not found
        409: Unpriced lines, or shipment already terminal
    """
    try:
        shipment = shipment_service.confirm_shipment(shipment_id)
        return jsonify(shipment.to_dict(include_lines=True)), 200

    except StockError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to confirm shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.route("/<int:shipment_id>/cancel", methods=["POST"])
def cancel_shipment(shipment_id: int):
    """
    Cancel an open shipment; its units return to central stock.

    Request body (optional):
    {
        "reason": str
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        shipment = shipment_service.cancel_shipment(shipment_id, data.get("reason"))
        return jsonify(shipment.to_dict(include_lines=True)), 200

    except StockError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.route("/<int:shipment_id>", methods=["GET"])
def get_shipment(shipment_id: int):
    try:
        shipment = shipment_service.get_shipment(shipment_id)
        return jsonify(shipment.to_dict(include_lines=True)), 200
    except StockError as e:
        return error_response(e)


@shipments_bp.route("", methods=["GET"])
def list_shipments():
    """
    Query params: store_id, status, date_from, date_to, page, limit
    """
    try:
        page, limit = page_args()
        result = shipment_service.list_shipments(
            store_id=int_arg("store_id"),
            status=request.args.get("status"),
            date_from=date_arg("date_from"),
            date_to=date_arg("date_to"),
            page=page,
            limit=limit,
        )
        return jsonify(paged(result, lambda s: s.to_dict())), 200
    except StockError as e:
        return error_response(e)
