# Overview: Flask API routes for store expenses.

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..errors import StockError
from ..services import expense_service
from .common import date_arg, error_response, int_arg, json_body, page_args, paged


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("")
def record_expense():
    """
    Request body:
    {
        "store_id": int,
        "category": str,
        "amount_cents": int (> 0),
        "description": str (optional),
        "expense_date": "YYYY-MM-DD" (optional)
    }
    """
    try:
        data = json_body()
        expense = expense_service.record_expense(
            data.get("store_id"),
            data.get("category"),
            data.get("amount_cents"),
            description=data.get("description"),
            expense_date=data.get("expense_date"),
        )
        return jsonify(expense.to_dict()), 201
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.delete("/<int:expense_id>")
def delete_expense(expense_id: int):
    try:
        expense_service.delete_expense(expense_id)
        return jsonify({"deleted": True, "expense_id": expense_id}), 200
    except StockError as exc:
        db.session.rollback()
        return error_response(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.get("")
def list_expenses():
    """Query params: store_id, date_from, date_to, category, page, limit"""
    try:
        page, limit = page_args()
        result = expense_service.list_expenses(
            store_id=int_arg("store_id"),
            date_from=date_arg("date_from"),
            date_to=date_arg("date_to"),
            category=request.args.get("category"),
            page=page,
            limit=limit,
        )
        return jsonify(paged(result, lambda expense: expense.to_dict())), 200
    except StockError as exc:
        return error_response(exc)


@expenses_bp.get("/categories")
def list_categories():
    try:
        return jsonify(expense_service.list_categories(store_id=int_arg("store_id"))), 200
    except StockError as exc:
        return error_response(exc)
