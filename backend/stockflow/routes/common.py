# Overview: Request parsing and error-response helpers shared by the API blueprints.

from __future__ import annotations

from flask import current_app, jsonify, request

from ..errors import StockError, ValidationError
from ..validation import clamp_page, coerce_int, optional_date


def json_body() -> dict:
    """Request JSON object; anything else is a 400."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def page_args() -> tuple[int, int]:
    return clamp_page(
        request.args.get("page"),
        request.args.get("limit"),
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )


def int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_int(raw, name)


def date_arg(name: str):
    return optional_date(request.args.get(name), name)


def error_response(exc: StockError):
    return jsonify(exc.to_dict()), exc.status_code


def paged(result: dict, serialize) -> dict:
    """Copy of a service page dict with its items serialized."""
    data = dict(result)
    data["items"] = [serialize(item) for item in result["items"]]
    return data
