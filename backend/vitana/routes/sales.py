# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/vitana/routes/sales.py
"""Sales API routes. Operators and admins may sell and read sales."""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.ledger_store import TransactionFailed
from ..services.sales_service import SaleNotFound
from ..services.stock_service import InsufficientStock, ProductNotFound
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, validate_payment_method, validate_sale_items, validate_sale_total
from ..decorators import require_auth, require_role


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_role("operator")
def complete_sale_route():
    """
    Record a finished sale: header, items, stock decrements and movements
    in one batch.

    Body: {"items": [{"product_id", "quantity", "unit_price" | "unit_price_cents",
           "product_name"?}], "payment_method", "total"?}
    """
    data = request.get_json(silent=True) or {}

    try:
        lines = validate_sale_items(data.get("items"))
        validate_sale_total(lines, data)
        payment_method = validate_payment_method(data.get("payment_method"))
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    try:
        sale = sales_service.complete_sale(
            business_id=g.business_id,
            user_id=g.user_id,
            lines=lines,
            payment_method=payment_method,
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ProductNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except InsufficientStock as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except TransactionFailed as e:
        return jsonify({"error": "Transaction failed", "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_role("operator")
def list_sales_route():
    """List recent sales, newest first. Optional ?start=&end= (ISO-8601) and ?limit=."""
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start/end must be ISO-8601 datetimes"}), 400

    limit = request.args.get("limit", 50, type=int)
    limit = max(1, min(limit, 500))

    sales = sales_service.list_sales(g.business_id, start=start, end=end, limit=limit)
    return jsonify({"sales": [s.to_dict(include_items=False) for s in sales]}), 200


@sales_bp.get("/<sale_id>")
@require_auth
@require_role("operator")
def get_sale_route(sale_id: str):
    try:
        sale = sales_service.get_sale(g.business_id, sale_id)
    except SaleNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    return jsonify({"sale": sale.to_dict()}), 200
