# backend/vitana/routes/stock.py
"""
Stock routes.

SECURITY: All routes require authentication.
- Stock lookup for a single product is open to operators (sale screen)
- Low-stock report and movement ledger are admin only

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
"""
from flask import Blueprint, request, g, current_app

from ..models import StockMovement
from ..time_utils import parse_iso_datetime
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    enforce_rules_stock_movement,
)
from ..services import stock_service
from ..services.ledger_store import TransactionFailed
from ..services.stock_service import InsufficientStock, ProductNotFound
from ..decorators import require_auth, require_role


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

STOCK_MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "type", "quantity", "reason", "unit_cost_cents"},
    required_on_create={"product_id", "type", "quantity"},
)


@stock_bp.get("/products/<product_id>")
@require_auth
@require_role("operator")
def get_stock_route(product_id: str):
    try:
        stock = stock_service.get_stock(g.business_id, product_id)
    except ProductNotFound as e:
        return {"error": str(e), "details": e.details}, 404
    return {"product_id": product_id, "stock": stock}, 200


@stock_bp.get("/low-stock")
@require_auth
@require_role("admin")
def low_stock_route():
    products = stock_service.low_stock(g.business_id)
    return {"products": [p.to_dict() for p in products]}, 200


@stock_bp.get("/movements")
@require_auth
@require_role("admin")
def list_movements_route():
    """Movement ledger, newest first. Filters: product_id, start, end, limit."""
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return {"error": "start/end must be ISO-8601 datetimes"}, 400

    limit = max(1, min(request.args.get("limit", 50, type=int), 500))
    movements = stock_service.list_movements(
        g.business_id,
        product_id=request.args.get("product_id"),
        start=start,
        end=end,
        limit=limit,
    )
    return {"movements": [m.to_dict() for m in movements]}, 200


@stock_bp.post("/movements")
@require_auth
@require_role("admin")
def record_movement_route():
    """
    Manual entrada/saida. A saida that would take stock below zero is
    refused with 409 and nothing is written.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockMovement,
            payload=payload,
            policy=STOCK_MOVEMENT_POLICY,
            partial=False,
        )
        enforce_rules_stock_movement(patch)
    except ValidationError as e:
        return {"error": str(e), "details": e.details}, 400

    try:
        movement = stock_service.record_movement(
            business_id=g.business_id,
            product_id=patch["product_id"],
            movement_type=patch["type"],
            quantity=patch["quantity"],
            reason=patch.get("reason"),
            unit_cost_cents=patch.get("unit_cost_cents"),
        )
    except ProductNotFound as e:
        return {"error": str(e), "details": e.details}, 404
    except InsufficientStock as e:
        return {"error": str(e), "details": e.details}, 409
    except TransactionFailed as e:
        return {"error": "Transaction failed", "details": e.details}, 500
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return {"error": "Internal server error"}, 500

    stock = stock_service.get_stock(g.business_id, patch["product_id"])
    return {"movement": movement.to_dict(), "stock": stock}, 201
