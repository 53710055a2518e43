"""
Sale Transaction Coordinator

Builds the complete write-set of a finished sale (header, lines, stock
decrements, stock movements) and commits it as one ledger batch. A sale is
either fully recorded or not recorded at all.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import insert

from ..extensions import db
from ..models import Product, Sale, SaleItem, new_id
from ..time_utils import utcnow
from ..validation import ValidationError
from .ledger_store import Statement, execute_atomic
from .stock_service import ProductNotFound, decrement_statement, movement_statement

SALE_MOVEMENT_REASON = "Venda"


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFound(SaleError):
    pass


def _snapshot_names(business_id: str, lines: list[dict]) -> None:
    """Fill missing product_name from the live product row, as of now."""
    missing = {line["product_id"] for line in lines if not line["product_name"]}
    if not missing:
        return
    rows = (
        db.session.query(Product.id, Product.name)
        .filter(Product.business_id == business_id, Product.id.in_(missing))
        .all()
    )
    names = {row.id: row.name for row in rows}
    for line in lines:
        if line["product_name"]:
            continue
        if line["product_id"] not in names:
            raise ProductNotFound("Product not found", details={"product_id": line["product_id"]})
        line["product_name"] = names[line["product_id"]]


def build_sale_batch(
    *,
    sale_id: str,
    business_id: str,
    user_id: str,
    lines: list[dict],
    total_cents: int,
    payment_method: str,
    created_at: datetime,
) -> list[Statement]:
    statements = [
        Statement(
            clause=insert(Sale.__table__).values(
                id=sale_id,
                business_id=business_id,
                user_id=user_id,
                total_cents=total_cents,
                payment_method=payment_method,
                created_at=created_at,
            ),
            label="sale",
        )
    ]

    for position, line in enumerate(lines, start=1):
        # Decrement first: an unknown product then surfaces as ProductNotFound, not an FK error
        statements.append(decrement_statement(business_id, line["product_id"], line["quantity"]))
        statements.append(Statement(
            clause=insert(SaleItem.__table__).values(
                id=new_id(),
                sale_id=sale_id,
                product_id=line["product_id"],
                position=position,
                product_name=line["product_name"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_cents=line["total_cents"],
            ),
            label=f"sale_item:{position}",
        ))
        statements.append(movement_statement(
            movement_id=new_id(),
            business_id=business_id,
            product_id=line["product_id"],
            movement_type="saida",
            quantity=line["quantity"],
            reason=SALE_MOVEMENT_REASON,
            sale_id=sale_id,
        ))

    return statements


def complete_sale(
    *,
    business_id: str,
    user_id: str,
    lines: list[dict],
    payment_method: str,
) -> Sale:
    """
    Record a finished sale atomically.

    `lines` are already normalized (validation.validate_sale_items):
    positive integer quantities, cents, per-line totals computed.

    Raises ValidationError (empty cart, quantity <= 0), InsufficientStock,
    ProductNotFound or TransactionFailed; in every case nothing was written.
    """
    if not lines:
        raise ValidationError("Sale must have at least one item")
    for index, line in enumerate(lines, start=1):
        if line["quantity"] <= 0:
            raise ValidationError(
                f"Item {index}: quantity must be > 0",
                details={"product_id": line["product_id"], "quantity": line["quantity"]},
            )

    _snapshot_names(business_id, lines)
    total_cents = sum(line["total_cents"] for line in lines)

    sale_id = new_id()
    statements = build_sale_batch(
        sale_id=sale_id,
        business_id=business_id,
        user_id=user_id,
        lines=lines,
        total_cents=total_cents,
        payment_method=payment_method,
        created_at=utcnow(),
    )
    execute_atomic(statements)

    return get_sale(business_id, sale_id)


def get_sale(business_id: str, sale_id: str) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, business_id=business_id).first()
    if not sale:
        raise SaleNotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    business_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
) -> list[Sale]:
    q = db.session.query(Sale).filter(Sale.business_id == business_id)
    if start is not None:
        q = q.filter(Sale.created_at >= start)
    if end is not None:
        q = q.filter(Sale.created_at <= end)
    return q.order_by(Sale.created_at.desc(), Sale.id).limit(limit).all()
