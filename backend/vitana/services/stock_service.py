# Overview: Stock accessor; reads and adjusts product stock inside ledger batches.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import insert, update

from ..extensions import db
from ..models import Product, StockMovement, new_id
from ..time_utils import utcnow
from .ledger_store import Statement, execute_atomic
"""
Stock Invariants (authoritative)

- Product.stock is never negative.
- Stock only changes inside an atomic batch that also appends the
  StockMovement explaining the change (a sale or a manual movement).
- Decrements are conditional (stock >= qty) so a concurrent batch that
  drained the product makes this one fail with InsufficientStock instead
  of driving stock below zero.
- Every read and write is scoped by business_id.
"""


class StockError(Exception):
    """Raised for stock operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFound(StockError):
    pass


class InsufficientStock(StockError):
    pass


def _get_product(business_id: str, product_id: str) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, business_id=business_id).first()
    if product is None:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    return product


def get_stock(business_id: str, product_id: str) -> int:
    return _get_product(business_id, product_id).stock


def _shortfall(business_id: str, product_id: str, quantity: int):
    """Resolve a zero-row conditional decrement into the error the caller sees."""
    def _factory() -> Exception:
        product = db.session.query(Product).filter_by(id=product_id, business_id=business_id).first()
        if product is None:
            return ProductNotFound("Product not found", details={"product_id": product_id})
        return InsufficientStock(
            f"Insufficient stock for {product.name}",
            details={
                "product_id": product_id,
                "requested_quantity": quantity,
                "available": product.stock,
            },
        )
    return _factory


def decrement_statement(business_id: str, product_id: str, quantity: int) -> Statement:
    """
    Conditional stock decrement, to be placed in the caller's batch.
    Never committed on its own.
    """
    clause = (
        update(Product.__table__)
        .where(
            Product.__table__.c.id == product_id,
            Product.__table__.c.business_id == business_id,
            Product.__table__.c.stock >= quantity,
        )
        .values(stock=Product.__table__.c.stock - quantity, updated_at=utcnow())
    )
    return Statement(
        clause=clause,
        expect_rows=1,
        on_shortfall=_shortfall(business_id, product_id, quantity),
        label=f"decrement:{product_id}",
    )


def increment_statement(
    business_id: str,
    product_id: str,
    quantity: int,
    unit_cost_cents: int | None = None,
) -> Statement:
    values = {"stock": Product.__table__.c.stock + quantity, "updated_at": utcnow()}
    if unit_cost_cents is not None:
        values["cost_cents"] = unit_cost_cents
    clause = (
        update(Product.__table__)
        .where(
            Product.__table__.c.id == product_id,
            Product.__table__.c.business_id == business_id,
        )
        .values(**values)
    )
    return Statement(
        clause=clause,
        expect_rows=1,
        on_shortfall=lambda: ProductNotFound("Product not found", details={"product_id": product_id}),
        label=f"increment:{product_id}",
    )


def movement_statement(
    *,
    movement_id: str,
    business_id: str,
    product_id: str,
    movement_type: str,
    quantity: int,
    reason: str | None,
    sale_id: str | None = None,
    unit_cost_cents: int | None = None,
) -> Statement:
    total_cost_cents = unit_cost_cents * quantity if unit_cost_cents is not None else None
    clause = insert(StockMovement.__table__).values(
        id=movement_id,
        business_id=business_id,
        product_id=product_id,
        sale_id=sale_id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=total_cost_cents,
        created_at=utcnow(),
    )
    return Statement(clause=clause, label=f"movement:{product_id}")


def record_movement(
    *,
    business_id: str,
    product_id: str,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    unit_cost_cents: int | None = None,
) -> StockMovement:
    """
    Manual stock movement (entrada/saida) applied atomically with its stock change.

    An entrada carrying unit_cost_cents also refreshes Product.cost_cents.
    """
    _get_product(business_id, product_id)
    movement_id = new_id()

    statements = [
        movement_statement(
            movement_id=movement_id,
            business_id=business_id,
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            unit_cost_cents=unit_cost_cents,
        )
    ]
    if movement_type == "entrada":
        statements.append(increment_statement(business_id, product_id, quantity, unit_cost_cents))
    else:
        statements.append(decrement_statement(business_id, product_id, quantity))

    execute_atomic(statements)
    return db.session.get(StockMovement, movement_id)


def list_movements(
    business_id: str,
    *,
    product_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter(StockMovement.business_id == business_id)
    if product_id:
        q = q.filter(StockMovement.product_id == product_id)
    if start is not None:
        q = q.filter(StockMovement.created_at >= start)
    if end is not None:
        q = q.filter(StockMovement.created_at <= end)
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id).limit(limit).all()


def low_stock(business_id: str) -> list[Product]:
    """Products at or below their minimum, tightest first. min_stock 0 means untracked."""
    return (
        db.session.query(Product)
        .filter(
            Product.business_id == business_id,
            Product.min_stock > 0,
            Product.stock <= Product.min_stock,
        )
        .order_by((Product.stock - Product.min_stock).asc(), Product.name)
        .all()
    )
