from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .tenancy import new_id

MOVEMENT_TYPES = ("entrada", "saida")


class Product(db.Model):
    """
    Product master data with a stored stock quantity.

    STOCK INVARIANT: stock is never negative. It changes only inside a
    committed sale batch or an explicit stock movement batch, and every
    decrement is a conditional UPDATE (stock >= qty). The CHECK constraint
    is the last line behind that.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "barcode", name="uq_products_business_barcode"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_business_name", "business_id", "name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(
        db.String(36), db.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    category = db.Column(db.String(120), nullable=True)
    brand = db.Column(db.String(120), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="unidade")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "barcode": self.barcode,
            "category": self.category,
            "brand": self.brand,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "unit": self.unit,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock audit trail.

    One 'saida' row per sale item (sale_id set, removed with its sale) plus
    manual 'entrada'/'saida' adjustments (sale_id null).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("type IN ('entrada', 'saida')", name="ck_stock_movements_type"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_business_created", "business_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(
        db.String(36), db.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sale_id = db.Column(
        db.String(36), db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=True, index=True
    )

    type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sale_id": self.sale_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "created_at": to_utc_z(self.created_at),
        }
