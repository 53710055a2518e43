from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .tenancy import new_id


class Sale(db.Model):
    """
    Completed sale. Immutable once written: rows are only inserted (inside
    the sale batch) and read afterwards, e.g. by the fiscal engine.

    total_cents == sum(items.total_cents), enforced when the batch is built.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_business_created", "business_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(
        db.String(36), db.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(db.String(36), nullable=False)

    total_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SaleItem.position",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    product_name is a historical snapshot taken at sale time. It is not
    joined from products and may diverge if the product is renamed or
    deleted later (product_id is then nulled, the line survives).
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sale_id = db.Column(
        db.String(36), db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Cart order, used for fiscal item numbering
    position = db.Column(db.Integer, nullable=False, default=1)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "position": self.position,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }
