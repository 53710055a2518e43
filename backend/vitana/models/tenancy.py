from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z


def new_id() -> str:
    """Primary keys are UUID4 strings so a batch can reference rows before insert."""
    return str(uuid.uuid4())


class Business(db.Model):
    """
    Tenant root.

    MULTI-TENANT: every other table carries business_id and every query
    filters by it. Identity and roles come from the upstream auth service.
    """
    __tablename__ = "businesses"
    __table_args__ = (
        db.CheckConstraint("plan IN ('free', 'premium')", name="ck_businesses_plan"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(120), nullable=False)
    subtitle = db.Column(db.String(255), nullable=True)
    plan = db.Column(db.String(16), nullable=False, default="free")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "subtitle": self.subtitle,
            "plan": self.plan,
            "created_at": to_utc_z(self.created_at),
        }
