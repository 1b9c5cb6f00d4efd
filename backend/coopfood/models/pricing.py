from __future__ import annotations

from ..extensions import db
from coopfood.time_utils import to_utc_z


class BranchItemPrice(db.Model):
    """
    Base price and initial stock of an item at a delivery branch.

    A missing row means the item is not sold at that branch. initial_stock
    feeds the reconciliation view; it is never decremented in place.
    """
    __tablename__ = "branch_item_prices"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "item_id", name="uq_branch_item_prices_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    price = db.Column(db.Integer, nullable=False)
    initial_stock = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "item_id": self.item_id,
            "price": self.price,
            "initial_stock": self.initial_stock,
            "updated_at": to_utc_z(self.updated_at),
        }


class BranchItemMarkup(db.Model):
    """
    Per-branch, per-item surcharge.

    Deactivating (active=False) keeps the row so the amount can be restored;
    only an inactive markup contributes nothing to the sell price.
    """
    __tablename__ = "branch_item_markups"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "item_id", name="uq_branch_item_markups_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_code": self.branch.code if self.branch else None,
            "sku": self.item.sku if self.item else None,
            "item_name": self.item.name if self.item else None,
            "amount": self.amount,
            "active": self.active,
            "updated_at": to_utc_z(self.updated_at),
        }
