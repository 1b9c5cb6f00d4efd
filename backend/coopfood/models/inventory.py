from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from coopfood.time_utils import to_utc_z


MOVEMENT_TYPES = ("In", "Out")
REFERENCE_TYPES = ("reservation", "release", "purchase", "adjustment")


class Cycle(db.Model):
    """
    Time-boxed inventory period.

    Exactly one cycle is active at a time (partial unique index below).
    Imports and stock movements are recorded against the active cycle.
    """
    __tablename__ = "cycles"
    __table_args__ = (
        db.Index(
            "uq_cycles_single_active",
            "is_active",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "starts_at": to_utc_z(self.starts_at) if self.starts_at else None,
            "ends_at": to_utc_z(self.ends_at) if self.ends_at else None,
            "is_active": self.is_active,
        }


class InventoryMovement(db.Model):
    """
    Append-only stock movement ledger.

    Independent of the order-status reconciliation view: the view derives
    counters from order lines, this ledger records physical/administrative
    movements (purchases, adjustments, reservations on posting).

    quantity is always positive; direction is carried by movement_type.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inv_mov_branch_item_cycle", "branch_id", "item_id", "cycle_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    cycle_id = db.Column(db.Integer, db.ForeignKey("cycles.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(16), nullable=False, index=True)
    reference_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "branch_id": self.branch_id,
            "cycle_id": self.cycle_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
