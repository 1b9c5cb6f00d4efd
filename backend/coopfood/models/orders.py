from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from coopfood.time_utils import to_utc_z


ORDER_STATUSES = ("Pending", "Posted", "Delivered", "Cancelled")
PAYMENT_OPTIONS = ("Savings", "Loan", "Cash")


class Order(db.Model):
    """
    Member order document.

    LIFECYCLE:
    - Pending: created by the member; lines may be replaced
    - Posted: locked by a rep/admin (posted_at stamped)
    - Delivered: handed over (delivered_at/delivered_by stamped)
    - Cancelled: withdrawn by a rep while Pending
    Deleted orders are removed; their reason survives in order_events.

    Status transitions are written as conditional updates
    (WHERE status = <expected>) so concurrent duplicate transitions cannot
    both succeed. See order_service.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_member_option_status", "member_id", "payment_option", "status"),
        db.Index("ix_orders_delivery_status", "delivery_branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.String(32), db.ForeignKey("members.member_id"), nullable=False)

    # Snapshots taken at creation time
    member_name_snapshot = db.Column(db.String(255), nullable=True)
    member_category_snapshot = db.Column(db.String(8), nullable=True)

    # Home branch (member's) and delivery branch (pricing + stock)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    delivery_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)

    payment_option = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="Pending", index=True)

    # Always equal to the sum of line amounts
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    # Administrative annotations
    note = db.Column(db.Text, nullable=True)
    posted_by = db.Column(db.String(128), nullable=True)
    delivered_by = db.Column(db.String(128), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    member = db.relationship("Member", foreign_keys=[member_id])
    home_branch = db.relationship("Branch", foreign_keys=[branch_id])
    delivery_branch = db.relationship("Branch", foreign_keys=[delivery_branch_id])
    department = db.relationship("Department")
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} member={self.member_id!r} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "member_id": self.member_id,
            "member_name": self.member_name_snapshot,
            "member_category": self.member_category_snapshot,
            "home_branch_code": self.home_branch.code if self.home_branch else None,
            "delivery_branch_code": self.delivery_branch.code if self.delivery_branch else None,
            "department_name": self.department.name if self.department else None,
            "payment_option": self.payment_option,
            "status": self.status,
            "total_amount": self.total_amount,
            "note": self.note,
            "posted_by": self.posted_by,
            "delivered_by": self.delivered_by,
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Order line with a unit price snapshot.

    amount is derived: it is recomputed whenever qty or unit_price is set and
    is never written on its own.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.Index("ix_order_lines_order_item", "order_id", "item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    qty = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    amount = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="lines")
    item = db.relationship("Item")

    @validates("qty", "unit_price")
    def _recompute_amount(self, key, value):
        qty = value if key == "qty" else self.qty
        unit_price = value if key == "unit_price" else self.unit_price
        if qty is not None and unit_price is not None:
            self.amount = int(qty) * int(unit_price)
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "sku": self.item.sku if self.item else None,
            "item_name": self.item.name if self.item else None,
            "qty": self.qty,
            "unit_price": self.unit_price,
            "amount": self.amount,
        }


class OrderEvent(db.Model):
    """
    Append-only audit log of order lifecycle events.

    order_id has no foreign key: events outlive a deleted order so the
    deletion reason stays retrievable.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, nullable=False)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    actor = db.Column(db.String(128), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "actor": self.actor,
            "reason": self.reason,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
