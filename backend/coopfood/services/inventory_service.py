# Overview: Inventory reconciliation view, cycles and the stock movement ledger.

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import StateError, ValidationError
from ..models import (
    Branch,
    BranchItemPrice,
    Cycle,
    Department,
    InventoryMovement,
    Item,
    Order,
    OrderLine,
    MOVEMENT_TYPES,
    REFERENCE_TYPES,
)
from ..time_utils import utcnow
from .reference_service import get_branch_by_code, get_item_by_sku, normalize_code


"""
Inventory Invariants

Reconciliation view (derived, never stored):
- pending/posted/delivered quantities are summed from order lines by the
  order's delivery branch and status; Cancelled lines count nowhere.
- allocated = pending + posted
- remaining_after_posted = initial_stock - allocated
- remaining_after_delivered = remaining_after_posted - delivered
- Only (branch, item) pairs with a price row appear.
- low is advisory: remaining_after_posted <= LOW_STOCK_THRESHOLD.

Movement ledger:
- Append-only; quantity > 0, direction in movement_type.
- Every movement belongs to a cycle; only one cycle is active.
"""


def _status_sum(status: str):
    return func.coalesce(
        func.sum(case((Order.status == status, OrderLine.qty), else_=0)),
        0,
    )


def _line_aggregates():
    return (
        db.session.query(
            Order.delivery_branch_id.label("branch_id"),
            OrderLine.item_id.label("item_id"),
            _status_sum("Pending").label("pending_qty"),
            _status_sum("Posted").label("posted_qty"),
            _status_sum("Delivered").label("delivered_qty"),
        )
        .join(Order, Order.id == OrderLine.order_id)
        .group_by(Order.delivery_branch_id, OrderLine.item_id)
        .subquery()
    )


def get_inventory_status(branch_code: str | None = None, sku: str | None = None) -> list[dict]:
    """
    Per (branch, item) stock counters recomputed from current order state.

    Filters are exact-match on the canonical branch code and sku.
    """
    threshold = int(current_app.config.get("LOW_STOCK_THRESHOLD", 20))
    agg = _line_aggregates()

    query = (
        db.session.query(
            Branch.code,
            Item.sku,
            Item.name,
            Item.unit,
            BranchItemPrice.initial_stock,
            func.coalesce(agg.c.pending_qty, 0),
            func.coalesce(agg.c.posted_qty, 0),
            func.coalesce(agg.c.delivered_qty, 0),
        )
        .select_from(BranchItemPrice)
        .join(Branch, Branch.id == BranchItemPrice.branch_id)
        .join(Item, Item.id == BranchItemPrice.item_id)
        .outerjoin(
            agg,
            db.and_(
                agg.c.branch_id == BranchItemPrice.branch_id,
                agg.c.item_id == BranchItemPrice.item_id,
            ),
        )
    )
    if branch_code:
        query = query.filter(Branch.code == normalize_code(branch_code))
    if sku:
        query = query.filter(Item.sku == normalize_code(sku))

    rows = []
    for code, item_sku, name, unit, initial, pending, posted, delivered in query.order_by(Branch.code, Item.name):
        initial = int(initial or 0)
        pending = int(pending)
        posted = int(posted)
        delivered = int(delivered)
        allocated = pending + posted
        remaining_after_posted = initial - allocated
        rows.append({
            "branch_code": code,
            "sku": item_sku,
            "item_name": name,
            "unit": unit,
            "initial_stock": initial,
            "pending_qty": pending,
            "posted_qty": posted,
            "delivered_qty": delivered,
            "allocated_qty": allocated,
            "remaining_after_posted": remaining_after_posted,
            "remaining_after_delivered": remaining_after_posted - delivered,
            "low": remaining_after_posted <= threshold,
        })
    return rows


def low_stock(branch_code: str | None = None) -> list[dict]:
    return [row for row in get_inventory_status(branch_code=branch_code) if row["low"]]


def department_demand(branch_code: str | None = None) -> list[dict]:
    """Quantities per department and item, split by status (Cancelled excluded)."""
    query = (
        db.session.query(
            Department.name,
            Item.sku,
            Item.name,
            _status_sum("Pending"),
            _status_sum("Posted"),
            _status_sum("Delivered"),
        )
        .select_from(OrderLine)
        .join(Order, Order.id == OrderLine.order_id)
        .join(Department, Department.id == Order.department_id)
        .join(Item, Item.id == OrderLine.item_id)
        .filter(Order.status != "Cancelled")
    )
    if branch_code:
        branch = get_branch_by_code(branch_code)
        query = query.filter(Order.delivery_branch_id == branch.id)

    results = []
    for dept, sku, name, pending, posted, delivered in (
        query.group_by(Department.name, Item.sku, Item.name).order_by(Department.name, Item.name)
    ):
        results.append({
            "department": dept,
            "sku": sku,
            "item_name": name,
            "pending_qty": int(pending),
            "posted_qty": int(posted),
            "delivered_qty": int(delivered),
            "total_qty": int(pending) + int(posted) + int(delivered),
        })
    return results


# Cycles ---------------------------------------------------------------------

def get_active_cycle() -> Cycle | None:
    return db.session.query(Cycle).filter_by(is_active=True).first()


def open_cycle(name: str) -> Cycle:
    """Close the active cycle (if any) and open a new active one."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("cycle name is required")

    now = utcnow()
    current = get_active_cycle()
    if current:
        current.is_active = False
        current.ends_at = now
        db.session.flush()

    cycle = Cycle(name=name, starts_at=now, is_active=True)
    db.session.add(cycle)
    db.session.commit()
    current_app.logger.info("Opened inventory cycle %s (%s)", cycle.id, cycle.name)
    return cycle


# Movements ------------------------------------------------------------------

def record_movement(
    *,
    item_id: int,
    branch_id: int,
    movement_type: str,
    quantity: int,
    reference_type: str,
    reference_id: str | None = None,
    note: str | None = None,
    cycle_id: int | None = None,
) -> InventoryMovement | None:
    """
    Append a movement to the ledger (flush, no commit).

    Without an explicit cycle_id the active cycle is used; when no cycle is
    active nothing is recorded and None is returned.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of {MOVEMENT_TYPES}")
    if reference_type not in REFERENCE_TYPES:
        raise ValidationError(f"reference_type must be one of {REFERENCE_TYPES}")
    if quantity <= 0:
        raise ValidationError("quantity must be positive", {"quantity": quantity})

    if cycle_id is None:
        cycle = get_active_cycle()
        if cycle is None:
            return None
        cycle_id = cycle.id

    movement = InventoryMovement(
        item_id=item_id,
        branch_id=branch_id,
        cycle_id=cycle_id,
        movement_type=movement_type,
        quantity=int(quantity),
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def adjust_stock(branch_code: str, sku: str, delta, note: str | None = None, actor: str | None = None) -> InventoryMovement:
    """Manual stock correction: positive delta is In, negative is Out."""
    try:
        delta = int(delta)
    except (TypeError, ValueError):
        raise ValidationError("delta must be an integer", {"delta": delta})
    if delta == 0:
        raise ValidationError("delta must be non-zero")

    cycle = get_active_cycle()
    if cycle is None:
        raise StateError("No active inventory cycle")

    branch = get_branch_by_code(branch_code)
    item = get_item_by_sku(sku)
    movement = record_movement(
        item_id=item.id,
        branch_id=branch.id,
        movement_type="In" if delta > 0 else "Out",
        quantity=abs(delta),
        reference_type="adjustment",
        reference_id=actor,
        note=note,
        cycle_id=cycle.id,
    )
    db.session.commit()
    return movement


def ledger_balance(branch_code: str, sku: str, cycle_id: int | None = None) -> dict:
    """Sum of In minus Out movements for (branch, item) in a cycle (default: active)."""
    branch = get_branch_by_code(branch_code)
    item = get_item_by_sku(sku)
    if cycle_id is None:
        cycle = get_active_cycle()
        if cycle is None:
            raise StateError("No active inventory cycle")
        cycle_id = cycle.id

    signed = case(
        (InventoryMovement.movement_type == "In", InventoryMovement.quantity),
        else_=-InventoryMovement.quantity,
    )
    balance = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(
            InventoryMovement.branch_id == branch.id,
            InventoryMovement.item_id == item.id,
            InventoryMovement.cycle_id == cycle_id,
        )
        .scalar()
    )
    return {
        "branch_code": branch.code,
        "sku": item.sku,
        "cycle_id": cycle_id,
        "balance": int(balance or 0),
    }
