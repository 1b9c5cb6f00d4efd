# Overview: Demand aggregation across branches, departments and items.

from __future__ import annotations

from sqlalchemy import case, func

from ..extensions import db
from ..models import Branch, BranchItemMarkup, BranchItemPrice, Department, Item, Order, OrderLine
from .reference_service import get_branch_by_code, get_department_by_name


DEMAND_STATUSES = ("Pending", "Posted", "Delivered")


def _active_markup():
    return func.coalesce(
        func.max(case((BranchItemMarkup.active.is_(True), BranchItemMarkup.amount), else_=0)),
        0,
    )


def demand_report(
    branch_code: str | None = None,
    department_name: str | None = None,
    statuses=DEMAND_STATUSES,
) -> list[dict]:
    """
    Quantity and value by delivery branch, department and item.

    Prices are the delivery branch's current base price and active markup;
    Cancelled orders never contribute.
    """
    query = (
        db.session.query(
            Branch.code,
            Branch.name,
            Department.name,
            Item.sku,
            Item.name,
            Item.category,
            func.sum(OrderLine.qty),
            func.max(BranchItemPrice.price),
            _active_markup(),
        )
        .select_from(OrderLine)
        .join(Order, Order.id == OrderLine.order_id)
        .join(Branch, Branch.id == Order.delivery_branch_id)
        .join(Department, Department.id == Order.department_id)
        .join(Item, Item.id == OrderLine.item_id)
        .outerjoin(
            BranchItemPrice,
            db.and_(
                BranchItemPrice.branch_id == Order.delivery_branch_id,
                BranchItemPrice.item_id == OrderLine.item_id,
            ),
        )
        .outerjoin(
            BranchItemMarkup,
            db.and_(
                BranchItemMarkup.branch_id == Order.delivery_branch_id,
                BranchItemMarkup.item_id == OrderLine.item_id,
            ),
        )
        .filter(Order.status.in_(tuple(statuses)))
    )
    if branch_code:
        query = query.filter(Order.delivery_branch_id == get_branch_by_code(branch_code).id)
    if department_name:
        query = query.filter(Order.department_id == get_department_by_name(department_name).id)

    rows = []
    grouped = query.group_by(
        Branch.code, Branch.name, Department.name, Item.sku, Item.name, Item.category
    ).order_by(Branch.code, Department.name, Item.category, Item.name)
    for code, bname, dept, sku, iname, category, qty, base, markup in grouped:
        base, markup = int(base or 0), int(markup or 0)
        qty = int(qty or 0)
        rows.append({
            "branch_code": code,
            "branch_name": bname,
            "department": dept,
            "sku": sku,
            "item_name": iname,
            "category": category,
            "quantity": qty,
            "base_price": base,
            "markup": markup,
            "price": base + markup,
            "amount": qty * (base + markup),
        })
    return rows


def branch_item_totals(branch_id: int, department_id: int | None = None, statuses=DEMAND_STATUSES) -> list[dict]:
    """Per-item quantity for one delivery branch, priced at that branch."""
    query = (
        db.session.query(
            Item.sku,
            Item.name,
            Item.category,
            func.sum(OrderLine.qty),
            func.max(BranchItemPrice.price),
            _active_markup(),
        )
        .select_from(OrderLine)
        .join(Order, Order.id == OrderLine.order_id)
        .join(Item, Item.id == OrderLine.item_id)
        .outerjoin(
            BranchItemPrice,
            db.and_(BranchItemPrice.branch_id == branch_id, BranchItemPrice.item_id == OrderLine.item_id),
        )
        .outerjoin(
            BranchItemMarkup,
            db.and_(BranchItemMarkup.branch_id == branch_id, BranchItemMarkup.item_id == OrderLine.item_id),
        )
        .filter(Order.delivery_branch_id == branch_id, Order.status.in_(tuple(statuses)))
    )
    if department_id is not None:
        query = query.filter(Order.department_id == department_id)

    rows = []
    for sku, name, category, qty, base, markup in (
        query.group_by(Item.sku, Item.name, Item.category).order_by(Item.category, Item.name)
    ):
        base, markup = int(base or 0), int(markup or 0)
        rows.append({
            "sku": sku,
            "item_name": name,
            "category": category,
            "quantity": int(qty or 0),
            "base_price": base,
            "markup": markup,
        })
    return rows


def rep_items_pack(branch_id: int, department_name: str | None = None) -> dict:
    """Posted-only item totals for a rep's own delivery branch."""
    branch = db.session.get(Branch, branch_id)
    department = get_department_by_name(department_name) if department_name else None
    rows = branch_item_totals(
        branch_id,
        department_id=department.id if department else None,
        statuses=("Posted",),
    )
    for row in rows:
        row["price"] = row["base_price"] + row["markup"]
        row["amount"] = row["quantity"] * row["price"]
    return {
        "branch_code": branch.code if branch else None,
        "branch_name": branch.name if branch else None,
        "department": department.name if department else None,
        "rows": rows,
        "total_quantity": sum(row["quantity"] for row in rows),
        "total_amount": sum(row["amount"] for row in rows),
    }
