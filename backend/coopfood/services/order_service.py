# Overview: Order lifecycle state machine with audit events and stock reservations.

from __future__ import annotations

from collections import OrderedDict
from typing import Any

from flask import current_app

from ..extensions import db
from ..errors import CoopError, NotFoundError, ScopeError, StateError, ValidationError
from ..models import Item, Order, OrderEvent, OrderLine, ORDER_STATUSES, PAYMENT_OPTIONS
from ..time_utils import utcnow
from . import eligibility_service, inventory_service, settings_service
from .concurrency import conditional_transition, lock_for_update, run_with_retry
from .pricing_service import quote_prices
from .reference_service import (
    get_branch_by_code,
    get_department_by_name,
    get_member,
    normalize_code,
)


"""
Order Lifecycle Invariants

- Pending -> Posted | Cancelled | Deleted; Posted -> Delivered.
  Everything else is a StateError and leaves the order untouched.
- Status transitions are conditional UPDATEs (WHERE status = expected),
  so of two concurrent identical transitions exactly one succeeds.
- total_amount == sum(line.qty * line.unit_price) after every write.
- Lines are replaceable only while Pending; unit prices are re-resolved at
  the current effective price on every replacement.
- Every transition appends an OrderEvent inside the same transaction.
- Reps are bound to one delivery branch (scope_branch_id); acting on an
  order routed elsewhere is a ScopeError.
"""


# Events ---------------------------------------------------------------------

def append_order_event(
    *,
    order_id: int,
    event_type: str,
    actor: str | None = None,
    reason: str | None = None,
    payload: dict[str, Any] | None = None,
) -> OrderEvent:
    """Append-only. Flushes but does not commit; the caller owns the transaction."""
    ev = OrderEvent(
        order_id=order_id,
        event_type=event_type,
        actor=actor,
        reason=reason,
        payload=payload,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_order_events(order_id: int) -> list[OrderEvent]:
    return (
        db.session.query(OrderEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderEvent.occurred_at, OrderEvent.id)
        .all()
    )


def get_deletion_record(order_id: int) -> OrderEvent:
    ev = (
        db.session.query(OrderEvent)
        .filter_by(order_id=order_id, event_type="order.deleted")
        .order_by(OrderEvent.id.desc())
        .first()
    )
    if not ev:
        raise NotFoundError(f"No deletion record for order {order_id}", {"id": order_id})
    return ev


# Lines ----------------------------------------------------------------------

def _whole_quantity(value: Any) -> int | None:
    """Integral quantities only; 2, 2.0 and "2" pass, 1.9, "1.5" and True do not."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("+-").isdigit():
            return int(text)
    return None


def _merge_lines(lines) -> "OrderedDict[str, int]":
    """Validate raw lines and merge duplicate skus by summing quantities."""
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one line is required")

    merged: OrderedDict[str, int] = OrderedDict()
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("Each line must be an object", {"line": index})
        sku = normalize_code(line.get("sku"))
        if not sku:
            raise ValidationError("Line sku is required", {"line": index})
        qty = _whole_quantity(line.get("qty"))
        if qty is None:
            raise ValidationError("Line qty must be an integer", {"line": index, "sku": sku})
        if qty <= 0:
            raise ValidationError("Line qty must be positive", {"line": index, "sku": sku, "qty": qty})
        merged[sku] = merged.get(sku, 0) + qty
    return merged


def _price_lines(branch_id: int, merged) -> tuple[list[dict], int]:
    items = db.session.query(Item).filter(Item.sku.in_(list(merged.keys()))).all()
    by_sku = {item.sku: item for item in items}
    missing = [sku for sku in merged if sku not in by_sku]
    if missing:
        raise NotFoundError("Unknown sku", {"skus": missing})

    quotes = quote_prices(branch_id, [item.id for item in items])
    unpriced = [sku for sku in merged if by_sku[sku].id not in quotes]
    if unpriced:
        raise NotFoundError("Item is not priced at the delivery branch", {"skus": unpriced})

    priced = []
    total = 0
    for sku, qty in merged.items():
        item = by_sku[sku]
        unit_price = quotes[item.id].price
        priced.append({"item_id": item.id, "sku": sku, "qty": qty, "unit_price": unit_price})
        total += qty * unit_price
    return priced, total


def _check_scope(order: Order, scope_branch_id: int | None) -> None:
    if scope_branch_id is not None and order.delivery_branch_id != scope_branch_id:
        raise ScopeError(
            f"Order {order.id} is outside your branch",
            {"id": order.id},
        )


def _load_order(order_id: int, *, for_update: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == order_id)
    if for_update:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found", {"id": order_id})
    return order


def _atomic(func):
    """Run func under run_with_retry; roll back before any domain error escapes."""
    def _op():
        try:
            return func()
        except CoopError:
            db.session.rollback()
            raise
    return run_with_retry(_op)


# Commands -------------------------------------------------------------------

def create_order(
    *,
    member_id: str,
    delivery_branch_code: str,
    department_name: str,
    payment_option: str,
    lines: list[dict],
    actor: str | None = None,
) -> Order:
    """
    Create a Pending order.

    Raises:
        StateError: shopping window closed
        ValidationError: empty lines, bad qty, unknown payment option
        NotFoundError: member/branch/department/sku unresolved or unpriced
        LimitExceededError: total above the option's eligible amount
    """
    if not settings_service.is_shopping_open():
        raise StateError("Shopping is currently closed")
    if payment_option not in PAYMENT_OPTIONS:
        raise ValidationError(
            f"payment_option must be one of {', '.join(PAYMENT_OPTIONS)}",
            {"payment_option": payment_option},
        )
    merged = _merge_lines(lines)

    def _op():
        member = get_member(member_id)
        branch = get_branch_by_code(delivery_branch_code)
        department = get_department_by_name(department_name)
        priced, total = _price_lines(branch.id, merged)

        eligibility_service.check_admission(member, payment_option, total)

        order = Order(
            member_id=member.member_id,
            member_name_snapshot=member.full_name,
            member_category_snapshot=member.category,
            branch_id=member.branch_id,
            delivery_branch_id=branch.id,
            department_id=department.id,
            payment_option=payment_option,
            status="Pending",
            total_amount=total,
        )
        for line in priced:
            order.lines.append(OrderLine(item_id=line["item_id"], qty=line["qty"], unit_price=line["unit_price"]))
        db.session.add(order)
        db.session.flush()

        append_order_event(
            order_id=order.id,
            event_type="order.created",
            actor=actor or member.member_id,
            payload={"total_amount": total, "lines": priced},
        )
        db.session.commit()
        return order

    return _atomic(_op)


def update_lines(
    order_id: int,
    lines: list[dict],
    *,
    actor: str | None = None,
    scope_branch_id: int | None = None,
) -> Order:
    """Replace the full line set of a Pending order, re-pricing every line."""
    merged = _merge_lines(lines)

    def _op():
        order = _load_order(order_id, for_update=True)
        _check_scope(order, scope_branch_id)
        if order.status != "Pending":
            raise StateError(
                f"Order {order_id} is {order.status}; only Pending orders can be edited",
                {"id": order_id, "status": order.status},
            )

        priced, total = _price_lines(order.delivery_branch_id, merged)
        eligibility_service.check_admission(
            order.member, order.payment_option, total, exclude_order_id=order.id
        )

        previous_total = order.total_amount
        order.lines.clear()
        db.session.flush()
        for line in priced:
            order.lines.append(OrderLine(item_id=line["item_id"], qty=line["qty"], unit_price=line["unit_price"]))
        order.total_amount = total
        order.updated_at = utcnow()
        db.session.flush()

        append_order_event(
            order_id=order.id,
            event_type="order.lines_replaced",
            actor=actor,
            payload={"previous_total": previous_total, "total_amount": total, "lines": priced},
        )
        db.session.commit()
        return order

    return _atomic(_op)


def post_order(
    order_id: int,
    *,
    actor: str | None = None,
    note: str | None = None,
    scope_branch_id: int | None = None,
) -> Order:
    """Pending -> Posted. Reserves stock for each line in the active cycle."""
    def _op():
        order = _load_order(order_id)
        _check_scope(order, scope_branch_id)

        now = utcnow()
        values = {"status": "Posted", "posted_at": now, "posted_by": actor, "updated_at": now}
        if note:
            values["note"] = note
        conditional_transition(Order, order_id, expected_status="Pending", values=values)

        lines = db.session.query(OrderLine).filter_by(order_id=order_id).all()
        for line in lines:
            inventory_service.record_movement(
                item_id=line.item_id,
                branch_id=order.delivery_branch_id,
                movement_type="Out",
                quantity=line.qty,
                reference_type="reservation",
                reference_id=str(order_id),
            )

        append_order_event(order_id=order_id, event_type="order.posted", actor=actor, reason=note)
        db.session.commit()
        return order

    return _atomic(_op)


def deliver_order(
    order_id: int,
    *,
    delivered_by: str,
    scope_branch_id: int | None = None,
) -> Order:
    """Posted -> Delivered."""
    if not (delivered_by or "").strip():
        raise ValidationError("delivered_by is required")

    def _op():
        order = _load_order(order_id)
        _check_scope(order, scope_branch_id)

        now = utcnow()
        conditional_transition(
            Order,
            order_id,
            expected_status="Posted",
            values={"status": "Delivered", "delivered_at": now, "delivered_by": delivered_by, "updated_at": now},
        )
        append_order_event(order_id=order_id, event_type="order.delivered", actor=delivered_by)
        db.session.commit()
        return order

    return _atomic(_op)


def cancel_order(
    order_id: int,
    *,
    reason: str,
    actor: str | None = None,
    scope_branch_id: int | None = None,
) -> Order:
    """Pending -> Cancelled."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        order = _load_order(order_id)
        _check_scope(order, scope_branch_id)

        now = utcnow()
        conditional_transition(
            Order,
            order_id,
            expected_status="Pending",
            values={
                "status": "Cancelled",
                "cancelled_at": now,
                "cancelled_by": actor,
                "cancel_reason": reason,
                "updated_at": now,
            },
        )
        append_order_event(order_id=order_id, event_type="order.cancelled", actor=actor, reason=reason)
        db.session.commit()
        return order

    return _atomic(_op)


def delete_order(order_id: int, *, reason: str, actor: str | None = None) -> dict:
    """
    Remove a Pending order and its lines.

    Returns the order snapshot; the snapshot and reason stay retrievable via
    get_deletion_record.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        order = _load_order(order_id)
        if order.status != "Pending":
            raise StateError(
                f"Order {order_id} is {order.status}; only Pending orders can be deleted",
                {"id": order_id, "status": order.status},
            )
        snapshot = order.to_dict(include_lines=True)
        db.session.expunge(order)

        db.session.query(OrderLine).filter(OrderLine.order_id == order_id).delete(synchronize_session=False)
        deleted = (
            db.session.query(Order)
            .filter(Order.id == order_id, Order.status == "Pending")
            .delete(synchronize_session=False)
        )
        if deleted != 1:
            raise StateError(f"Order {order_id} changed state during deletion", {"id": order_id})

        append_order_event(
            order_id=order_id,
            event_type="order.deleted",
            actor=actor,
            reason=reason,
            payload=snapshot,
        )
        db.session.commit()
        return snapshot

    return _atomic(_op)


def annotate_order(order_id: int, *, note: str | None, actor: str | None = None) -> Order:
    """Set the administrative note; allowed in every status."""
    def _op():
        order = _load_order(order_id)
        order.note = (note or "").strip() or None
        order.updated_at = utcnow()
        append_order_event(order_id=order_id, event_type="order.annotated", actor=actor, reason=order.note)
        db.session.commit()
        return order

    return _atomic(_op)


def _bulk(order_ids, transition, success_key: str) -> dict:
    if not isinstance(order_ids, list) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")

    succeeded: list[int] = []
    failed: list[dict] = []
    for raw_id in order_ids:
        try:
            order_id = int(raw_id)
        except (TypeError, ValueError):
            failed.append({"id": raw_id, "error": "invalid order id"})
            continue
        try:
            transition(order_id)
            succeeded.append(order_id)
        except CoopError as exc:
            current_app.logger.warning("Bulk %s failed for order %s: %s", success_key, order_id, exc)
            failed.append({"id": order_id, "error": str(exc)})
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Bulk %s crashed for order %s", success_key, order_id)
            failed.append({"id": order_id, "error": f"{type(exc).__name__}: {exc}"})
    return {success_key: succeeded, "failed": failed}


def post_orders(order_ids, *, actor: str | None = None, scope_branch_id: int | None = None) -> dict:
    """Post each order independently -> {"posted": [...], "failed": [{"id", "error"}]}."""
    return _bulk(
        order_ids,
        lambda oid: post_order(oid, actor=actor, scope_branch_id=scope_branch_id),
        "posted",
    )


def deliver_orders(order_ids, *, delivered_by: str, scope_branch_id: int | None = None) -> dict:
    """Deliver each order independently -> {"delivered": [...], "failed": [{"id", "error"}]}."""
    if not (delivered_by or "").strip():
        raise ValidationError("delivered_by is required")
    return _bulk(
        order_ids,
        lambda oid: deliver_order(oid, delivered_by=delivered_by, scope_branch_id=scope_branch_id),
        "delivered",
    )


# Queries --------------------------------------------------------------------

def get_order(order_id: int, *, scope_branch_id: int | None = None, member_id: str | None = None) -> Order:
    order = _load_order(order_id)
    _check_scope(order, scope_branch_id)
    if member_id is not None and order.member_id != normalize_code(member_id):
        raise NotFoundError(f"Order {order_id} not found", {"id": order_id})
    return order


def list_orders(
    *,
    status: str | None = None,
    branch_code: str | None = None,
    department_name: str | None = None,
    member_id: str | None = None,
    payment_option: str | None = None,
    scope_branch_id: int | None = None,
    limit: int = 200,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.session.query(Order)

    if status:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}", {"status": status})
        query = query.filter(Order.status == status)
    if branch_code:
        query = query.filter(Order.delivery_branch_id == get_branch_by_code(branch_code).id)
    if scope_branch_id is not None:
        query = query.filter(Order.delivery_branch_id == scope_branch_id)
    if department_name:
        query = query.filter(Order.department_id == get_department_by_name(department_name).id)
    if member_id:
        query = query.filter(Order.member_id == normalize_code(member_id))
    if payment_option:
        query = query.filter(Order.payment_option == payment_option)

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(max(1, min(int(limit), 1000)))
        .offset(max(0, int(offset)))
        .all()
    )
    return orders, total


def member_orders(member_id: str) -> list[Order]:
    member = get_member(member_id)
    return (
        db.session.query(Order)
        .filter(Order.member_id == member.member_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
