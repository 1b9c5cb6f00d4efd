# Overview: Member-facing order routes; parses input and returns JSON responses.

"""
Order Routes

- Members create orders for themselves only.
- Admins may create on behalf of any member.
- Reads are scoped: members see their own orders, reps their branch.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, scope_branch_id
from ..errors import CoopError
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@require_role("member", "admin")
def create_order_route():
    """
    Create a Pending order.

    Request body:
    {
        "member_id": "A12345",          (ignored for member sessions)
        "delivery_branch": "DUTSE",
        "department": "Ops",
        "payment_option": "Savings",
        "lines": [{"sku": "RICE50KG", "qty": 2}]
    }
    """
    data = request.get_json(silent=True) or {}
    member_id = g.member_id if g.role == "member" else data.get("member_id")

    try:
        order = order_service.create_order(
            member_id=member_id,
            delivery_branch_code=data.get("delivery_branch"),
            department_name=data.get("department"),
            payment_option=data.get("payment_option"),
            lines=data.get("lines"),
            actor=g.actor,
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 201
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(
            order_id,
            scope_branch_id=scope_branch_id(),
            member_id=g.member_id if g.role == "member" else None,
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
