# Overview: Rep/admin order lifecycle routes; parses input and returns JSON responses.

"""
Order Administration Routes

SECURITY: All routes require authentication.
- Reps act only on orders routed to their bound delivery branch
- Delete and annotate are admin-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, scope_branch_id
from ..errors import CoopError
from ..services import order_service


admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


@admin_orders_bp.get("")
@require_auth
@require_role("admin", "rep")
def list_orders_route():
    """
    List orders.

    Query params: status, branch, department, member_id, payment_option,
    limit (default 200), offset.
    """
    try:
        orders, total = order_service.list_orders(
            status=request.args.get("status"),
            branch_code=request.args.get("branch"),
            department_name=request.args.get("department"),
            member_id=request.args.get("member_id"),
            payment_option=request.args.get("payment_option"),
            scope_branch_id=scope_branch_id(),
            limit=request.args.get("limit", 200, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"orders": [o.to_dict() for o in orders], "count": total}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@admin_orders_bp.post("/<int:order_id>/lines")
@require_auth
@require_role("admin", "rep")
def update_lines_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.update_lines(
            order_id,
            data.get("lines"),
            actor=g.actor,
            scope_branch_id=scope_branch_id(),
        )
        return jsonify({"order": order.to_dict(include_lines=True)}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order lines")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/post")
@require_auth
@require_role("admin", "rep")
def post_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.post_order(
            order_id,
            actor=g.actor,
            note=data.get("note"),
            scope_branch_id=scope_branch_id(),
        )
        return jsonify({"order": order.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post order")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/post-bulk")
@require_auth
@require_role("admin", "rep")
def post_orders_route():
    """Body: {"order_ids": [1, 2, 3]} -> {"posted": [...], "failed": [{"id", "error"}]}"""
    data = request.get_json(silent=True) or {}
    try:
        result = order_service.post_orders(
            data.get("order_ids"),
            actor=g.actor,
            scope_branch_id=scope_branch_id(),
        )
        return jsonify(result), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk post orders")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/deliver")
@require_auth
@require_role("admin", "rep")
def deliver_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.deliver_order(
            order_id,
            delivered_by=data.get("delivered_by") or g.actor,
            scope_branch_id=scope_branch_id(),
        )
        return jsonify({"order": order.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deliver order")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/deliver-bulk")
@require_auth
@require_role("admin", "rep")
def deliver_orders_route():
    """Body: {"order_ids": [...], "delivered_by": "rep1"}"""
    data = request.get_json(silent=True) or {}
    try:
        result = order_service.deliver_orders(
            data.get("order_ids"),
            delivered_by=data.get("delivered_by") or g.actor,
            scope_branch_id=scope_branch_id(),
        )
        return jsonify(result), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to bulk deliver orders")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role("admin", "rep")
def cancel_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.cancel_order(
            order_id,
            reason=data.get("reason"),
            actor=g.actor,
            scope_branch_id=scope_branch_id(),
        )
        return jsonify({"order": order.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.post("/<int:order_id>/delete")
@require_auth
@require_role("admin")
def delete_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        snapshot = order_service.delete_order(order_id, reason=data.get("reason"), actor=g.actor)
        return jsonify({"deleted": snapshot}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@admin_orders_bp.get("/<int:order_id>/deletion")
@require_auth
@require_role("admin")
def get_deletion_record_route(order_id: int):
    try:
        event = order_service.get_deletion_record(order_id)
        return jsonify({"deletion": event.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@admin_orders_bp.get("/<int:order_id>/events")
@require_auth
@require_role("admin")
def list_order_events_route(order_id: int):
    events = order_service.list_order_events(order_id)
    return jsonify({"events": [ev.to_dict() for ev in events]}), 200


@admin_orders_bp.post("/<int:order_id>/note")
@require_auth
@require_role("admin")
def annotate_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.annotate_order(order_id, note=data.get("note"), actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to annotate order")
        return jsonify({"error": "Internal server error"}), 500
