# Overview: Member lookups, eligibility and assignment routes.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import CoopError
from ..services import eligibility_service, order_service
from ..services.reference_service import get_member, normalize_code, update_member_assignment


members_bp = Blueprint("members", __name__, url_prefix="/api/members")


def _own_member_only(member_id: str):
    """Members may only read their own records."""
    if g.role == "member" and normalize_code(member_id) != g.member_id:
        return jsonify({"error": "Permission denied"}), 403
    return None


@members_bp.get("/<member_id>")
@require_auth
def get_member_route(member_id: str):
    denied = _own_member_only(member_id)
    if denied:
        return denied
    try:
        return jsonify({"member": get_member(member_id).to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@members_bp.get("/<member_id>/eligibility")
@require_auth
def member_eligibility_route(member_id: str):
    denied = _own_member_only(member_id)
    if denied:
        return denied
    try:
        member = get_member(member_id)
        return jsonify({"eligibility": eligibility_service.compute_eligibility(member)}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@members_bp.get("/<member_id>/orders")
@require_auth
def member_orders_route(member_id: str):
    denied = _own_member_only(member_id)
    if denied:
        return denied
    try:
        orders = order_service.member_orders(member_id)
        return jsonify({"orders": [o.to_dict(include_lines=True) for o in orders]}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@members_bp.post("/<member_id>/assignment")
@require_auth
@require_role("admin")
def update_member_assignment_route(member_id: str):
    """Body: {"branch_code": "DUTSE", "department": "Ops"} (either key optional)"""
    data = request.get_json(silent=True) or {}
    try:
        member = update_member_assignment(
            member_id,
            branch_code=data.get("branch_code"),
            department_name=data.get("department"),
        )
        return jsonify({"member": member.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update member assignment")
        return jsonify({"error": "Internal server error"}), 500
