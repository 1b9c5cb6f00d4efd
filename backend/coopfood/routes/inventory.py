# Overview: Inventory reconciliation, cycle and stock movement routes.

"""
Inventory Routes

- Status/low views are readable by admins and reps (reps see their branch)
- Adjustments and cycle changes are admin-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, scope_branch_id
from ..errors import CoopError
from ..extensions import db
from ..models import Branch
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/admin/inventory")


def _branch_filter() -> str | None:
    """Reps are pinned to their own branch regardless of the query string."""
    scoped = scope_branch_id()
    if scoped is not None:
        branch = db.session.get(Branch, scoped)
        return branch.code if branch else None
    return request.args.get("branch")


@inventory_bp.get("/status")
@require_auth
@require_role("admin", "rep")
def inventory_status_route():
    """Query params: branch, sku"""
    try:
        rows = inventory_service.get_inventory_status(
            branch_code=_branch_filter(),
            sku=request.args.get("sku"),
        )
        return jsonify({"rows": rows, "count": len(rows)}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/low")
@require_auth
@require_role("admin", "rep")
def low_stock_route():
    try:
        rows = inventory_service.low_stock(branch_code=_branch_filter())
        return jsonify({"rows": rows, "count": len(rows)}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/departments")
@require_auth
@require_role("admin", "rep")
def department_demand_route():
    try:
        rows = inventory_service.department_demand(branch_code=_branch_filter())
        return jsonify({"rows": rows}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/adjust")
@require_auth
@require_role("admin")
def adjust_stock_route():
    """Body: {"branch": "DUTSE", "sku": "RICE50KG", "delta": -3, "note": "damaged"}"""
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.adjust_stock(
            data.get("branch"),
            data.get("sku"),
            data.get("delta"),
            note=data.get("note"),
            actor=g.actor,
        )
        balance = inventory_service.ledger_balance(data.get("branch"), data.get("sku"))
        return jsonify({"movement": movement.to_dict(), "balance": balance}), 201
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/balance")
@require_auth
@require_role("admin")
def ledger_balance_route():
    """Query params: branch, sku, cycle_id (default: active cycle)"""
    try:
        balance = inventory_service.ledger_balance(
            request.args.get("branch"),
            request.args.get("sku"),
            cycle_id=request.args.get("cycle_id", type=int),
        )
        return jsonify(balance), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/cycles")
@require_auth
@require_role("admin")
def open_cycle_route():
    data = request.get_json(silent=True) or {}
    try:
        cycle = inventory_service.open_cycle(data.get("name"))
        return jsonify({"cycle": cycle.to_dict()}), 201
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open cycle")
        return jsonify({"error": "Internal server error"}), 500
