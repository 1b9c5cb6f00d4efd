# Overview: Markup administration routes.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..errors import CoopError
from ..services import pricing_service


markups_bp = Blueprint("markups", __name__, url_prefix="/api/admin/markups")


@markups_bp.get("")
@require_auth
@require_role("admin")
def list_markups_route():
    """Query params: branch (required), sku"""
    try:
        markups = pricing_service.list_markups(request.args.get("branch"), sku=request.args.get("sku"))
        return jsonify({"markups": [m.to_dict() for m in markups]}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@markups_bp.post("")
@require_auth
@require_role("admin")
def upsert_markup_route():
    """Body: {"branch": "DUTSE", "sku": "RICE50KG", "amount": 500}"""
    data = request.get_json(silent=True) or {}
    try:
        markup = pricing_service.upsert_markup(data.get("branch"), data.get("sku"), data.get("amount"))
        return jsonify({"markup": markup.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to upsert markup")
        return jsonify({"error": "Internal server error"}), 500


@markups_bp.post("/active")
@require_auth
@require_role("admin")
def set_markup_active_route():
    """Body: {"branch": "DUTSE", "sku": "RICE50KG", "active": false}"""
    data = request.get_json(silent=True) or {}
    active = data.get("active")
    if not isinstance(active, bool):
        return jsonify({"error": "active must be boolean"}), 400
    try:
        markup = pricing_service.set_markup_active(data.get("branch"), data.get("sku"), active)
        return jsonify({"markup": markup.to_dict()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to toggle markup")
        return jsonify({"error": "Internal server error"}), 500


@markups_bp.delete("")
@require_auth
@require_role("admin")
def delete_markup_route():
    """Query params (or JSON body): branch, sku"""
    data = request.get_json(silent=True) or {}
    branch = request.args.get("branch") or data.get("branch")
    sku = request.args.get("sku") or data.get("sku")
    try:
        pricing_service.delete_markup(branch, sku)
        return jsonify({"message": "Markup deleted"}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete markup")
        return jsonify({"error": "Internal server error"}), 500
