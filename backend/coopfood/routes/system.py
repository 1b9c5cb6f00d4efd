# Overview: Health check and shopping window routes.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..errors import CoopError
from ..services import settings_service


system_bp = Blueprint("system", __name__, url_prefix="/api/system")


@system_bp.get("/health")
def health():
    return {"status": "ok"}


@system_bp.get("/shopping")
def get_shopping_route():
    return jsonify({"open": settings_service.is_shopping_open()}), 200


@system_bp.post("/shopping")
@require_auth
@require_role("admin")
def set_shopping_route():
    """Body: {"open": true}"""
    data = request.get_json(silent=True) or {}
    try:
        is_open = settings_service.set_shopping_open(data.get("open"))
        current_app.logger.info("Shopping window %s", "opened" if is_open else "closed")
        return jsonify({"open": is_open}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
