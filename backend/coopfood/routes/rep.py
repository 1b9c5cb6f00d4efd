# Overview: Rep-scoped reporting routes.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role
from ..errors import CoopError
from ..services import reporting_service


rep_bp = Blueprint("rep", __name__, url_prefix="/api/rep")


@rep_bp.get("/items-pack")
@require_auth
@require_role("rep")
def rep_items_pack_route():
    """Posted quantities for the rep's own branch. Query params: department"""
    try:
        pack = reporting_service.rep_items_pack(g.branch_id, department_name=request.args.get("department"))
        return jsonify(pack), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
