# Overview: Public reference data routes (branches, departments, items).

from flask import Blueprint, request, jsonify

from ..errors import CoopError
from ..services import pricing_service, reference_service


reference_bp = Blueprint("reference", __name__, url_prefix="/api")


@reference_bp.get("/branches")
def list_branches_route():
    return jsonify({"branches": reference_service.list_branches()}), 200


@reference_bp.get("/departments")
def list_departments_route():
    return jsonify({"departments": reference_service.list_departments()}), 200


@reference_bp.get("/items")
def list_items_route():
    """With ?branch=CODE returns only items priced there, with effective prices."""
    branch = request.args.get("branch")
    try:
        if branch:
            return jsonify({"items": pricing_service.branch_price_list(branch)}), 200
        return jsonify({"items": reference_service.list_items()}), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
