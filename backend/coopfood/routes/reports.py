# Overview: Demand reporting and workbook export routes.

"""
Reporting Routes

SECURITY: admin-only. Demand reads are throttled through the shared
rate_limit_hits table (REPORT_RATE_LIMIT per REPORT_RATE_WINDOW_SECONDS per
session); over-limit callers receive 429 with Retry-After.
"""

import io

from flask import Blueprint, request, jsonify, g, current_app, send_file

from ..decorators import require_auth, require_role
from ..errors import CoopError
from ..services import export_service, rate_limit_service, reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@reports_bp.get("/demand")
@require_auth
@require_role("admin")
def demand_report_route():
    """Query params: branch, department"""
    allowed, retry_after = rate_limit_service.hit(
        "reports.demand",
        f"session:{g.session_context.session.id}",
        limit=int(current_app.config.get("REPORT_RATE_LIMIT", 30)),
        window_seconds=int(current_app.config.get("REPORT_RATE_WINDOW_SECONDS", 60)),
    )
    if not allowed:
        response = jsonify({"error": "Too many requests", "retry_after": retry_after})
        response.status_code = 429
        response.headers["Retry-After"] = str(retry_after)
        return response

    try:
        rows = reporting_service.demand_report(
            branch_code=request.args.get("branch"),
            department_name=request.args.get("department"),
        )
        return jsonify({
            "rows": rows,
            "total_quantity": sum(r["quantity"] for r in rows),
            "total_amount": sum(r["amount"] for r in rows),
        }), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code


@reports_bp.get("/items-pack")
@require_auth
@require_role("admin")
def items_pack_route():
    """
    Items-pack workbook (.xlsx).

    Query params: branches=CODE1,CODE2 (default: all branches)
    Branches whose aggregation kept failing appear as placeholder sheets;
    their warnings are returned in the X-Export-Warnings header.
    """
    raw = request.args.get("branches") or ""
    codes = [code.strip() for code in raw.split(",") if code.strip()]

    try:
        result = export_service.export_items_pack(codes or None)
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to export items pack")
        return jsonify({"error": "Internal server error"}), 500

    response = send_file(
        io.BytesIO(result.content),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=result.filename,
    )
    if result.warnings:
        response.headers["X-Export-Warnings"] = "; ".join(result.warnings)
    return response
