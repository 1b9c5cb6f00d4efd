# Overview: Flask API routes for bulk imports; parses uploads and returns JSON responses.

"""
Import Routes

Supports CSV, JSON, and Excel (.xlsx) uploads, or a JSON body {"rows": [...]}.
"""

import csv
import io
import json

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..errors import CoopError, ValidationError
from ..services.import_service import IMPORTERS


imports_bp = Blueprint("imports", __name__, url_prefix="/api/admin/import")


def _rows_from_request() -> list:
    if "file" not in request.files:
        data = request.get_json(silent=True)
        if isinstance(data, dict):
            return data.get("rows") or []
        if isinstance(data, list):
            return data
        raise ValidationError("file is required")

    file = request.files["file"]
    filename = file.filename or ""
    ext = filename.split(".")[-1].lower()

    if ext == "csv":
        try:
            stream = io.StringIO(file.stream.read().decode("utf-8-sig"))
        except UnicodeDecodeError as exc:
            raise ValidationError("CSV file must be UTF-8 encoded", {"position": exc.start})
        reader = csv.DictReader(stream)
        return [row for row in reader]
    if ext == "json":
        try:
            rows = json.load(file.stream)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON: {exc}")
        if isinstance(rows, dict):
            rows = rows.get("rows", [])
        return rows
    if ext in {"xlsx", "xlsm", "xltx", "xltm"}:
        from openpyxl import load_workbook
        wb = load_workbook(file.stream, data_only=True)
        sheet = wb.active
        data = list(sheet.values)
        if not data:
            return []
        headers = [str(h) if h is not None else "" for h in data[0]]
        return [
            {headers[i]: row[i] for i in range(len(headers)) if headers[i]}
            for row in data[1:]
        ]
    raise ValidationError("Unsupported file type", {"extension": ext})


@imports_bp.post("/<kind>")
@require_auth
@require_role("admin")
def import_route(kind: str):
    """
    Import members, prices (items + branch prices) or markups.

    Returns the import summary including unknown_branches, missing_skus,
    unknown_departments and invalid_rows.
    """
    importer = IMPORTERS.get(kind)
    if importer is None:
        return jsonify({"error": f"Unknown import type {kind}"}), 404

    try:
        rows = _rows_from_request()
        result = importer(rows)
        return jsonify(result), 200
    except CoopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to import %s", kind)
        return jsonify({"error": "Internal server error"}), 500
