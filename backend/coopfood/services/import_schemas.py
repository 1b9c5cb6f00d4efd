from __future__ import annotations

import math
import re
from typing import Any

from ..errors import ValidationError


_TRUE_WORDS = {"true", "yes", "y", "1"}
_FALSE_WORDS = {"false", "no", "n", "0"}


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_upper(value: Any) -> str | None:
    text = _to_text(value)
    return text.upper() if text else None


def _to_name(value: Any) -> str | None:
    text = _to_text(value)
    return " ".join(text.split()) if text else None


def _to_amount(value: Any) -> int | None:
    """Whole currency units; tolerates thousands separators and a currency sign."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("not a number")
    if isinstance(value, int):
        return value
    if not isinstance(value, float):
        text = re.sub(r"[,\s₦$]", "", str(value))
        if not text:
            return None
        value = float(text)
    if not math.isfinite(value):
        raise ValueError("not a finite number")
    return int(round(value))


def _to_bool(value: Any) -> bool:
    """yes/y/true/1 -> True, no/n/false/0 -> False, anything else (blank included) -> True."""
    if isinstance(value, bool):
        return value
    text = str(value if value is not None else "").strip().lower()
    if text in _FALSE_WORDS:
        return False
    return True


def normalize_header(name: Any) -> str:
    return re.sub(r"[\s\-]+", "_", str(name or "").strip().lower())


class ImportSchema:
    """
    Explicit column schema for one import sheet.

    columns maps canonical column -> sanitizer; aliases map alternate
    headers onto canonical ones. Sanitizer failures mark the row invalid.
    """

    name = ""
    columns: dict = {}
    required: tuple = ()
    aliases: dict = {}
    non_negative: tuple = ()

    def canonical_headers(self, raw_rows: list[dict[str, Any]]) -> set[str]:
        headers: set[str] = set()
        for row in raw_rows:
            for key in row.keys():
                header = normalize_header(key)
                headers.add(self.aliases.get(header, header))
        return headers

    def check_headers(self, raw_rows: list[dict[str, Any]]) -> set[str]:
        """Raise ValidationError naming any required column the sheet lacks."""
        headers = self.canonical_headers(raw_rows)
        missing = [column for column in self.required if column not in headers]
        if missing:
            raise ValidationError(
                f"{self.name} sheet is missing required columns: {', '.join(missing)}",
                {"missing_columns": missing},
            )
        return headers

    def normalize_row(self, raw_row: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
        row: dict[str, Any] = {}
        errors: list[str] = []
        for key, value in raw_row.items():
            header = normalize_header(key)
            column = self.aliases.get(header, header)
            sanitizer = self.columns.get(column)
            if sanitizer is None or column in row:
                continue
            try:
                row[column] = sanitizer(value)
            except (TypeError, ValueError):
                errors.append(f"{column} is invalid: {value!r}")
        errors.extend(self.validate_row(row))
        return row, errors

    def validate_row(self, row: dict[str, Any]) -> list[str]:
        errors = [f"{column} is required" for column in self.required if row.get(column) in (None, "")]
        for column in self.non_negative:
            value = row.get(column)
            if value is not None and value < 0:
                errors.append(f"{column} must be >= 0")
        return errors


class MembersSchema(ImportSchema):
    name = "members"
    columns = {
        "member_id": _to_upper,
        "full_name": _to_name,
        "category": _to_upper,
        "grade": _to_name,
        "savings": _to_amount,
        "loans": _to_amount,
        "global_limit": _to_amount,
        "branch_code": _to_upper,
        "department": _to_name,
    }
    required = ("member_id", "full_name")
    aliases = {"name": "full_name", "branch": "branch_code", "department_name": "department"}
    non_negative = ("savings", "loans", "global_limit")


class PricesSchema(ImportSchema):
    name = "prices"
    columns = {
        "sku": _to_upper,
        "item_name": _to_name,
        "unit": _to_text,
        "category": _to_text,
        "image_ref": _to_text,
        "branch_code": _to_upper,
        "price": _to_amount,
        "initial_stock": _to_amount,
    }
    required = ("sku", "item_name", "branch_code", "price")
    aliases = {"name": "item_name", "branch": "branch_code", "stock": "initial_stock"}
    non_negative = ("price", "initial_stock")


class MarkupsSchema(ImportSchema):
    name = "markups"
    columns = {
        "branch_code": _to_upper,
        "sku": _to_upper,
        "amount": _to_amount,
        "active": _to_bool,
    }
    required = ("branch_code", "sku", "amount")
    aliases = {"branch": "branch_code", "markup": "amount"}
    non_negative = ("amount",)


SCHEMAS = {
    "members": MembersSchema(),
    "prices": PricesSchema(),
    "markups": MarkupsSchema(),
}
