# Overview: Bulk import of members, items+prices and markups through the generic upsert.

from __future__ import annotations

from typing import Any

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import Branch, BranchItemMarkup, BranchItemPrice, Department, GradeLimit, Item, Member
from .import_schemas import SCHEMAS, ImportSchema
from .inventory_service import get_active_cycle, record_movement
from .upsert_service import upsert_rows


class _ReferenceLookup:
    """
    Read-through natural key -> id maps, each loaded on first use.

    Items can be reloaded after the items upsert so price rows resolve skus
    created in the same import.
    """

    def __init__(self):
        self._branches: dict[str, int] | None = None
        self._departments: dict[str, int] | None = None
        self._items: dict[str, int] | None = None
        self._grades: dict[str, int] | None = None

    def branch_id(self, code: str) -> int | None:
        if self._branches is None:
            self._branches = {value.upper(): bid for bid, value in db.session.query(Branch.id, Branch.code)}
        return self._branches.get(code.upper())

    def department_id(self, name: str) -> int | None:
        if self._departments is None:
            self._departments = {
                " ".join(value.split()).lower(): did
                for did, value in db.session.query(Department.id, Department.name)
            }
        return self._departments.get(" ".join(name.split()).lower())

    def item_id(self, sku: str) -> int | None:
        if self._items is None:
            self._items = {value.upper(): iid for iid, value in db.session.query(Item.id, Item.sku)}
        return self._items.get(sku.upper())

    def refresh_items(self) -> None:
        self._items = None

    def grade_limit(self, grade: str) -> int | None:
        if self._grades is None:
            self._grades = {
                " ".join((g or "").split()).lower(): int(limit or 0)
                for g, limit in db.session.query(GradeLimit.grade, GradeLimit.global_limit)
            }
        return self._grades.get(" ".join(grade.split()).lower())


def _validate_rows(schema: ImportSchema, raw_rows) -> tuple[list[tuple[int, dict]], list[dict]]:
    if not isinstance(raw_rows, list) or not raw_rows:
        raise ValidationError("No rows found")
    if not all(isinstance(row, dict) for row in raw_rows):
        raise ValidationError("Rows must be objects keyed by column name")

    schema.check_headers(raw_rows)

    valid: list[tuple[int, dict]] = []
    invalid: list[dict] = []
    # Row 1 is the header row in spreadsheet terms
    for row_number, raw_row in enumerate(raw_rows, start=2):
        if all(value in (None, "") for value in raw_row.values()):
            continue
        row, errors = schema.normalize_row(raw_row)
        if errors:
            invalid.append({"row": row_number, "errors": errors})
        else:
            valid.append((row_number, row))
    return valid, invalid


def _require_resolvable_branches(seen: set[str], unknown: set[str]) -> None:
    """Fail the whole batch when branch codes were given and none of them exist."""
    if seen and unknown >= seen:
        raise ValidationError(
            f"No valid branch codes in import: {', '.join(sorted(unknown))}",
            {"unknown_branches": sorted(unknown)},
        )


def _finish(result: dict[str, Any]) -> dict[str, Any]:
    db.session.commit()
    db.session.expire_all()
    return result


def import_members(raw_rows, *, chunk_size: int | None = None) -> dict[str, Any]:
    """
    Upsert members keyed by member_id.

    Optional columns (balances, grade, branch, department) are written only
    when a row carries them, so partial sheets never clear existing values.
    """
    valid, invalid = _validate_rows(SCHEMAS["members"], raw_rows)
    lookup = _ReferenceLookup()
    seen_branches: set[str] = set()
    unknown_branches: set[str] = set()
    unknown_departments: set[str] = set()
    skipped: list[dict] = []

    prepared = []
    for row_number, row in valid:
        member_id = row["member_id"]
        grade = row.get("grade")
        global_limit = row.get("global_limit")
        if global_limit is None and grade:
            default_limit = lookup.grade_limit(grade)
            if default_limit is not None:
                global_limit = default_limit

        data = {
            "member_id": member_id,
            "full_name": row["full_name"],
            "category": row.get("category") or member_id[0],
        }
        for column, value in (
            ("grade", grade),
            ("savings", row.get("savings")),
            ("loans", row.get("loans")),
            ("global_limit", global_limit),
        ):
            if value is not None:
                data[column] = value

        branch_code = row.get("branch_code")
        if branch_code:
            seen_branches.add(branch_code)
            branch_id = lookup.branch_id(branch_code)
            if branch_id is None:
                unknown_branches.add(branch_code)
                skipped.append({"row": row_number, "reason": f"unknown branch {branch_code}"})
                continue
            data["branch_id"] = branch_id

        department = row.get("department")
        if department:
            department_id = lookup.department_id(department)
            if department_id is None:
                unknown_departments.add(department)
                skipped.append({"row": row_number, "reason": f"unknown department {department}"})
                continue
            data["department_id"] = department_id

        prepared.append(data)

    _require_resolvable_branches(seen_branches, unknown_branches)

    try:
        result = upsert_rows(Member, prepared, conflict_keys=("member_id",), chunk_size=chunk_size)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Members import: %s upserted, %s inserted, %s invalid, %s skipped",
        result["upserted"], result["inserted"], len(invalid), len(skipped),
    )
    result.update({
        "unknown_branches": sorted(unknown_branches),
        "unknown_departments": sorted(unknown_departments),
        "missing_skus": [],
        "invalid_rows": invalid,
        "skipped_rows": skipped,
    })
    return _finish(result)


def import_prices(raw_rows, *, chunk_size: int | None = None) -> dict[str, Any]:
    """
    Upsert items (keyed by sku) then branch prices (keyed by branch+item).

    Initial stock changes are mirrored into the active cycle's movement
    ledger: a new pair records a purchase In, a changed pair an adjustment
    by the delta, an unchanged pair nothing.
    """
    valid, invalid = _validate_rows(SCHEMAS["prices"], raw_rows)
    lookup = _ReferenceLookup()
    seen_branches: set[str] = set()
    unknown_branches: set[str] = set()
    missing_skus: set[str] = set()
    skipped: list[dict] = []

    for _, row in valid:
        seen_branches.add(row["branch_code"])
        if lookup.branch_id(row["branch_code"]) is None:
            unknown_branches.add(row["branch_code"])
    _require_resolvable_branches(seen_branches, unknown_branches)

    # First row wins for item attributes; rows for unknown branches create nothing
    items: dict[str, dict] = {}
    for _, row in valid:
        if row["sku"] in items or row["branch_code"] in unknown_branches:
            continue
        item = {"sku": row["sku"], "name": row["item_name"]}
        for column in ("unit", "category", "image_ref"):
            if row.get(column) is not None:
                item[column] = row[column]
        items[row["sku"]] = item

    try:
        items_result = upsert_rows(Item, list(items.values()), conflict_keys=("sku",), chunk_size=chunk_size)
        lookup.refresh_items()

        prices: dict[tuple[int, int], dict] = {}
        for row_number, row in valid:
            branch_id = lookup.branch_id(row["branch_code"])
            item_id = lookup.item_id(row["sku"])
            if branch_id is None:
                skipped.append({"row": row_number, "reason": f"unknown branch {row['branch_code']}"})
                continue
            if item_id is None:
                missing_skus.add(row["sku"])
                skipped.append({"row": row_number, "reason": f"unknown sku {row['sku']}"})
                continue
            data = {"branch_id": branch_id, "item_id": item_id, "price": row["price"]}
            if row.get("initial_stock") is not None:
                data["initial_stock"] = row["initial_stock"]
            prices[(branch_id, item_id)] = data

        existing_stock = _existing_stock(prices.keys())
        result = upsert_rows(
            BranchItemPrice,
            list(prices.values()),
            conflict_keys=("branch_id", "item_id"),
            chunk_size=chunk_size,
        )
        movements = _record_stock_deltas(prices, existing_stock)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Prices import: %s items, %s price rows (%s new), %s movements, %s invalid",
        items_result["upserted"], result["upserted"], result["inserted"], movements, len(invalid),
    )
    result.update({
        "items_upserted": items_result["upserted"],
        "items_inserted": items_result["inserted"],
        "movements_created": movements,
        "unknown_branches": sorted(unknown_branches),
        "unknown_departments": [],
        "missing_skus": sorted(missing_skus),
        "invalid_rows": invalid,
        "skipped_rows": skipped,
    })
    return _finish(result)


def _existing_stock(pairs) -> dict[tuple[int, int], int]:
    pairs = set(pairs)
    if not pairs:
        return {}
    branch_ids = {branch_id for branch_id, _ in pairs}
    rows = (
        db.session.query(BranchItemPrice.branch_id, BranchItemPrice.item_id, BranchItemPrice.initial_stock)
        .filter(BranchItemPrice.branch_id.in_(branch_ids))
        .all()
    )
    return {
        (branch_id, item_id): int(stock or 0)
        for branch_id, item_id, stock in rows
        if (branch_id, item_id) in pairs
    }


def _record_stock_deltas(prices: dict[tuple[int, int], dict], existing_stock: dict[tuple[int, int], int]) -> int:
    cycle = get_active_cycle()
    if cycle is None:
        return 0

    created = 0
    for pair, data in prices.items():
        if "initial_stock" not in data:
            continue
        branch_id, item_id = pair
        new_stock = int(data["initial_stock"])
        if pair not in existing_stock:
            if new_stock > 0:
                record_movement(
                    item_id=item_id, branch_id=branch_id, movement_type="In", quantity=new_stock,
                    reference_type="purchase", reference_id="import",
                    note="Initial stock from import", cycle_id=cycle.id,
                )
                created += 1
            continue

        delta = new_stock - existing_stock[pair]
        if delta:
            record_movement(
                item_id=item_id, branch_id=branch_id, movement_type="In" if delta > 0 else "Out",
                quantity=abs(delta), reference_type="adjustment", reference_id="import",
                note="Initial stock changed by import", cycle_id=cycle.id,
            )
            created += 1
    return created


def import_markups(raw_rows, *, chunk_size: int | None = None) -> dict[str, Any]:
    """Upsert markups keyed by (branch, item); rows without an active column are active."""
    valid, invalid = _validate_rows(SCHEMAS["markups"], raw_rows)
    lookup = _ReferenceLookup()
    seen_branches: set[str] = set()
    unknown_branches: set[str] = set()
    missing_skus: set[str] = set()
    skipped: list[dict] = []

    prepared = []
    for row_number, row in valid:
        seen_branches.add(row["branch_code"])
        branch_id = lookup.branch_id(row["branch_code"])
        item_id = lookup.item_id(row["sku"])
        if branch_id is None:
            unknown_branches.add(row["branch_code"])
        if item_id is None:
            missing_skus.add(row["sku"])
        if branch_id is None or item_id is None:
            skipped.append({"row": row_number, "reason": "unknown branch or sku"})
            continue
        prepared.append({
            "branch_id": branch_id,
            "item_id": item_id,
            "amount": row["amount"],
            "active": row.get("active", True),
        })

    _require_resolvable_branches(seen_branches, unknown_branches)

    try:
        result = upsert_rows(
            BranchItemMarkup,
            prepared,
            conflict_keys=("branch_id", "item_id"),
            chunk_size=chunk_size,
        )
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Markups import: %s upserted, %s unknown branches, %s missing skus",
        result["upserted"], len(unknown_branches), len(missing_skus),
    )
    result.update({
        "unknown_branches": sorted(unknown_branches),
        "unknown_departments": [],
        "missing_skus": sorted(missing_skus),
        "invalid_rows": invalid,
        "skipped_rows": skipped,
    })
    return _finish(result)


IMPORTERS = {
    "members": import_members,
    "prices": import_prices,
    "markups": import_markups,
}
