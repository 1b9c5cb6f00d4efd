# Overview: Lookup and maintenance of branches, departments, items and members.

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Branch, Department, Item, Member


def normalize_code(value) -> str:
    return str(value or "").strip().upper()


def normalize_name(value) -> str:
    return " ".join(str(value or "").split())


def get_branch_by_code(code: str) -> Branch:
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError("branch code is required")
    branch = db.session.query(Branch).filter_by(code=normalized).first()
    if not branch:
        raise NotFoundError(f"Branch {normalized} not found", {"branch": normalized})
    return branch


def get_department_by_name(name: str) -> Department:
    normalized = normalize_name(name)
    if not normalized:
        raise ValidationError("department is required")
    department = (
        db.session.query(Department)
        .filter(db.func.lower(Department.name) == normalized.lower())
        .first()
    )
    if not department:
        raise NotFoundError(f"Department {normalized} not found", {"department": normalized})
    return department


def get_item_by_sku(sku: str) -> Item:
    normalized = normalize_code(sku)
    if not normalized:
        raise ValidationError("sku is required")
    item = db.session.query(Item).filter_by(sku=normalized).first()
    if not item:
        raise NotFoundError(f"Item {normalized} not found", {"sku": normalized})
    return item


def get_member(member_id: str) -> Member:
    normalized = normalize_code(member_id)
    if not normalized:
        raise ValidationError("member_id is required")
    member = db.session.query(Member).filter_by(member_id=normalized).first()
    if not member:
        raise NotFoundError(f"Member {normalized} not found", {"member_id": normalized})
    return member


def list_branches() -> list[dict]:
    return [b.to_dict() for b in db.session.query(Branch).order_by(Branch.code).all()]


def list_departments() -> list[dict]:
    return [d.to_dict() for d in db.session.query(Department).order_by(Department.name).all()]


def list_items() -> list[dict]:
    items = db.session.query(Item).order_by(Item.category, Item.name).all()
    return [item.to_dict() for item in items]


def update_member_assignment(
    member_id: str,
    *,
    branch_code: str | None = None,
    department_name: str | None = None,
) -> Member:
    """Reassign a member's home branch and/or department. Balances are untouched."""
    if branch_code is None and department_name is None:
        raise ValidationError("branch_code or department is required")

    member = get_member(member_id)
    if branch_code is not None:
        member.branch_id = get_branch_by_code(branch_code).id
    if department_name is not None:
        member.department_id = get_department_by_name(department_name).id
    db.session.commit()
    return member
