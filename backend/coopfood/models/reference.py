from __future__ import annotations

from ..extensions import db
from coopfood.time_utils import to_utc_z


class Branch(db.Model):
    """
    Cooperative branch.

    An order references two independent branch roles: the member's home
    branch and the delivery branch it is routed to for fulfillment. Prices,
    markups and stock are all keyed by delivery branch.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Canonical upper-case code (e.g. "DUTSE")
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name}


class Department(db.Model):
    __tablename__ = "departments"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_departments_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class GradeLimit(db.Model):
    """Default global limit for a member grade, used when an import row has none."""
    __tablename__ = "grade_limits"
    __table_args__ = (
        db.UniqueConstraint("grade", name="uq_grade_limits_grade"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Stored lower-case with collapsed whitespace
    grade = db.Column(db.String(64), nullable=False)
    global_limit = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {"id": self.id, "grade": self.grade, "global_limit": self.global_limit}


class Member(db.Model):
    """
    Cooperative member with static balances.

    Balances (savings, loans, global_limit) come from the society's core
    ledger via bulk import. The ordering system never writes them; it only
    nets outstanding orders against them (see eligibility_service).

    member_id is the natural key (e.g. "A12345") and the import conflict key.
    """
    __tablename__ = "members"
    __table_args__ = (
        db.UniqueConstraint("member_id", name="uq_members_member_id"),
        db.Index("ix_members_branch", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.String(32), nullable=False)
    full_name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(8), nullable=True)
    grade = db.Column(db.String(64), nullable=True)

    # Whole currency units
    savings = db.Column(db.Integer, nullable=False, default=0)
    loans = db.Column(db.Integer, nullable=False, default=0)
    global_limit = db.Column(db.Integer, nullable=False, default=0)

    # Home branch and department (optional until assigned)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", foreign_keys=[branch_id])
    department = db.relationship("Department", foreign_keys=[department_id])

    def __repr__(self) -> str:
        return f"<Member member_id={self.member_id!r} name={self.full_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "full_name": self.full_name,
            "category": self.category,
            "grade": self.grade,
            "savings": self.savings,
            "loans": self.loans,
            "global_limit": self.global_limit,
            "branch_code": self.branch.code if self.branch else None,
            "department_name": self.department.name if self.department else None,
            "updated_at": to_utc_z(self.updated_at),
        }


class Item(db.Model):
    """
    Catalogue item.

    sku is the canonical, upper-case natural key and the import conflict key.
    image_ref is an opaque pointer into external object storage.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_items_sku"),
        db.Index("ix_items_category_name", "category", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    image_ref = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "category": self.category,
            "image_ref": self.image_ref,
        }
