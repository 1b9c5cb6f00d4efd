# Overview: Member spending limits from static balances minus open order exposure.

"""
Eligibility Engine

Exposure is the sum of order totals per payment option over the member's
Pending and Posted orders. Delivered orders are settled against the core
ledger (their effect shows up in the next balance import) and Cancelled
orders never count.

    savings_eligible         = max(0, savings - savings_exposure)
    loan_eligible            = max(0, loan_ceiling - loan_exposure)
    outstanding_loans_total  = loans + loan_exposure

The loan ceiling is a business rule supplied through the LOAN_CEILING_RULE
config key (a callable taking the Member); default_loan_ceiling is used
when it is unset.

NOTE: Admission is a point-in-time check. Two concurrent submissions may
both pass against the same exposure; no lock is held between the check and
the insert.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import LimitExceededError, ValidationError
from ..models import Member, Order, PAYMENT_OPTIONS


EXPOSURE_STATUSES = ("Pending", "Posted")


def default_loan_ceiling(member: Member) -> int:
    multiplier = int(current_app.config.get("LOAN_SAVINGS_MULTIPLIER", 5))
    cap = min(int(member.savings or 0) * multiplier, int(member.global_limit or 0))
    return max(0, cap - int(member.loans or 0))


def _loan_ceiling(member: Member) -> int:
    rule = current_app.config.get("LOAN_CEILING_RULE") or default_loan_ceiling
    return max(0, int(rule(member)))


def get_exposure(member_id: str, exclude_order_id: int | None = None) -> dict[str, int]:
    query = (
        db.session.query(Order.payment_option, func.coalesce(func.sum(Order.total_amount), 0))
        .filter(
            Order.member_id == member_id,
            Order.status.in_(EXPOSURE_STATUSES),
        )
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)

    exposure = {option: 0 for option in PAYMENT_OPTIONS}
    for option, total in query.group_by(Order.payment_option).all():
        exposure[option] = int(total or 0)
    return exposure


def compute_eligibility(member: Member, exclude_order_id: int | None = None) -> dict:
    exposure = get_exposure(member.member_id, exclude_order_id=exclude_order_id)
    savings = int(member.savings or 0)
    loans = int(member.loans or 0)
    loan_ceiling = _loan_ceiling(member)

    return {
        "member_id": member.member_id,
        "full_name": member.full_name,
        "savings": savings,
        "loans": loans,
        "global_limit": int(member.global_limit or 0),
        "savings_exposure": exposure["Savings"],
        "loan_exposure": exposure["Loan"],
        "cash_exposure": exposure["Cash"],
        "loan_ceiling": loan_ceiling,
        "savings_eligible": max(0, savings - exposure["Savings"]),
        "loan_eligible": max(0, loan_ceiling - exposure["Loan"]),
        "outstanding_loans_total": loans + exposure["Loan"],
    }


def check_admission(
    member: Member,
    payment_option: str,
    total: int,
    exclude_order_id: int | None = None,
) -> dict:
    """Raise LimitExceededError when total exceeds the option's eligible amount."""
    if payment_option not in PAYMENT_OPTIONS:
        raise ValidationError(
            f"payment_option must be one of {', '.join(PAYMENT_OPTIONS)}",
            {"payment_option": payment_option},
        )

    eligibility = compute_eligibility(member, exclude_order_id=exclude_order_id)
    if payment_option == "Cash":
        return eligibility

    available = eligibility["savings_eligible"] if payment_option == "Savings" else eligibility["loan_eligible"]
    if total > available:
        raise LimitExceededError(
            f"Order total {total} exceeds {payment_option} eligibility {available}",
            {"payment_option": payment_option, "total": total, "available": available},
        )
    return eligibility
