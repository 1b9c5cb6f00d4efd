"""
Eligibility tests.

Exposure counts Pending and Posted orders only, per payment option.
"""

import pytest

from coopfood.errors import LimitExceededError
from coopfood.models import BranchItemPrice, Item
from coopfood.services import eligibility_service, order_service


@pytest.fixture
def oil(db_session, dutse):
    """OIL5L priced 10,000 at DUTSE."""
    item = Item(sku="OIL5L", name="Vegetable Oil 5L", unit="keg", category="Oils")
    db_session.add(item)
    db_session.flush()
    db_session.add(BranchItemPrice(branch_id=dutse.id, item_id=item.id, price=10000, initial_stock=200))
    db_session.commit()
    return item


def _order(qty, option="Savings"):
    return order_service.create_order(
        member_id="A12345",
        delivery_branch_code="DUTSE",
        department_name="Ops",
        payment_option=option,
        lines=[{"sku": "OIL5L", "qty": qty}],
    )


def test_savings_eligible_nets_open_orders(member, oil, shopping_open):
    _order(3)
    _order(4)

    result = eligibility_service.compute_eligibility(member)

    assert result["savings_exposure"] == 70000
    assert result["savings_eligible"] == 30000


def test_delivered_orders_leave_exposure(member, oil, shopping_open):
    first = _order(3)
    _order(4)
    order_service.post_order(first.id, actor="rep1")
    order_service.deliver_order(first.id, delivered_by="rep1")

    result = eligibility_service.compute_eligibility(member)

    assert result["savings_exposure"] == 40000
    assert result["savings_eligible"] == 60000


def test_posted_orders_still_count(member, oil, shopping_open):
    order = _order(3)
    order_service.post_order(order.id, actor="rep1")
    assert eligibility_service.compute_eligibility(member)["savings_eligible"] == 70000


def test_cancelled_orders_do_not_count(member, oil, shopping_open):
    order = _order(5)
    order_service.cancel_order(order.id, reason="member request", actor="rep1")
    assert eligibility_service.compute_eligibility(member)["savings_eligible"] == 100000


def test_exposure_split_by_payment_option(member, oil, shopping_open):
    _order(2, option="Savings")
    _order(3, option="Loan")
    _order(50, option="Cash")

    exposure = eligibility_service.get_exposure("A12345")

    assert exposure == {"Savings": 20000, "Loan": 30000, "Cash": 500000}


def test_default_loan_ceiling(db_session, member):
    assert eligibility_service.default_loan_ceiling(member) == 500000

    member.loans = 200000
    db_session.commit()
    assert eligibility_service.default_loan_ceiling(member) == 300000

    member.global_limit = 250000
    db_session.commit()
    assert eligibility_service.default_loan_ceiling(member) == 50000

    member.loans = 900000
    db_session.commit()
    assert eligibility_service.default_loan_ceiling(member) == 0


def test_outstanding_loans_total(db_session, member, oil, shopping_open):
    member.loans = 100000
    db_session.commit()
    _order(3, option="Loan")

    result = eligibility_service.compute_eligibility(member)

    assert result["loan_exposure"] == 30000
    assert result["outstanding_loans_total"] == 130000
    assert result["loan_eligible"] == 400000 - 30000


def test_loan_ceiling_rule_is_configurable(app, monkeypatch, member, oil, shopping_open):
    monkeypatch.setitem(app.config, "LOAN_CEILING_RULE", lambda m: 25000)

    result = eligibility_service.compute_eligibility(member)
    assert result["loan_ceiling"] == 25000
    assert result["loan_eligible"] == 25000

    with pytest.raises(LimitExceededError):
        _order(3, option="Loan")


def test_admission_rejects_over_limit(member):
    with pytest.raises(LimitExceededError) as excinfo:
        eligibility_service.check_admission(member, "Savings", 100001)
    assert excinfo.value.details["available"] == 100000


def test_admission_allows_exact_limit_and_cash(member):
    eligibility_service.check_admission(member, "Savings", 100000)
    eligibility_service.check_admission(member, "Cash", 10**9)


def test_admission_excludes_order_being_edited(member, oil, shopping_open):
    order = _order(10)

    with pytest.raises(LimitExceededError):
        eligibility_service.check_admission(member, "Savings", 10000)
    eligibility_service.check_admission(member, "Savings", 100000, exclude_order_id=order.id)
