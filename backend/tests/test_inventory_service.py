"""
Inventory reconciliation and ledger tests.

For every priced (branch, item):
- allocated = pending + posted
- remaining_after_posted = initial - allocated
- remaining_after_delivered = initial - pending - posted - delivered
"""

import pytest

from coopfood.errors import NotFoundError, StateError, ValidationError
from coopfood.models import Cycle, InventoryMovement, Item
from coopfood.services import inventory_service, order_service


def _cash_order(qty, sku="RICE50KG"):
    return order_service.create_order(
        member_id="A12345",
        delivery_branch_code="DUTSE",
        department_name="Ops",
        payment_option="Cash",
        lines=[{"sku": sku, "qty": qty}],
    )


@pytest.fixture
def mixed_orders(member, rice, shopping_open):
    _cash_order(2)

    posted = _cash_order(3)
    order_service.post_order(posted.id, actor="rep1")

    delivered = _cash_order(4)
    order_service.post_order(delivered.id, actor="rep1")
    order_service.deliver_order(delivered.id, delivered_by="rep1")

    cancelled = _cash_order(5)
    order_service.cancel_order(cancelled.id, reason="out of funds", actor="rep1")


def test_counters_follow_order_status(mixed_orders):
    row = inventory_service.get_inventory_status(branch_code="dutse", sku="rice50kg")[0]

    assert row["initial_stock"] == 100
    assert row["pending_qty"] == 2
    assert row["posted_qty"] == 3
    assert row["delivered_qty"] == 4
    assert row["allocated_qty"] == 5
    assert row["remaining_after_posted"] == 95
    assert row["remaining_after_delivered"] == 91


def test_conservation_holds_for_every_row(mixed_orders, beans):
    _cash_order(1, sku="BEANS25KG")

    for row in inventory_service.get_inventory_status():
        assert row["allocated_qty"] == row["pending_qty"] + row["posted_qty"]
        assert row["remaining_after_posted"] == row["initial_stock"] - row["allocated_qty"]
        assert row["remaining_after_delivered"] == (
            row["initial_stock"] - row["pending_qty"] - row["posted_qty"] - row["delivered_qty"]
        )


def test_unpriced_items_are_excluded(db_session, rice):
    db_session.add(Item(sku="SUGAR", name="Sugar", unit="bag"))
    db_session.commit()

    skus = [row["sku"] for row in inventory_service.get_inventory_status()]
    assert skus == ["RICE50KG"]


def test_untouched_item_reports_full_stock(rice):
    row = inventory_service.get_inventory_status()[0]
    assert row["pending_qty"] == row["posted_qty"] == row["delivered_qty"] == 0
    assert row["remaining_after_delivered"] == 100


def test_low_flag_uses_threshold(app, monkeypatch, mixed_orders, beans):
    monkeypatch.setitem(app.config, "LOW_STOCK_THRESHOLD", 95)

    low = inventory_service.low_stock("DUTSE")

    assert {row["sku"] for row in low} == {"RICE50KG", "BEANS25KG"}
    monkeypatch.setitem(app.config, "LOW_STOCK_THRESHOLD", 20)
    assert inventory_service.low_stock("DUTSE") == []


def test_department_demand_excludes_cancelled(mixed_orders):
    rows = inventory_service.department_demand("DUTSE")

    assert len(rows) == 1
    assert rows[0]["department"] == "Ops"
    assert rows[0]["pending_qty"] == 2
    assert rows[0]["posted_qty"] == 3
    assert rows[0]["delivered_qty"] == 4
    assert rows[0]["total_qty"] == 9


def test_open_cycle_keeps_single_active(db_session):
    first = inventory_service.open_cycle("September")
    second = inventory_service.open_cycle("October")

    active = db_session.query(Cycle).filter_by(is_active=True).all()
    assert [c.id for c in active] == [second.id]
    assert db_session.get(Cycle, first.id).ends_at is not None


def test_open_cycle_requires_name(db_session):
    with pytest.raises(ValidationError):
        inventory_service.open_cycle("  ")


def test_adjust_stock_requires_active_cycle(rice):
    with pytest.raises(StateError):
        inventory_service.adjust_stock("DUTSE", "RICE50KG", 5)


def test_adjustments_update_ledger_balance(rice):
    inventory_service.open_cycle("October")

    inventory_service.adjust_stock("DUTSE", "RICE50KG", 5, note="recount", actor="admin1")
    movement = inventory_service.adjust_stock("DUTSE", "RICE50KG", -2, actor="admin1")

    assert movement.movement_type == "Out"
    assert movement.quantity == 2
    assert inventory_service.ledger_balance("DUTSE", "RICE50KG")["balance"] == 3


def test_adjust_stock_rejects_zero_and_unknown(rice):
    inventory_service.open_cycle("October")
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock("DUTSE", "RICE50KG", 0)
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock("DUTSE", "NOPE", 1)


def test_record_movement_validates(rice, dutse):
    inventory_service.open_cycle("October")
    with pytest.raises(ValidationError):
        inventory_service.record_movement(
            item_id=rice.id, branch_id=dutse.id, movement_type="Sideways",
            quantity=1, reference_type="adjustment",
        )
    with pytest.raises(ValidationError):
        inventory_service.record_movement(
            item_id=rice.id, branch_id=dutse.id, movement_type="In",
            quantity=0, reference_type="adjustment",
        )


def test_ledger_balance_per_cycle(db_session, rice):
    september = inventory_service.open_cycle("September")
    inventory_service.adjust_stock("DUTSE", "RICE50KG", 10)
    inventory_service.open_cycle("October")
    inventory_service.adjust_stock("DUTSE", "RICE50KG", 4)

    assert inventory_service.ledger_balance("DUTSE", "RICE50KG")["balance"] == 4
    assert inventory_service.ledger_balance("DUTSE", "RICE50KG", cycle_id=september.id)["balance"] == 10
    assert db_session.query(InventoryMovement).count() == 2
