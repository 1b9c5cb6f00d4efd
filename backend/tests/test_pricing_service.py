"""
Pricing resolver tests.

Verifies:
- effective price = base + active markup
- Deactivating a markup restores the base price without deleting the row
- Re-upserting a markup replaces the amount and reactivates it
- Missing base price means unavailable, never free
"""

import pytest

from coopfood.errors import NotFoundError, ValidationError
from coopfood.models import BranchItemMarkup, Item
from coopfood.services import pricing_service


def test_active_markup_added_to_base(db_session, dutse, rice):
    pricing_service.upsert_markup("DUTSE", "RICE50KG", 500)
    assert pricing_service.effective_price(dutse.id, rice.id) == 50000


def test_deactivating_markup_restores_base_without_deleting(db_session, dutse, rice):
    pricing_service.upsert_markup("DUTSE", "RICE50KG", 500)
    pricing_service.set_markup_active("dutse", "rice50kg", False)

    assert pricing_service.effective_price(dutse.id, rice.id) == 49500
    markup = db_session.query(BranchItemMarkup).one()
    assert markup.active is False
    assert markup.amount == 500


def test_reupsert_replaces_amount_and_reactivates(db_session, dutse, rice):
    pricing_service.upsert_markup("DUTSE", "RICE50KG", 500)
    pricing_service.set_markup_active("DUTSE", "RICE50KG", False)

    markup = pricing_service.upsert_markup("DUTSE", "RICE50KG", 700)

    assert markup.active is True
    assert markup.amount == 700
    assert db_session.query(BranchItemMarkup).count() == 1
    assert pricing_service.effective_price(dutse.id, rice.id) == 50200


def test_delete_markup_removes_row(db_session, dutse, rice):
    pricing_service.upsert_markup("DUTSE", "RICE50KG", 500)
    pricing_service.delete_markup("DUTSE", "RICE50KG")

    assert db_session.query(BranchItemMarkup).count() == 0
    assert pricing_service.effective_price(dutse.id, rice.id) == 49500
    with pytest.raises(NotFoundError):
        pricing_service.delete_markup("DUTSE", "RICE50KG")


def test_unpriced_item_is_unavailable(db_session, gwarimpa, rice):
    with pytest.raises(NotFoundError):
        pricing_service.effective_price(gwarimpa.id, rice.id)


def test_negative_markup_rejected(db_session, dutse, rice):
    with pytest.raises(ValidationError):
        pricing_service.upsert_markup("DUTSE", "RICE50KG", -1)


def test_list_markups_filters_by_sku(db_session, dutse, rice, beans):
    pricing_service.upsert_markup("DUTSE", "RICE50KG", 500)
    pricing_service.upsert_markup("DUTSE", "BEANS25KG", 250)

    assert len(pricing_service.list_markups("DUTSE")) == 2
    only_rice = pricing_service.list_markups("DUTSE", sku="rice50kg")
    assert [m.to_dict()["sku"] for m in only_rice] == ["RICE50KG"]


def test_branch_price_list_only_priced_items(db_session, dutse, rice):
    db_session.add(Item(sku="SUGAR", name="Sugar", unit="bag"))
    db_session.commit()
    pricing_service.upsert_markup("DUTSE", "RICE50KG", 500)

    rows = pricing_service.branch_price_list("DUTSE")

    assert len(rows) == 1
    assert rows[0]["sku"] == "RICE50KG"
    assert rows[0]["base_price"] == 49500
    assert rows[0]["markup"] == 500
    assert rows[0]["price"] == 50000
