"""
Bulk import tests for members, prices and markups.
"""

import pytest

from coopfood.errors import ValidationError
from coopfood.models import (
    BranchItemMarkup,
    BranchItemPrice,
    GradeLimit,
    InventoryMovement,
    Item,
    Member,
)
from coopfood.services import import_service, inventory_service
from coopfood.services.import_schemas import SCHEMAS, normalize_header


PRICE_ROWS = [
    {"SKU": "rice50kg", "Item Name": "Rice 50kg", "Unit": "bag", "Category": "Grains",
     "Branch Code": "dutse", "Price": "49,500", "Initial Stock": "100"},
    {"SKU": "beans25kg", "Item Name": "Beans 25kg", "Unit": "bag", "Category": "Grains",
     "Branch Code": "DUTSE", "Price": "₦20,000", "Initial Stock": 30},
]


# Members --------------------------------------------------------------------

def test_members_import_defaults(db_session, dutse, ops):
    db_session.add(GradeLimit(grade="senior", global_limit=750000))
    db_session.commit()

    result = import_service.import_members([
        {"Member ID": "a12345", "Full Name": "Amina  Bello", "Grade": "Senior",
         "Savings": "100,000", "Branch": "dutse", "Department": "ops"},
        {"member_id": "B20001", "full_name": "Bala Musa", "global_limit": "200000"},
    ])

    assert result["inserted"] == 2
    amina = db_session.query(Member).filter_by(member_id="A12345").one()
    assert amina.full_name == "Amina Bello"
    assert amina.category == "A"
    assert amina.global_limit == 750000
    assert amina.savings == 100000
    assert amina.branch_id == dutse.id
    assert amina.department_id == ops.id
    bala = db_session.query(Member).filter_by(member_id="B20001").one()
    assert bala.category == "B"
    assert bala.global_limit == 200000


def test_members_import_keeps_assignment_when_columns_absent(db_session, member, dutse):
    import_service.import_members([{"member_id": "A12345", "full_name": "Amina Bello", "savings": 150000}])

    refreshed = db_session.query(Member).filter_by(member_id="A12345").one()
    assert refreshed.savings == 150000
    assert refreshed.branch_id == dutse.id


def test_members_import_reports_unknown_references(db_session, dutse):
    result = import_service.import_members([
        {"member_id": "A1", "full_name": "Ada", "branch_code": "DUTSE"},
        {"member_id": "A2", "full_name": "Ade", "branch_code": "KUBWA"},
        {"member_id": "A3", "full_name": "Ado", "department": "Nowhere"},
    ])

    assert result["upserted"] == 1
    assert result["unknown_branches"] == ["KUBWA"]
    assert result["unknown_departments"] == ["Nowhere"]
    assert [row["row"] for row in result["skipped_rows"]] == [3, 4]


def test_members_import_all_branches_unknown_fails(db_session, dutse):
    with pytest.raises(ValidationError) as excinfo:
        import_service.import_members([{"member_id": "A1", "full_name": "Ada", "branch_code": "KUBWA"}])
    assert excinfo.value.details["unknown_branches"] == ["KUBWA"]
    assert db_session.query(Member).count() == 0


def test_members_import_missing_required_column(db_session):
    with pytest.raises(ValidationError) as excinfo:
        import_service.import_members([{"member_id": "A1", "savings": 10}])
    assert excinfo.value.details["missing_columns"] == ["full_name"]


def test_members_import_invalid_rows_reported(db_session):
    result = import_service.import_members([
        {"member_id": "A1", "full_name": "Ada", "savings": "lots"},
        {"member_id": "", "full_name": ""},
        {"member_id": "A3", "full_name": "Ado", "loans": "-5"},
        {"member_id": "A4", "full_name": "Adu"},
    ])

    assert result["upserted"] == 1
    assert [row["row"] for row in result["invalid_rows"]] == [2, 4]


def test_empty_import_rejected(db_session):
    with pytest.raises(ValidationError):
        import_service.import_members([])


# Prices ---------------------------------------------------------------------

def test_price_import_is_idempotent(db_session, dutse):
    first = import_service.import_prices(PRICE_ROWS)
    second = import_service.import_prices(PRICE_ROWS)

    assert first["items_inserted"] == 2
    assert first["inserted"] == 2
    assert second["items_inserted"] == 0
    assert second["inserted"] == 0
    assert second["updated"] == 2
    assert db_session.query(Item).count() == 2

    prices = {p.item.sku: (p.price, p.initial_stock) for p in db_session.query(BranchItemPrice).all()}
    assert prices == {"RICE50KG": (49500, 100), "BEANS25KG": (20000, 30)}


def test_price_import_mirrors_stock_into_ledger(db_session, dutse):
    inventory_service.open_cycle("October")

    first = import_service.import_prices(PRICE_ROWS)
    unchanged = import_service.import_prices(PRICE_ROWS)
    changed_rows = [dict(PRICE_ROWS[0], **{"Initial Stock": "90"})]
    changed = import_service.import_prices(changed_rows)

    assert first["movements_created"] == 2
    assert unchanged["movements_created"] == 0
    assert changed["movements_created"] == 1

    adjustment = db_session.query(InventoryMovement).filter_by(reference_type="adjustment").one()
    assert adjustment.movement_type == "Out"
    assert adjustment.quantity == 10
    assert inventory_service.ledger_balance("DUTSE", "RICE50KG")["balance"] == 90


def test_price_import_without_stock_keeps_existing(db_session, dutse):
    import_service.import_prices(PRICE_ROWS)
    import_service.import_prices([{"sku": "RICE50KG", "item_name": "Rice 50kg", "branch_code": "DUTSE", "price": 52000}])

    price = db_session.query(BranchItemPrice).join(Item).filter(Item.sku == "RICE50KG").one()
    assert price.price == 52000
    assert price.initial_stock == 100


def test_price_import_unknown_branch_rows_skipped(db_session, dutse):
    rows = PRICE_ROWS + [{"sku": "SALT", "item_name": "Salt", "branch_code": "KUBWA", "price": 500}]

    result = import_service.import_prices(rows)

    assert result["unknown_branches"] == ["KUBWA"]
    assert result["upserted"] == 2
    assert [row["row"] for row in result["skipped_rows"]] == [4]


def test_price_import_all_branches_unknown_fails(db_session, dutse):
    with pytest.raises(ValidationError):
        import_service.import_prices([{"sku": "SALT", "item_name": "Salt", "branch_code": "KUBWA", "price": 500}])
    assert db_session.query(Item).count() == 0


def test_price_import_missing_price_column(db_session, dutse):
    with pytest.raises(ValidationError) as excinfo:
        import_service.import_prices([{"sku": "SALT", "item_name": "Salt", "branch_code": "DUTSE"}])
    assert "price" in excinfo.value.details["missing_columns"]


# Markups --------------------------------------------------------------------

def test_markup_import_parses_active_flag(db_session, dutse, rice, beans):
    result = import_service.import_markups([
        {"branch": "dutse", "sku": "rice50kg", "markup": "500", "active": "no"},
        {"branch": "DUTSE", "sku": "BEANS25KG", "amount": 250, "active": ""},
        {"branch": "DUTSE", "sku": "GHOST", "amount": 100},
    ])

    assert result["upserted"] == 2
    assert result["missing_skus"] == ["GHOST"]
    markups = {m.item.sku: (m.amount, m.active) for m in db_session.query(BranchItemMarkup).all()}
    assert markups == {"RICE50KG": (500, False), "BEANS25KG": (250, True)}


def test_markup_import_without_active_column_activates(db_session, dutse, rice):
    import_service.import_markups([{"branch_code": "DUTSE", "sku": "RICE50KG", "amount": 500, "active": "0"}])
    import_service.import_markups([{"branch_code": "DUTSE", "sku": "RICE50KG", "amount": 600}])

    markup = db_session.query(BranchItemMarkup).one()
    assert markup.amount == 600
    assert markup.active is True


# Schemas --------------------------------------------------------------------

def test_header_normalization():
    assert normalize_header(" Item Name ") == "item_name"
    assert normalize_header("branch-code") == "branch_code"


def test_amount_sanitizer_accepts_formatted_numbers():
    row, errors = SCHEMAS["prices"].normalize_row(
        {"sku": " rice ", "item_name": "Rice", "branch_code": "dutse", "price": "₦ 1,250"}
    )
    assert errors == []
    assert row["price"] == 1250
    assert row["sku"] == "RICE"
    assert row["branch_code"] == "DUTSE"


def test_negative_amounts_invalid():
    _, errors = SCHEMAS["markups"].normalize_row({"branch_code": "DUTSE", "sku": "RICE", "amount": -1})
    assert errors == ["amount must be >= 0"]


@pytest.mark.parametrize("price", ["inf", "-inf", "nan", "1e400", float("inf"), float("nan")])
def test_non_finite_amounts_invalid(price):
    _, errors = SCHEMAS["prices"].normalize_row(
        {"sku": "RICE", "item_name": "Rice", "branch_code": "DUTSE", "price": price}
    )
    assert f"price is invalid: {price!r}" in errors


def test_price_import_reports_non_finite_price_row(db_session, dutse):
    result = import_service.import_prices([
        {"sku": "RICE50KG", "item_name": "Rice 50kg", "branch_code": "DUTSE", "price": "inf"},
        {"sku": "BEANS25KG", "item_name": "Beans 25kg", "branch_code": "DUTSE", "price": "100"},
    ])

    assert result["upserted"] == 1
    assert [entry["row"] for entry in result["invalid_rows"]] == [2]
    assert db_session.query(Item).count() == 1


def test_members_import_keeps_explicit_zero_limit(db_session):
    db_session.add(GradeLimit(grade="senior", global_limit=750000))
    db_session.commit()

    import_service.import_members([
        {"member_id": "C30001", "full_name": "Chidi Obi", "grade": "senior", "global_limit": "0"},
    ])

    assert db_session.query(Member).filter_by(member_id="C30001").one().global_limit == 0
