# Overview: Effective sell price resolution and markup administration.

"""
Pricing Resolver

effective price = base price + markup (when the markup row is active)

A missing base price row means the item is not sold at the branch; it is
never treated as free.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import BranchItemPrice, BranchItemMarkup, Item
from .reference_service import get_branch_by_code, get_item_by_sku


@dataclass(frozen=True)
class PriceQuote:
    item_id: int
    base_price: int
    markup: int

    @property
    def price(self) -> int:
        return self.base_price + self.markup


def quote_prices(branch_id: int, item_ids) -> dict[int, PriceQuote]:
    """
    Resolve effective prices for several items at one branch in one query.

    Items without a base price row are absent from the result.
    """
    item_ids = list(set(item_ids))
    if not item_ids:
        return {}
    rows = (
        db.session.query(
            BranchItemPrice.item_id,
            BranchItemPrice.price,
            BranchItemMarkup.amount,
            BranchItemMarkup.active,
        )
        .outerjoin(
            BranchItemMarkup,
            db.and_(
                BranchItemMarkup.branch_id == BranchItemPrice.branch_id,
                BranchItemMarkup.item_id == BranchItemPrice.item_id,
            ),
        )
        .filter(
            BranchItemPrice.branch_id == branch_id,
            BranchItemPrice.item_id.in_(item_ids),
        )
        .all()
    )
    quotes = {}
    for item_id, base, markup_amount, markup_active in rows:
        markup = int(markup_amount or 0) if markup_active else 0
        quotes[item_id] = PriceQuote(item_id=item_id, base_price=int(base), markup=markup)
    return quotes


def effective_price(branch_id: int, item_id: int) -> int:
    quote = quote_prices(branch_id, [item_id]).get(item_id)
    if quote is None:
        raise NotFoundError(
            "Item is not priced at this branch",
            {"branch_id": branch_id, "item_id": item_id},
        )
    return quote.price


def _get_markup(branch_code: str, sku: str) -> BranchItemMarkup:
    branch = get_branch_by_code(branch_code)
    item = get_item_by_sku(sku)
    markup = db.session.query(BranchItemMarkup).filter_by(branch_id=branch.id, item_id=item.id).first()
    if not markup:
        raise NotFoundError("Markup not found", {"branch": branch.code, "sku": item.sku})
    return markup


def upsert_markup(branch_code: str, sku: str, amount) -> BranchItemMarkup:
    """
    Create or replace a markup. Re-upserting an existing (branch, item)
    replaces the amount and reactivates it.
    """
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be an integer", {"amount": amount})
    if amount < 0:
        raise ValidationError("amount must be >= 0", {"amount": amount})

    branch = get_branch_by_code(branch_code)
    item = get_item_by_sku(sku)

    markup = db.session.query(BranchItemMarkup).filter_by(branch_id=branch.id, item_id=item.id).first()
    if markup:
        markup.amount = amount
        markup.active = True
    else:
        markup = BranchItemMarkup(branch_id=branch.id, item_id=item.id, amount=amount, active=True)
        db.session.add(markup)
    db.session.commit()
    return markup


def set_markup_active(branch_code: str, sku: str, active: bool) -> BranchItemMarkup:
    markup = _get_markup(branch_code, sku)
    markup.active = bool(active)
    db.session.commit()
    return markup


def delete_markup(branch_code: str, sku: str) -> None:
    markup = _get_markup(branch_code, sku)
    db.session.delete(markup)
    db.session.commit()


def list_markups(branch_code: str, sku: str | None = None) -> list[BranchItemMarkup]:
    branch = get_branch_by_code(branch_code)
    query = (
        db.session.query(BranchItemMarkup)
        .join(Item, Item.id == BranchItemMarkup.item_id)
        .filter(BranchItemMarkup.branch_id == branch.id)
    )
    if sku:
        query = query.filter(Item.sku == get_item_by_sku(sku).sku)
    return query.order_by(Item.name).all()


def branch_price_list(branch_code: str) -> list[dict]:
    """All items priced at the branch with base, markup and effective price."""
    branch = get_branch_by_code(branch_code)
    rows = (
        db.session.query(Item, BranchItemPrice.price, BranchItemMarkup.amount, BranchItemMarkup.active)
        .join(BranchItemPrice, BranchItemPrice.item_id == Item.id)
        .outerjoin(
            BranchItemMarkup,
            db.and_(
                BranchItemMarkup.branch_id == BranchItemPrice.branch_id,
                BranchItemMarkup.item_id == Item.id,
            ),
        )
        .filter(BranchItemPrice.branch_id == branch.id)
        .order_by(Item.name)
        .all()
    )
    result = []
    for item, base, markup_amount, markup_active in rows:
        markup = int(markup_amount or 0) if markup_active else 0
        result.append({
            "sku": item.sku,
            "name": item.name,
            "unit": item.unit,
            "base_price": int(base),
            "markup": markup,
            "markup_active": bool(markup_active) if markup_active is not None else None,
            "price": int(base) + markup,
        })
    return result
