"""
pricing.py — Order Pricing Pipeline

Pure computations turning line item selections into money:

    Item Price Resolver → Cart Total Aggregator → Tax Calculator → (optional) Coupon Evaluator

No stage performs I/O. Catalog lookups are passed in as a callable and coupon
lookups as a store, both provided by the caller.

Rounding:
    All intermediate arithmetic uses exact `Decimal` values. Amounts are rounded
    half-up to cents only where they are persisted or displayed (`round_money`).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import InvalidQuantity, ItemNotFound
from .models import CatalogItem, LineItemSelection, OrderItem, PricingResult

log = logging.getLogger(__name__)

CENT = Decimal("0.01")
TAX_RATE = Decimal("0.08")
COLD_FOAM_SURCHARGE = Decimal("1.00")
ALT_MILK_SURCHARGE = Decimal("0.75")


@dataclass(frozen=True)
class PriceRules:
    """Surcharges and tax rate in effect for one pricing run."""
    tax_rate: Decimal = TAX_RATE
    cold_foam_surcharge: Decimal = COLD_FOAM_SURCHARGE
    alt_milk_surcharge: Decimal = ALT_MILK_SURCHARGE

    @classmethod
    def from_settings(cls, settings) -> "PriceRules":
        return cls(
            tax_rate=settings.tax_rate,
            cold_foam_surcharge=settings.cold_foam_surcharge,
            alt_milk_surcharge=settings.alt_milk_surcharge,
        )


DEFAULT_RULES = PriceRules()

ItemLookup = Callable[[str], Optional[CatalogItem]]


def round_money(amount) -> Decimal:
    """Rounds to the currency minor unit (2 places), half-up."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def find_size(item: CatalogItem, size: Optional[str]):
    if not size:
        return None
    for variant in item.sizes:
        if variant.size == size:
            return variant
    return None


def resolve_unit_price(item: CatalogItem, selection: LineItemSelection, rules: PriceRules = DEFAULT_RULES) -> Decimal:
    """
    Computes the unit price of one configured line.

    A selected size that matches a variant replaces the base price; a size the
    item does not offer falls back to the base price. Cold foam and any
    alternative milk each add a fixed surcharge, independent of each other and
    of the size chosen.

    Args:
        item (CatalogItem): The referenced catalog item (already known to exist).
        selection (LineItemSelection): The customer's configuration.
        rules (PriceRules): Surcharge amounts.

    Returns:
        Decimal: Unrounded unit price.
    """
    price = Decimal(item.price)

    variant = find_size(item, selection.selected_size)
    if variant is not None:
        price = Decimal(variant.price)
    elif selection.selected_size:
        log.warning(
            f"Size '{selection.selected_size}' not offered for item {item.id}, falling back to base price."
        )

    if selection.add_cold_foam:
        price += rules.cold_foam_surcharge

    if selection.selected_milk:
        price += rules.alt_milk_surcharge

    return price


def check_quantity(quantity):
    """Raises InvalidQuantity unless `quantity` is an integer >= 1."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity(quantity)


def _check_quantities(selections: List[LineItemSelection]):
    for selection in selections:
        check_quantity(selection.quantity)


def _lookup(get_item: ItemLookup, item_id: str) -> CatalogItem:
    item = get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    return item


def compute_subtotal(
        selections: Iterable[LineItemSelection],
        get_item: ItemLookup,
        resolver: Callable[[CatalogItem, LineItemSelection], Decimal] = resolve_unit_price,
) -> Decimal:
    """
    Sums unit price × quantity over all selections.

    Raises:
        InvalidQuantity: If any selection has a quantity that is not a positive integer.
            Checked for every line before any price is resolved.
        ItemNotFound: If a referenced catalog item does not exist.
    """
    selections = list(selections)
    _check_quantities(selections)

    subtotal = Decimal("0")
    for selection in selections:
        item = _lookup(get_item, selection.menu_item_id)
        subtotal += resolver(item, selection) * selection.quantity
    return subtotal


def apply_tax(subtotal: Decimal, rate: Decimal = TAX_RATE) -> Tuple[Decimal, Decimal]:
    """
    Applies the flat tax rate.

    Returns:
        Tuple[Decimal, Decimal]: (tax rounded to cents, subtotal + tax).
    """
    tax = round_money(Decimal(subtotal) * rate)
    return tax, Decimal(subtotal) + tax


def price_lines(
        selections: Iterable[LineItemSelection],
        get_item: ItemLookup,
        rules: PriceRules = DEFAULT_RULES,
) -> List[OrderItem]:
    """Resolves each selection into an order line snapshot (unit price and line total)."""
    selections = list(selections)
    _check_quantities(selections)

    lines = []
    for selection in selections:
        item = _lookup(get_item, selection.menu_item_id)
        unit_price = resolve_unit_price(item, selection, rules)
        lines.append(OrderItem(
            menu_item_id=item.id,
            name=item.name,
            quantity=selection.quantity,
            price=unit_price,
            line_total=unit_price * selection.quantity,
            selected_size=selection.selected_size,
            selected_milk=selection.selected_milk,
            add_cold_foam=selection.add_cold_foam,
            special_instructions=selection.special_instructions,
        ))
    return lines


def price_order(
        selections: Iterable[LineItemSelection],
        get_item: ItemLookup,
        coupon_store=None,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None,
        rules: PriceRules = DEFAULT_RULES,
) -> Tuple[List[OrderItem], PricingResult]:
    """
    Runs the full pipeline for one order.

    The coupon, when given, is evaluated against subtotal + tax.

    Returns:
        Tuple[List[OrderItem], PricingResult]: Line snapshots and the priced totals.

    Raises:
        InvalidQuantity, ItemNotFound: From line resolution.
        CouponNotFound, CouponInactive, CouponExpired, CouponUsageLimitReached,
        CouponBelowMinimum: From coupon evaluation.
    """
    # Imported here: coupons imports round_money from this module.
    from .coupons import evaluate_coupon

    lines = price_lines(selections, get_item, rules)
    subtotal = sum((line.line_total for line in lines), Decimal("0"))
    tax, total = apply_tax(subtotal, rules.tax_rate)

    result = PricingResult(
        subtotal=round_money(subtotal),
        tax=tax,
        discount=Decimal("0.00"),
        final_amount=round_money(total),
    )

    if coupon_code:
        quote = evaluate_coupon(coupon_store, coupon_code, round_money(total), now=now)
        result.discount = quote.discount_amount
        result.final_amount = quote.final_amount
        result.coupon_id = quote.coupon_id
        result.coupon_code = quote.code

    return lines, result
