"""
coupons.py — Coupon Evaluation, Redemption and Administration

Validation and redemption are separate steps:
    - `validate_and_price` / `evaluate_coupon` never mutate anything.
    - `apply_coupon` increments the redemption counter through the store's
      atomic check-and-increment, optionally keyed by order id so a retried
      redemption for the same order is counted once.

Rejections are raised as typed `CheckoutError` subclasses, checked in a fixed
order (not found, inactive, expired, usage limit, minimum amount); the first
failing check wins.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from .errors import (
    CouponBelowMinimum,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
    CouponUsageLimitReached,
    DuplicateCouponCode,
    InvalidDiscount,
)
from .models import Coupon, CouponCreate, CouponQuote, CouponUpdate, DiscountType
from .pricing import round_money

log = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_usable(coupon: Coupon, now: datetime) -> bool:
    """Active and not yet expired. Usage limit and minimum are not considered."""
    return coupon.is_active and _as_utc(now) <= coupon.expiration_date


def compute_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
    """Unrounded discount, capped at the order amount."""
    order_amount = Decimal(order_amount)
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_amount * Decimal(coupon.discount_value) / Decimal(100)
    else:
        discount = Decimal(coupon.discount_value)
    return min(discount, order_amount)


def validate_and_price(coupon: Optional[Coupon], order_amount: Decimal, now: Optional[datetime] = None,
                       code: str = "") -> CouponQuote:
    """
    Validates a coupon against an order amount and computes the discount.

    Args:
        coupon (Optional[Coupon]): The looked-up coupon, or None when the lookup missed.
        order_amount (Decimal): Amount the discount applies to.
        now (Optional[datetime]): Evaluation instant; read once from the clock when omitted.
        code (str): Code as entered, used for the not-found rejection.

    Returns:
        CouponQuote: Discount and final amount, rounded to cents.

    Raises:
        CouponNotFound, CouponInactive, CouponExpired, CouponUsageLimitReached, CouponBelowMinimum
    """
    if coupon is None:
        raise CouponNotFound(code)

    now = _as_utc(now or datetime.now(timezone.utc))
    order_amount = Decimal(order_amount)

    if not coupon.is_active:
        raise CouponInactive(coupon.code)

    if now > coupon.expiration_date:
        raise CouponExpired(coupon.code)

    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        raise CouponUsageLimitReached(coupon.code)

    if order_amount < coupon.minimum_order_amount:
        raise CouponBelowMinimum(coupon.code, Decimal(coupon.minimum_order_amount))

    discount = round_money(compute_discount(coupon, order_amount))
    return CouponQuote(
        coupon_id=coupon.id,
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        order_amount=order_amount,
        discount_amount=discount,
        final_amount=round_money(order_amount - discount),
    )


def evaluate_coupon(store, code: str, order_amount: Decimal, now: Optional[datetime] = None) -> CouponQuote:
    """Case-insensitive lookup followed by `validate_and_price`."""
    normalized = normalize_code(code)
    coupon = store.get_coupon_by_code(normalized) if normalized else None
    return validate_and_price(coupon, order_amount, now=now, code=normalized)


def apply_coupon(store, coupon_id: str, order_id: Optional[str] = None) -> Coupon:
    """
    Records one redemption of a coupon.

    Should be invoked only once the associated order exists. With an `order_id`
    the redemption is idempotent for that order.

    Raises:
        CouponNotFound: If the coupon does not exist.
        CouponUsageLimitReached: If the coupon is already exhausted.
    """
    coupon = store.increment_usage(coupon_id, order_id)
    log.info(f"[Coupon: {coupon.code}] Redeemed (order: {order_id or '-'}), used {coupon.used_count}"
             f"/{coupon.max_uses if coupon.max_uses is not None else 'unlimited'}.")
    return coupon


def release_coupon(store, coupon_id: str, order_id: str) -> Coupon:
    """Undoes the redemption recorded for `order_id` (no-op if there is none)."""
    coupon = store.release_usage(coupon_id, order_id)
    log.info(f"[Coupon: {coupon.code}] Redemption for order {order_id} released.")
    return coupon


# --- Administration ---

def create_coupon(store, payload: CouponCreate) -> Coupon:
    """
    Creates a coupon. The code is stored upper-cased, a missing minimum becomes 0
    and a missing or zero `max_uses` means unlimited.

    Raises:
        DuplicateCouponCode: If another coupon already uses the code.
    """
    code = normalize_code(payload.code)
    if store.get_coupon_by_code(code) is not None:
        raise DuplicateCouponCode(code)

    coupon = Coupon(
        code=code,
        discount_type=payload.discount_type,
        discount_value=payload.discount_value,
        minimum_order_amount=payload.minimum_order_amount or Decimal("0"),
        expiration_date=payload.expiration_date,
        max_uses=payload.max_uses or None,
        used_count=0,
        is_active=True,
    )
    store.create_coupon(coupon)
    log.info(f"[Coupon: {code}] Created ({coupon.discount_type.value} {coupon.discount_value}).")
    return coupon


def get_coupon(store, coupon_id: str) -> Coupon:
    coupon = store.get_coupon(coupon_id)
    if coupon is None:
        raise CouponNotFound(coupon_id)
    return coupon


def update_coupon(store, coupon_id: str, payload: CouponUpdate) -> Coupon:
    """
    Applies a partial update. A changed code must stay unique.

    Raises:
        CouponNotFound, DuplicateCouponCode, InvalidDiscount
    """
    coupon = get_coupon(store, coupon_id)
    changes = {
        field: value for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field == "max_uses"
    }

    if changes.get("code"):
        code = normalize_code(changes["code"])
        existing = store.get_coupon_by_code(code)
        if existing is not None and existing.id != coupon_id:
            raise DuplicateCouponCode(code)
        changes["code"] = code
    else:
        changes.pop("code", None)

    if "max_uses" in changes:
        changes["max_uses"] = changes["max_uses"] or None

    updated = Coupon.model_validate({**coupon.model_dump(), **changes})
    if updated.discount_type == DiscountType.PERCENTAGE and updated.discount_value > 100:
        raise InvalidDiscount("Percentage discounts cannot exceed 100")

    store.save_coupon(updated)
    log.info(f"[Coupon: {updated.code}] Updated fields: {sorted(changes)}.")
    return updated


def delete_coupon(store, coupon_id: str):
    coupon = get_coupon(store, coupon_id)
    store.delete_coupon(coupon.id)
    log.info(f"[Coupon: {coupon.code}] Deleted.")


def list_coupons(store) -> List[Coupon]:
    """All coupons, newest first."""
    return sorted(store.list_coupons(), key=lambda c: c.created_at, reverse=True)


def list_active_coupons(store, now: Optional[datetime] = None) -> List[Coupon]:
    now = now or datetime.now(timezone.utc)
    return [c for c in list_coupons(store) if is_usable(c, now)]
