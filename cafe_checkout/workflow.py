"""
workflow.py — Core Orchestration Logic for Checkout

This module contains the checkout workflow. It coordinates the stores in the
correct sequence so that an order, its coupon redemption and the emptied cart
are committed together or not at all.

Workflow Overview:
1. Load and price the cart (Resolver → Aggregator → Tax → Coupon) without side effects
2. Create the order (status pending)
3. Redeem the coupon, keyed by the order id
4. Clear the cart at exactly the version that was priced
5. Handle errors with compensation steps (Saga Pattern): release the coupon
   redemption, delete the order, re-raise the original error

Order tracking and admin status updates live here as well.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from .coupons import apply_coupon, release_coupon
from .errors import EmptyCart, NotAuthorized, OrderNotFound, StaleCart
from .models import (
    CheckoutRequest,
    GuestCheckoutRequest,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentStatus,
    PricingResult,
)
from .pricing import DEFAULT_RULES, PriceRules, price_order

log = logging.getLogger(__name__)


def _build_order(request: CheckoutRequest, lines: List[OrderItem], pricing: PricingResult, **extra) -> Order:
    is_delivery = request.order_type == OrderType.DELIVERY
    return Order(
        items=lines,
        subtotal=pricing.subtotal,
        tax=pricing.tax,
        discount=pricing.discount,
        total_amount=pricing.final_amount,
        coupon_id=pricing.coupon_id,
        coupon_code=pricing.coupon_code,
        order_type=request.order_type,
        delivery_address=request.delivery_address if is_delivery else None,
        pickup_time=request.pickup_time if request.order_type == OrderType.PICKUP else None,
        payment_method=request.payment_method,
        **extra,
    )


def _compensate(stores, order: Order, redeemed_coupon_id: Optional[str]):
    """
    Undoes the steps that already succeeded, in reverse order.

    A failing compensation is logged as critical and does not stop the
    remaining compensation steps.
    """
    log_prefix = f"[Order: {order.id}]"

    if redeemed_coupon_id:
        try:
            release_coupon(stores.coupons, redeemed_coupon_id, order.id)
        except Exception as comp_e:
            log.critical(f"{log_prefix} COMPENSATION FAILED: coupon redemption not released ({comp_e}). "
                         f"MANUAL ACTION REQUIRED!")

    try:
        stores.orders.delete_order(order.id)
        log.info(f"{log_prefix} Compensation: order removed.")
    except Exception as comp_e:
        log.critical(f"{log_prefix} COMPENSATION FAILED: order not removed ({comp_e}). MANUAL ACTION REQUIRED!")


def _commit_order(stores, order: Order, finalize: Optional[Callable[[], object]] = None) -> Order:
    """
    Persists the order, redeems its coupon and runs `finalize` (clearing the cart).

    Raises:
        CouponUsageLimitReached: If the coupon ran out between pricing and redemption.
        StaleCart: If `finalize` finds the cart changed since it was priced.
        Exception: Any store error; compensation has run before it propagates.
    """
    log_prefix = f"[Order: {order.id}]"

    stores.orders.create_order(order)
    log.info(f"{log_prefix} Order created. Total: {order.total_amount} (discount: {order.discount}).")

    redeemed_coupon_id = None
    try:
        if order.coupon_id:
            apply_coupon(stores.coupons, order.coupon_id, order.id)
            redeemed_coupon_id = order.coupon_id

        if finalize is not None:
            finalize()

    except Exception as e:
        log.error(f"{log_prefix} Checkout failed after order creation ({e}). Starting compensation.")
        _compensate(stores, order, redeemed_coupon_id)
        raise

    log.info(f"{log_prefix} Checkout completed.")
    return order


def process_checkout(stores, owner: str, request: CheckoutRequest, rules: PriceRules = DEFAULT_RULES,
                     now: Optional[datetime] = None) -> Order:
    """
    Executes the checkout workflow for the owner's cart.

    Args:
        stores (Stores): Catalog, cart, coupon and order stores.
        owner (str): Cart owner key (user id or guest session id).
        request (CheckoutRequest): Order type, delivery/pickup details, payment method, optional coupon.
        rules (PriceRules): Tax rate and surcharges.
        now (Optional[datetime]): Instant used for coupon expiry.

    Returns:
        Order: The persisted order.

    Raises:
        EmptyCart: If the cart has no lines.
        StaleCart: If the cart changed while checking out, or `expected_version` is outdated.
        ItemNotFound, InvalidQuantity: If a line cannot be priced.
        CouponNotFound, CouponInactive, CouponExpired, CouponUsageLimitReached,
        CouponBelowMinimum: If the coupon cannot be applied.
    """
    log_prefix = f"[Cart: {owner}]"
    log.info(f"{log_prefix} Starting checkout.")

    cart = stores.carts.get_cart(owner)
    if request.expected_version is not None and request.expected_version != cart.version:
        raise StaleCart(owner, request.expected_version, cart.version)
    if not cart.items:
        log.warning(f"{log_prefix} Checkout rejected: cart is empty.")
        raise EmptyCart()

    lines, pricing = price_order(
        cart.items, stores.catalog.get_item,
        coupon_store=stores.coupons, coupon_code=request.coupon_code, now=now, rules=rules,
    )
    order = _build_order(request, lines, pricing, owner=owner)

    emptied = cart.model_copy(update={"items": [], "total_amount": Decimal("0")})
    return _commit_order(stores, order, finalize=lambda: stores.carts.save_cart(emptied, cart.version))


def process_guest_checkout(stores, request: GuestCheckoutRequest, rules: PriceRules = DEFAULT_RULES,
                           now: Optional[datetime] = None) -> Order:
    """
    Executes checkout for a guest who submits the items directly.

    Unknown menu items reject the whole order rather than being dropped.

    Raises:
        EmptyCart: If no items were submitted.
        ItemNotFound, InvalidQuantity, Coupon*: As in `process_checkout`.
    """
    if not request.items:
        raise EmptyCart()

    selections = [item.to_selection() for item in request.items]
    lines, pricing = price_order(
        selections, stores.catalog.get_item,
        coupon_store=stores.coupons, coupon_code=request.coupon_code, now=now, rules=rules,
    )
    order = _build_order(request, lines, pricing, guest_info=request.guest_info, is_guest_order=True)
    log.info(f"[Order: {order.id}] Guest checkout for {request.guest_info.email}.")
    return _commit_order(stores, order)


def quote_cart(stores, owner: str, coupon_code: Optional[str] = None, rules: PriceRules = DEFAULT_RULES,
               now: Optional[datetime] = None) -> PricingResult:
    """Prices the owner's cart (with an optional coupon) without changing anything."""
    cart = stores.carts.get_cart(owner)
    _, pricing = price_order(
        cart.items, stores.catalog.get_item,
        coupon_store=stores.coupons, coupon_code=coupon_code, now=now, rules=rules,
    )
    return pricing


# --- Order tracking ---

def get_order(stores, order_id: str) -> Order:
    order = stores.orders.get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def track_order(stores, order_id: str, owner: Optional[str] = None) -> Order:
    """
    Public order lookup. An owner may view their own orders; without an owner
    key only guest orders are visible.

    Raises:
        OrderNotFound, NotAuthorized
    """
    order = get_order(stores, order_id)
    if owner:
        if order.owner != owner:
            raise NotAuthorized("Not authorized to view this order")
    elif not order.is_guest_order:
        raise NotAuthorized("Please log in to view this order")
    return order


def list_orders(stores, owner: Optional[str] = None) -> List[Order]:
    return stores.orders.list_orders(owner)


def update_order_status(stores, order_id: str, status: OrderStatus) -> Order:
    order = get_order(stores, order_id)
    order.status = status
    saved = stores.orders.save_order(order)
    log.info(f"[Order: {order_id}] Status set to {status.value}.")
    return saved


def update_payment_status(stores, order_id: str, payment_status: PaymentStatus,
                          payment_receipt: Optional[str] = None) -> Order:
    order = get_order(stores, order_id)
    order.payment_status = payment_status
    if payment_receipt:
        order.payment_receipt = payment_receipt
    saved = stores.orders.save_order(order)
    log.info(f"[Order: {order_id}] Payment status set to {payment_status.value}.")
    return saved
