"""Tests for the checkout workflow, its compensation steps and order tracking."""

from decimal import Decimal

import pytest

from cafe_checkout import workflow
from cafe_checkout.cart import CartService
from cafe_checkout.errors import (
    CouponBelowMinimum,
    CouponUsageLimitReached,
    EmptyCart,
    ItemNotFound,
    NotAuthorized,
    OrderNotFound,
    StaleCart,
)
from cafe_checkout.models import (
    CheckoutRequest,
    DeliveryAddress,
    GuestCheckoutRequest,
    LineItemSelection,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from cafe_checkout.stores import InMemoryCartStore, InMemoryCouponStore


@pytest.fixture
def filled_cart(stores):
    service = CartService(stores.catalog, stores.carts)
    service.add_item("u1", LineItemSelection(menu_item_id="latte", quantity=2, selected_size="Large",
                                             add_cold_foam=True))
    service.add_item("u1", LineItemSelection(menu_item_id="muffin"))
    return stores.carts.get_cart("u1")


def pickup(**kwargs):
    return CheckoutRequest(order_type=OrderType.PICKUP, payment_method=PaymentMethod.CARD, **kwargs)


def guest_request(items, **kwargs):
    return GuestCheckoutRequest(
        order_type=OrderType.PICKUP,
        guest_info={"firstName": "Ada", "lastName": "Lovelace", "email": "ada@cafe.com", "phone": "555-0100"},
        items=items,
        **kwargs,
    )


class TestCheckout:

    def test_creates_order_and_clears_cart(self, stores, filled_cart):
        order = workflow.process_checkout(stores, "u1", pickup())

        assert order.subtotal == Decimal("16.00")
        assert order.tax == Decimal("1.28")
        assert order.total_amount == Decimal("17.28")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert [item.price for item in order.items] == [Decimal("6.50"), Decimal("3.00")]
        assert stores.orders.get_order(order.id) is not None

        cart = stores.carts.get_cart("u1")
        assert cart.items == []
        assert cart.total_amount == 0

    def test_with_coupon_redeems_once(self, stores, filled_cart, make_coupon):
        coupon = make_coupon(code="SAVE10", minimum="15.00", max_uses=10)
        stores.coupons.create_coupon(coupon)

        order = workflow.process_checkout(stores, "u1", pickup(coupon_code="save10"))

        assert order.discount == Decimal("1.73")
        assert order.total_amount == Decimal("15.55")
        assert order.coupon_code == "SAVE10"
        assert stores.coupons.get_coupon(coupon.id).used_count == 1

    def test_empty_cart(self, stores):
        with pytest.raises(EmptyCart):
            workflow.process_checkout(stores, "nobody", pickup())
        assert stores.orders.list_orders() == []

    def test_outdated_expected_version(self, stores, filled_cart):
        with pytest.raises(StaleCart):
            workflow.process_checkout(stores, "u1", pickup(expected_version=filled_cart.version - 1))

    def test_rejected_coupon_creates_nothing(self, stores, make_coupon):
        CartService(stores.catalog, stores.carts).add_item("u1", LineItemSelection(menu_item_id="muffin"))
        stores.coupons.create_coupon(make_coupon(code="BIG", minimum="50.00"))

        with pytest.raises(CouponBelowMinimum):
            workflow.process_checkout(stores, "u1", pickup(coupon_code="BIG"))
        assert stores.orders.list_orders() == []
        assert len(stores.carts.get_cart("u1").items) == 1

    def test_coupon_exhausted_during_checkout_rolls_back(self, stores, filled_cart, make_coupon):
        coupon = make_coupon(code="LAST", max_uses=1)

        class RacingCouponStore(InMemoryCouponStore):
            def increment_usage(self, coupon_id, order_id=None):
                # Another checkout takes the last redemption first.
                super().increment_usage(coupon_id, "someone-else")
                return super().increment_usage(coupon_id, order_id)

        stores.coupons = RacingCouponStore([coupon])

        with pytest.raises(CouponUsageLimitReached):
            workflow.process_checkout(stores, "u1", pickup(coupon_code="LAST"))

        assert stores.orders.list_orders() == []
        assert len(stores.carts.get_cart("u1").items) == 2

    def test_cart_changed_during_checkout_rolls_back(self, stores, filled_cart, make_coupon):
        coupon = make_coupon(code="SAVE10", max_uses=5)
        stores.coupons.create_coupon(coupon)
        real_carts = stores.carts

        class InterleavedCartStore(InMemoryCartStore):
            def get_cart(self, owner):
                return real_carts.get_cart(owner)

            def save_cart(self, cart, expected_version):
                # The customer adds an item while the order is being committed.
                current = real_carts.get_cart(cart.owner)
                real_carts.save_cart(current, current.version)
                return real_carts.save_cart(cart, expected_version)

        stores.carts = InterleavedCartStore()

        with pytest.raises(StaleCart):
            workflow.process_checkout(stores, "u1", pickup(coupon_code="SAVE10"))

        assert stores.orders.list_orders() == []
        assert stores.coupons.get_coupon(coupon.id).used_count == 0
        assert len(real_carts.get_cart("u1").items) == 2

    def test_delivery_details(self, stores, filled_cart):
        address = DeliveryAddress(street="1 Bean St", city="Brewton")
        order = workflow.process_checkout(
            stores, "u1", CheckoutRequest(order_type=OrderType.DELIVERY, delivery_address=address),
        )
        assert order.delivery_address.street == "1 Bean St"
        assert order.pickup_time is None

    def test_pickup_drops_delivery_address(self, stores, filled_cart):
        order = workflow.process_checkout(
            stores, "u1", pickup(delivery_address=DeliveryAddress(street="ignored")),
        )
        assert order.delivery_address is None

    def test_quote_has_no_side_effects(self, stores, filled_cart, make_coupon):
        coupon = make_coupon(code="SAVE10", max_uses=1)
        stores.coupons.create_coupon(coupon)

        pricing = workflow.quote_cart(stores, "u1", "SAVE10")

        assert pricing.final_amount == Decimal("15.55")
        assert stores.coupons.get_coupon(coupon.id).used_count == 0
        assert stores.carts.get_cart("u1").version == filled_cart.version
        assert stores.orders.list_orders() == []


class TestGuestCheckout:

    def test_guest_order(self, stores):
        order = workflow.process_guest_checkout(stores, guest_request([
            {"menuItemId": "latte", "quantity": 1, "selectedMilk": "Oat Milk"},
        ]))
        assert order.is_guest_order
        assert order.owner is None
        assert order.guest_info.first_name == "Ada"
        assert order.subtotal == Decimal("4.75")
        assert order.total_amount == Decimal("5.13")

    def test_missing_item_rejects_whole_order(self, stores):
        with pytest.raises(ItemNotFound):
            workflow.process_guest_checkout(stores, guest_request([
                {"menuItemId": "muffin"},
                {"menuItemId": "ghost"},
            ]))
        assert stores.orders.list_orders() == []

    def test_no_items(self, stores):
        with pytest.raises(EmptyCart):
            workflow.process_guest_checkout(stores, guest_request([]))


class TestOrderTracking:

    def test_owner_can_track(self, stores, filled_cart):
        order = workflow.process_checkout(stores, "u1", pickup())
        assert workflow.track_order(stores, order.id, owner="u1").id == order.id
        with pytest.raises(NotAuthorized):
            workflow.track_order(stores, order.id, owner="u2")
        with pytest.raises(NotAuthorized):
            workflow.track_order(stores, order.id)

    def test_guest_order_is_public(self, stores):
        order = workflow.process_guest_checkout(stores, guest_request([{"menuItemId": "muffin"}]))
        assert workflow.track_order(stores, order.id).order_number == order.id[-6:].upper()

    def test_unknown_order(self, stores):
        with pytest.raises(OrderNotFound):
            workflow.get_order(stores, "missing")

    def test_status_updates(self, stores, filled_cart):
        order = workflow.process_checkout(stores, "u1", pickup())
        workflow.update_order_status(stores, order.id, OrderStatus.PREPARING)
        updated = workflow.update_payment_status(stores, order.id, PaymentStatus.PAID, "https://receipts/1.png")

        assert updated.status == OrderStatus.PREPARING
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.payment_receipt == "https://receipts/1.png"
        assert [o.id for o in workflow.list_orders(stores, owner="u1")] == [order.id]
