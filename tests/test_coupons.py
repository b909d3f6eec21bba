"""Tests for coupon evaluation, redemption counting and administration."""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from cafe_checkout import coupons
from cafe_checkout.errors import (
    CouponBelowMinimum,
    CouponExpired,
    CouponInactive,
    CouponNotFound,
    CouponUsageLimitReached,
    DuplicateCouponCode,
    InvalidDiscount,
)
from cafe_checkout.models import CouponCreate, CouponUpdate, DiscountType
from cafe_checkout.stores import InMemoryCouponStore


class TestValidateAndPrice:

    def test_percentage(self, make_coupon, now):
        quote = coupons.validate_and_price(make_coupon(value="10", minimum="15.00"), Decimal("17.28"), now=now)
        assert quote.discount_amount == Decimal("1.73")
        assert quote.final_amount == Decimal("15.55")

    def test_fixed_is_capped_at_order_amount(self, make_coupon, now):
        coupon = make_coupon(code="FLAT20", discount_type=DiscountType.FIXED, value="20.00")
        quote = coupons.validate_and_price(coupon, Decimal("17.28"), now=now)
        assert quote.discount_amount == Decimal("17.28")
        assert quote.final_amount == Decimal("0.00")

    @pytest.mark.parametrize("value", ["0", "0.01", "5.00", "17.27", "17.28", "99.99"])
    def test_fixed_never_negative(self, make_coupon, now, value):
        coupon = make_coupon(discount_type=DiscountType.FIXED, value=value)
        quote = coupons.validate_and_price(coupon, Decimal("17.28"), now=now)
        assert quote.final_amount == max(Decimal("0"), Decimal("17.28") - Decimal(value))

    def test_full_percentage_is_free(self, make_coupon, now):
        quote = coupons.validate_and_price(make_coupon(value="100"), Decimal("42.17"), now=now)
        assert quote.final_amount == Decimal("0.00")

    def test_percentage_above_hundred_is_capped(self, make_coupon, now):
        quote = coupons.validate_and_price(make_coupon(value="150"), Decimal("10.00"), now=now)
        assert quote.discount_amount == Decimal("10.00")
        assert quote.final_amount == Decimal("0.00")

    def test_missing_coupon(self, now):
        with pytest.raises(CouponNotFound):
            coupons.validate_and_price(None, Decimal("10"), now=now, code="NOPE")

    def test_expired_yesterday(self, make_coupon, now):
        with pytest.raises(CouponExpired):
            coupons.validate_and_price(make_coupon(expires_in=timedelta(days=-1)), Decimal("17.28"), now=now)

    def test_expiry_instant_itself_is_still_valid(self, make_coupon, now):
        quote = coupons.validate_and_price(make_coupon(expires_in=timedelta(0)), Decimal("10.00"), now=now)
        assert quote.discount_amount == Decimal("1.00")

    @pytest.mark.parametrize("amount", ["0", "5.00", "17.28", "1000.00"])
    def test_usage_limit_regardless_of_amount(self, make_coupon, now, amount):
        with pytest.raises(CouponUsageLimitReached):
            coupons.validate_and_price(make_coupon(max_uses=1, used_count=1), Decimal(amount), now=now)

    def test_below_minimum_reports_minimum(self, make_coupon, now):
        with pytest.raises(CouponBelowMinimum) as exc_info:
            coupons.validate_and_price(make_coupon(minimum="15.00"), Decimal("14.99"), now=now)
        assert exc_info.value.minimum == Decimal("15.00")
        assert "$15.00" in exc_info.value.message
        assert exc_info.value.to_dict()["minimumOrderAmount"] == 15.0

    def test_rejection_order_is_deterministic(self, make_coupon, now):
        everything_wrong = dict(expires_in=timedelta(days=-1), max_uses=1, used_count=1, minimum="100")
        cases = [
            (make_coupon(is_active=False, **everything_wrong), CouponInactive),
            (make_coupon(**everything_wrong), CouponExpired),
            (make_coupon(max_uses=1, used_count=1, minimum="100"), CouponUsageLimitReached),
            (make_coupon(minimum="100"), CouponBelowMinimum),
        ]
        for coupon, expected in cases:
            for _ in range(3):
                with pytest.raises(expected):
                    coupons.validate_and_price(coupon, Decimal("10.00"), now=now)

    def test_zero_max_uses_is_unlimited(self, make_coupon, now):
        coupon = make_coupon(max_uses=0, used_count=7)
        assert coupon.max_uses is None
        quote = coupons.validate_and_price(coupon, Decimal("10.00"), now=now)
        assert quote.final_amount == Decimal("9.00")

    def test_naive_now_is_treated_as_utc(self, make_coupon, now):
        quote = coupons.validate_and_price(make_coupon(), Decimal("10.00"), now=now.replace(tzinfo=None))
        assert quote.final_amount == Decimal("9.00")


class TestEvaluateCoupon:

    def test_lookup_is_case_insensitive(self, make_coupon, now):
        store = InMemoryCouponStore([make_coupon(code="SAVE10")])
        quote = coupons.evaluate_coupon(store, "  save10 ", Decimal("20.00"), now=now)
        assert quote.code == "SAVE10"
        assert quote.discount_amount == Decimal("2.00")

    def test_unknown_code(self, now):
        with pytest.raises(CouponNotFound):
            coupons.evaluate_coupon(InMemoryCouponStore(), "GHOST", Decimal("20.00"), now=now)

    def test_validation_does_not_mutate(self, make_coupon, now):
        coupon = make_coupon(max_uses=3)
        store = InMemoryCouponStore([coupon])
        for _ in range(5):
            coupons.evaluate_coupon(store, "SAVE10", Decimal("20.00"), now=now)
        assert store.get_coupon(coupon.id).used_count == 0


class TestRedemption:

    def test_apply_twice_then_limit(self, make_coupon):
        coupon = make_coupon(max_uses=2)
        store = InMemoryCouponStore([coupon])
        coupons.apply_coupon(store, coupon.id)
        coupons.apply_coupon(store, coupon.id)
        assert store.get_coupon(coupon.id).used_count == 2
        with pytest.raises(CouponUsageLimitReached):
            coupons.apply_coupon(store, coupon.id)
        assert store.get_coupon(coupon.id).used_count == 2

    def test_unlimited_coupon(self, make_coupon):
        coupon = make_coupon(max_uses=None)
        store = InMemoryCouponStore([coupon])
        for _ in range(10):
            coupons.apply_coupon(store, coupon.id)
        assert store.get_coupon(coupon.id).used_count == 10

    def test_zero_max_uses_never_runs_out(self, make_coupon):
        coupon = make_coupon(max_uses=0)
        store = InMemoryCouponStore([coupon])
        for _ in range(3):
            coupons.apply_coupon(store, coupon.id)
        assert store.get_coupon(coupon.id).used_count == 3

    def test_keyed_redemption_is_idempotent(self, make_coupon):
        coupon = make_coupon(max_uses=5)
        store = InMemoryCouponStore([coupon])
        coupons.apply_coupon(store, coupon.id, order_id="order-1")
        coupons.apply_coupon(store, coupon.id, order_id="order-1")
        assert store.get_coupon(coupon.id).used_count == 1

    def test_release_undoes_keyed_redemption_once(self, make_coupon):
        coupon = make_coupon(max_uses=5)
        store = InMemoryCouponStore([coupon])
        coupons.apply_coupon(store, coupon.id, order_id="order-1")
        coupons.release_coupon(store, coupon.id, "order-1")
        coupons.release_coupon(store, coupon.id, "order-1")
        assert store.get_coupon(coupon.id).used_count == 0

    def test_missing_coupon(self):
        with pytest.raises(CouponNotFound):
            coupons.apply_coupon(InMemoryCouponStore(), "nope")

    def test_concurrent_redemptions_respect_limit(self, make_coupon):
        coupon = make_coupon(max_uses=5)
        store = InMemoryCouponStore([coupon])
        rejected = []

        def redeem(n):
            try:
                coupons.apply_coupon(store, coupon.id, order_id=f"order-{n}")
            except CouponUsageLimitReached:
                rejected.append(n)

        threads = [threading.Thread(target=redeem, args=(n,)) for n in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get_coupon(coupon.id).used_count == 5
        assert len(rejected) == 15


class TestAdministration:

    def payload(self, now, **overrides):
        data = dict(code="welcome", discount_type="fixed", discount_value="5.00", expiration_date=now + timedelta(days=7))
        data.update(overrides)
        return CouponCreate(**data)

    def test_create_normalizes(self, now):
        store = InMemoryCouponStore()
        coupon = coupons.create_coupon(store, self.payload(now, max_uses=0))
        assert coupon.code == "WELCOME"
        assert coupon.max_uses is None
        assert coupon.minimum_order_amount == 0
        assert coupon.used_count == 0
        assert coupon.is_active
        assert store.get_coupon_by_code("welcome").id == coupon.id

    def test_duplicate_code(self, now):
        store = InMemoryCouponStore()
        coupons.create_coupon(store, self.payload(now))
        with pytest.raises(DuplicateCouponCode):
            coupons.create_coupon(store, self.payload(now, code="WELCOME "))

    def test_percentage_over_hundred_rejected_on_create(self, now):
        with pytest.raises(ValidationError):
            self.payload(now, discount_type="percentage", discount_value="150")

    @pytest.mark.parametrize("code", ["SAVE.10", "A#B", "X$", "[HI]", "A/B"])
    def test_reserved_characters_rejected(self, now, code):
        with pytest.raises(ValidationError):
            self.payload(now, code=code)
        with pytest.raises(ValidationError):
            CouponUpdate(code=code)

    def test_update(self, now):
        store = InMemoryCouponStore()
        coupon = coupons.create_coupon(store, self.payload(now, max_uses=3))
        coupons.apply_coupon(store, coupon.id)

        updated = coupons.update_coupon(store, coupon.id, CouponUpdate(code="hello", is_active=False))
        assert updated.code == "HELLO"
        assert not updated.is_active
        assert updated.used_count == 1
        assert updated.max_uses == 3
        assert store.get_coupon_by_code("HELLO").id == coupon.id

    def test_update_code_conflict(self, now):
        store = InMemoryCouponStore()
        first = coupons.create_coupon(store, self.payload(now, code="ONE"))
        coupons.create_coupon(store, self.payload(now, code="TWO"))
        with pytest.raises(DuplicateCouponCode):
            coupons.update_coupon(store, first.id, CouponUpdate(code="two"))

    def test_update_to_invalid_percentage(self, now):
        store = InMemoryCouponStore()
        coupon = coupons.create_coupon(store, self.payload(now, discount_value="150"))
        with pytest.raises(InvalidDiscount):
            coupons.update_coupon(store, coupon.id, CouponUpdate(discount_type="percentage"))

    def test_delete(self, now):
        store = InMemoryCouponStore()
        coupon = coupons.create_coupon(store, self.payload(now))
        coupons.delete_coupon(store, coupon.id)
        assert store.get_coupon(coupon.id) is None
        with pytest.raises(CouponNotFound):
            coupons.delete_coupon(store, coupon.id)

    def test_active_listing(self, make_coupon, now):
        store = InMemoryCouponStore([
            make_coupon(code="LIVE"),
            make_coupon(code="OFF", is_active=False),
            make_coupon(code="OLD", expires_in=timedelta(days=-2)),
        ])
        assert [c.code for c in coupons.list_active_coupons(store, now)] == ["LIVE"]
        assert len(coupons.list_coupons(store)) == 3
