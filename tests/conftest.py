"""Shared fixtures: a small café menu, coupon factory and fresh in-memory stores per test."""

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Keep test runs off the disk log and away from Firebase.
os.environ["LOG_FILE"] = ""
os.environ["STORE_BACKEND"] = "memory"

from cafe_checkout.config import Settings
from cafe_checkout.models import CatalogItem, Coupon, DiscountType, SizeVariant
from cafe_checkout.stores import memory_stores

ADMIN_KEY = "test-admin-key"


@pytest.fixture
def latte():
    return CatalogItem(
        id="latte",
        name="Latte",
        category="Coffee",
        price=Decimal("4.00"),
        sizes=[SizeVariant(size="Small", price=Decimal("3.50")), SizeVariant(size="Large", price=Decimal("5.50"))],
        alt_milk_options=["Oat Milk", "Almond Milk"],
        cold_foam_available=True,
    )


@pytest.fixture
def muffin():
    return CatalogItem(id="muffin", name="Blueberry Muffin", category="Bakery", price=Decimal("3.00"))


@pytest.fixture
def seasonal():
    return CatalogItem(id="seasonal", name="Pumpkin Loaf", category="Bakery", price=Decimal("3.25"), available=False)


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def make_coupon(now):
    def factory(code="SAVE10", discount_type=DiscountType.PERCENTAGE, value="10", minimum="0",
                expires_in=timedelta(days=30), max_uses=None, used_count=0, is_active=True):
        return Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(value),
            minimum_order_amount=Decimal(minimum),
            expiration_date=now + expires_in,
            max_uses=max_uses,
            used_count=used_count,
            is_active=is_active,
        )
    return factory


@pytest.fixture
def stores(latte, muffin, seasonal):
    return memory_stores(items=[latte, muffin, seasonal])


@pytest.fixture
def settings():
    return Settings(admin_api_key=ADMIN_KEY, log_file="")


@pytest.fixture
def client(settings, stores):
    from fastapi.testclient import TestClient
    from cafe_checkout.main import create_app

    with TestClient(create_app(settings=settings, stores=stores)) as test_client:
        yield test_client
