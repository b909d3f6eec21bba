"""
models.py — Data Models for Pricing, Carts, Coupons and Orders

This module defines the data structures shared by the pricing pipeline, the
stores and the REST API. It uses Pydantic models to ensure type safety and
automatic validation of incoming data.

Conventions:
    - Python attributes are snake_case; JSON payloads use camelCase aliases
      (`menuItemId`, `selectedSize`, ...). Both spellings are accepted on input.
    - Currency amounts are `Decimal` internally and JSON numbers on the wire.

Models:
    - CatalogItem / SizeVariant: purchasable menu items and their size price points.
    - LineItemSelection / CartLine / Cart: a customer's configured lines.
    - Coupon / CouponQuote: discount rules and the outcome of evaluating one.
    - PricingResult: subtotal, tax, discount and final amount of a priced order.
    - Order / OrderItem: persisted orders with per-line price snapshots.
    - *Request models: validated REST payloads.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PlainSerializer, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model: camelCase JSON aliases, population by field name allowed."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Enums ---

class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class OrderType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    RECEIPT_UPLOAD = "receipt_upload"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


# --- Catalog ---

class SizeVariant(CamelModel):
    """A named alternative price point (e.g. "Large"). Its price replaces the base price."""
    size: str
    price: Money = Field(..., ge=0)


class CatalogItem(CamelModel):
    """
    A purchasable menu item.

    Attributes:
        id (str): Store identifier.
        name (str): Display name.
        category (str): Menu category, e.g. "Coffee".
        price (Decimal): Base price, used when no size variant applies.
        sizes (List[SizeVariant]): Optional ordered size variants with absolute prices.
        available (bool): Whether the item can currently be ordered.
        alt_milk_options (List[str]): Alternative milks offered for this item.
        cold_foam_available (bool): Whether cold foam can be added.
    """
    id: str = Field(default_factory=new_id)
    name: str
    category: str
    description: Optional[str] = None
    price: Money = Field(..., ge=0)
    sizes: List[SizeVariant] = Field(default_factory=list)
    available: bool = True
    dietary: List[str] = Field(default_factory=list)
    alt_milk_options: List[str] = Field(default_factory=list)
    cold_foam_available: bool = False
    image: Optional[str] = None


class CatalogItemUpdate(CamelModel):
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Money] = Field(None, ge=0)
    sizes: Optional[List[SizeVariant]] = None
    available: Optional[bool] = None
    dietary: Optional[List[str]] = None
    alt_milk_options: Optional[List[str]] = None
    cold_foam_available: Optional[bool] = None
    image: Optional[str] = None


# --- Cart ---

class LineItemSelection(CamelModel):
    """
    A customer's configuration for one cart or order row.

    `quantity` is deliberately unconstrained here; the aggregator rejects
    non-positive quantities with `InvalidQuantity`. Request models enforce gt=0.
    """
    menu_item_id: str
    quantity: int = 1
    selected_size: Optional[str] = None
    add_cold_foam: bool = False
    selected_milk: Optional[str] = None
    special_instructions: Optional[str] = None

    def same_configuration(self, other: "LineItemSelection") -> bool:
        return (
            self.menu_item_id == other.menu_item_id
            and self.selected_size == other.selected_size
            and self.selected_milk == other.selected_milk
            and self.add_cold_foam == other.add_cold_foam
        )


class CartLine(LineItemSelection):
    id: str = Field(default_factory=new_id)


class Cart(CamelModel):
    """
    A cart snapshot owned by a user or guest session.

    `total_amount` is derived and recomputed on every mutation. `version`
    increases on every successful save and backs optimistic concurrency.
    """
    owner: str
    items: List[CartLine] = Field(default_factory=list)
    total_amount: Money = Decimal("0")
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)


class AddToCartRequest(CamelModel):
    menu_item_id: str
    quantity: int = Field(1, gt=0)  # gt=0 means "greater than 0"
    selected_size: Optional[str] = None
    selected_milk: Optional[str] = None
    add_cold_foam: bool = False
    special_instructions: Optional[str] = None
    expected_version: Optional[int] = None

    def to_selection(self) -> LineItemSelection:
        return LineItemSelection(**self.model_dump(exclude={"expected_version"}))


class UpdateCartItemRequest(CamelModel):
    quantity: int = Field(..., gt=0)
    expected_version: Optional[int] = None


# --- Coupons ---

class Coupon(CamelModel):
    """
    A discount rule.

    Attributes:
        code (str): Unique, stored upper-cased; looked up case-insensitively.
        discount_type (DiscountType): percentage or fixed amount.
        discount_value (Decimal): Percent (0-100) or currency amount.
        minimum_order_amount (Decimal): Order amount required to qualify.
        expiration_date (datetime): Instant after which the coupon is rejected.
        max_uses (Optional[int]): Redemption cap, None means unlimited.
        used_count (int): Redemptions so far. Only changed by redemption, never by validation.
        is_active (bool): Admin switch.
    """
    id: str = Field(default_factory=new_id)
    code: str
    discount_type: DiscountType
    discount_value: Money = Field(..., ge=0)
    minimum_order_amount: Money = Decimal("0")
    expiration_date: datetime
    max_uses: Optional[int] = None
    used_count: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("code")
    @classmethod
    def upper_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("max_uses")
    @classmethod
    def zero_is_unlimited(cls, value: Optional[int]) -> Optional[int]:
        return value or None

    @field_validator("expiration_date", "created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# Characters the Realtime Database does not accept in keys
KEY_FORBIDDEN_CHARS = ".#$[]/"


def _check_code(value: Optional[str]) -> Optional[str]:
    if value is not None and any(ch in KEY_FORBIDDEN_CHARS for ch in value):
        raise ValueError(f"coupon codes cannot contain any of {KEY_FORBIDDEN_CHARS}")
    return value


def _check_percentage(discount_type, discount_value):
    if discount_type == DiscountType.PERCENTAGE and discount_value is not None and discount_value > 100:
        raise ValueError("percentage discounts cannot exceed 100")


class CouponCreate(CamelModel):
    code: str = Field(..., min_length=1)
    discount_type: DiscountType
    discount_value: Money = Field(..., ge=0)
    minimum_order_amount: Optional[Money] = Field(None, ge=0)
    expiration_date: datetime
    max_uses: Optional[int] = Field(None, ge=0)

    check_code_chars = field_validator("code")(_check_code)

    @model_validator(mode="after")
    def percentage_range(self):
        _check_percentage(self.discount_type, self.discount_value)
        return self


class CouponUpdate(CamelModel):
    code: Optional[str] = Field(None, min_length=1)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Money] = Field(None, ge=0)
    minimum_order_amount: Optional[Money] = Field(None, ge=0)
    expiration_date: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    check_code_chars = field_validator("code")(_check_code)


class CouponValidateRequest(CamelModel):
    code: str = Field(..., min_length=1)
    order_amount: Money = Field(..., ge=0)


class CouponApplyRequest(CamelModel):
    order_id: Optional[str] = None


class CouponQuote(CamelModel):
    """Outcome of a successful coupon evaluation. Amounts are rounded to cents."""
    coupon_id: str
    code: str
    discount_type: DiscountType
    discount_value: Money
    order_amount: Money
    discount_amount: Money
    final_amount: Money


# --- Pricing ---

class PricingResult(CamelModel):
    """
    Output of the pricing pipeline.

    final_amount = subtotal + tax - discount; the discount never exceeds subtotal + tax.
    """
    subtotal: Money
    tax: Money
    discount: Money = Decimal("0")
    final_amount: Money
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None

    @computed_field
    @property
    def total_before_discount(self) -> Money:
        return self.subtotal + self.tax


# --- Orders ---

class OrderItem(CamelModel):
    """Price snapshot of one ordered line; `price` is the resolved unit price."""
    menu_item_id: str
    name: str
    quantity: int
    price: Money
    line_total: Money
    selected_size: Optional[str] = None
    selected_milk: Optional[str] = None
    add_cold_foam: bool = False
    special_instructions: Optional[str] = None


class DeliveryAddress(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class GuestInfo(CamelModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)


class Order(CamelModel):
    id: str = Field(default_factory=new_id)
    owner: Optional[str] = None
    guest_info: Optional[GuestInfo] = None
    items: List[OrderItem]
    subtotal: Money
    tax: Money
    discount: Money = Decimal("0")
    total_amount: Money
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    order_type: OrderType
    delivery_address: Optional[DeliveryAddress] = None
    pickup_time: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_receipt: Optional[str] = None
    is_guest_order: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def order_number(self) -> str:
        """Short customer-facing reference: last six characters of the id."""
        return self.id[-6:].upper()


class CheckoutRequest(CamelModel):
    order_type: OrderType
    delivery_address: Optional[DeliveryAddress] = None
    pickup_time: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    coupon_code: Optional[str] = None
    expected_version: Optional[int] = None


class GuestLineItem(CamelModel):
    menu_item_id: str
    quantity: int = Field(1, gt=0)
    selected_size: Optional[str] = None
    selected_milk: Optional[str] = None
    add_cold_foam: bool = False
    special_instructions: Optional[str] = None

    def to_selection(self) -> LineItemSelection:
        return LineItemSelection(**self.model_dump())


class GuestCheckoutRequest(CheckoutRequest):
    guest_info: GuestInfo
    items: List[GuestLineItem] = Field(default_factory=list)


class OrderStatusUpdate(CamelModel):
    status: OrderStatus


class PaymentStatusUpdate(CamelModel):
    payment_status: PaymentStatus
    payment_receipt: Optional[str] = None
