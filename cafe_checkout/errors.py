"""
errors.py — Error Taxonomy for Pricing, Cart and Checkout

Every failure the service reports to a caller is a subclass of `CheckoutError`.
Each carries a stable `kind` (used by clients to branch), a human-readable
`message` and the HTTP status code the API answers with.

None of these errors are transient; a retry with the same input fails the same way.
"""

from decimal import Decimal


class CheckoutError(Exception):
    """Base class for all caller-visible rejections."""
    kind = "checkout_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "message": self.message}


# --- Catalog / line items ---

class ItemNotFound(CheckoutError):
    kind = "item_not_found"
    status_code = 404

    def __init__(self, item_id: str):
        super().__init__(f"Menu item {item_id} not found")
        self.item_id = item_id


class DuplicateMenuItem(CheckoutError):
    kind = "duplicate_menu_item"
    status_code = 409

    def __init__(self, item_id: str):
        super().__init__(f"Menu item {item_id} already exists")
        self.item_id = item_id


class ItemUnavailable(CheckoutError):
    kind = "item_unavailable"

    def __init__(self, item_id: str):
        super().__init__(f"Menu item {item_id} is currently unavailable")
        self.item_id = item_id


class InvalidQuantity(CheckoutError):
    kind = "invalid_quantity"

    def __init__(self, quantity):
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")
        self.quantity = quantity


class UnknownSize(CheckoutError):
    kind = "unknown_size"

    def __init__(self, item_id: str, size: str):
        super().__init__(f"Size '{size}' is not offered for menu item {item_id}")
        self.item_id = item_id
        self.size = size


# --- Coupons ---

class CouponNotFound(CheckoutError):
    kind = "coupon_not_found"
    status_code = 404

    def __init__(self, code: str):
        super().__init__("Invalid coupon code")
        self.code = code


class CouponInactive(CheckoutError):
    kind = "coupon_inactive"

    def __init__(self, code: str):
        super().__init__("Coupon is not active")
        self.code = code


class CouponExpired(CheckoutError):
    kind = "coupon_expired"

    def __init__(self, code: str):
        super().__init__("Coupon has expired")
        self.code = code


class CouponUsageLimitReached(CheckoutError):
    kind = "coupon_usage_limit_reached"

    def __init__(self, code: str):
        super().__init__("Coupon usage limit reached")
        self.code = code


class CouponBelowMinimum(CheckoutError):
    """Order amount does not reach the coupon's minimum; `minimum` is exposed for display."""
    kind = "coupon_below_minimum"

    def __init__(self, code: str, minimum: Decimal):
        super().__init__(f"Minimum order amount is ${minimum:.2f}")
        self.code = code
        self.minimum = minimum

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["minimumOrderAmount"] = float(self.minimum)
        return data


class InvalidDiscount(CheckoutError):
    kind = "invalid_discount"


class DuplicateCouponCode(CheckoutError):
    kind = "duplicate_coupon_code"
    status_code = 409

    def __init__(self, code: str):
        super().__init__("Coupon code already exists")
        self.code = code


# --- Cart / orders ---

class CartLineNotFound(CheckoutError):
    kind = "cart_line_not_found"
    status_code = 404

    def __init__(self, line_id: str):
        super().__init__("Item not found in cart")
        self.line_id = line_id


class EmptyCart(CheckoutError):
    kind = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty. Please add items to your cart and try again.")


class StaleCart(CheckoutError):
    """The cart changed between read and write (optimistic version mismatch)."""
    kind = "stale_cart"
    status_code = 409

    def __init__(self, owner: str, expected: int, actual: int):
        super().__init__("Cart was modified concurrently, reload and try again")
        self.owner = owner
        self.expected = expected
        self.actual = actual


class OrderNotFound(CheckoutError):
    kind = "order_not_found"
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__("Order not found")
        self.order_id = order_id


class NotAuthorized(CheckoutError):
    kind = "not_authorized"
    status_code = 401
