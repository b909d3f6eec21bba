"""
stores.py — Repository Interfaces and In-Memory Stores

The pricing pipeline and the checkout workflow never touch a database
directly. They receive stores implementing the protocols below:

    - CatalogStore: menu items
    - CartStore:    carts with optimistic versioning
    - CouponStore:  coupons with an atomic check-and-increment for redemptions
    - OrderStore:   persisted orders

The in-memory implementations serialise all access through a lock and hand
out copies, so callers cannot mutate stored state by accident. The Firebase
implementations live in `firebase_store.py`.
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set

from .errors import CouponNotFound, CouponUsageLimitReached, StaleCart
from .models import Cart, CatalogItem, Coupon, Order, utcnow


class CatalogStore(Protocol):
    def get_item(self, item_id: str) -> Optional[CatalogItem]: ...

    def list_items(self) -> List[CatalogItem]: ...

    def save_item(self, item: CatalogItem) -> CatalogItem: ...

    def delete_item(self, item_id: str) -> bool: ...


class CartStore(Protocol):
    def get_cart(self, owner: str) -> Cart:
        """Returns the owner's cart, creating an empty one on first access."""
        ...

    def save_cart(self, cart: Cart, expected_version: int) -> Cart:
        """Persists `cart` if the stored version still equals `expected_version`, else raises StaleCart."""
        ...


class CouponStore(Protocol):
    def get_coupon(self, coupon_id: str) -> Optional[Coupon]: ...

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]: ...

    def list_coupons(self) -> List[Coupon]: ...

    def create_coupon(self, coupon: Coupon) -> Coupon: ...

    def save_coupon(self, coupon: Coupon) -> Coupon: ...

    def delete_coupon(self, coupon_id: str) -> bool: ...

    def increment_usage(self, coupon_id: str, order_id: Optional[str] = None) -> Coupon:
        """Atomically checks `max_uses` and increments `used_count`; idempotent per `order_id`."""
        ...

    def release_usage(self, coupon_id: str, order_id: str) -> Coupon: ...


class OrderStore(Protocol):
    def create_order(self, order: Order) -> Order: ...

    def get_order(self, order_id: str) -> Optional[Order]: ...

    def list_orders(self, owner: Optional[str] = None) -> List[Order]: ...

    def save_order(self, order: Order) -> Order: ...

    def delete_order(self, order_id: str) -> bool: ...


@dataclass
class Stores:
    """The set of stores one application instance works against."""
    catalog: CatalogStore
    carts: CartStore
    coupons: CouponStore
    orders: OrderStore


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class InMemoryCatalogStore:
    def __init__(self, items: Optional[List[CatalogItem]] = None):
        self._lock = threading.Lock()
        self._items: Dict[str, CatalogItem] = {}
        for item in items or []:
            self.save_item(item)

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        with self._lock:
            return _copy(self._items.get(item_id))

    def list_items(self) -> List[CatalogItem]:
        with self._lock:
            return [_copy(item) for item in self._items.values()]

    def save_item(self, item: CatalogItem) -> CatalogItem:
        with self._lock:
            self._items[item.id] = _copy(item)
        return item

    def delete_item(self, item_id: str) -> bool:
        with self._lock:
            return self._items.pop(item_id, None) is not None


class InMemoryCartStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._carts: Dict[str, Cart] = {}

    def get_cart(self, owner: str) -> Cart:
        with self._lock:
            cart = self._carts.get(owner)
            if cart is None:
                cart = Cart(owner=owner)
                self._carts[owner] = cart
            return _copy(cart)

    def save_cart(self, cart: Cart, expected_version: int) -> Cart:
        with self._lock:
            current = self._carts.get(cart.owner)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise StaleCart(cart.owner, expected_version, current_version)

            stored = cart.model_copy(deep=True, update={"version": current_version + 1, "updated_at": utcnow()})
            self._carts[cart.owner] = stored
            return _copy(stored)


class InMemoryCouponStore:
    def __init__(self, coupons: Optional[List[Coupon]] = None):
        self._lock = threading.Lock()
        self._coupons: Dict[str, Coupon] = {}
        self._redemptions: Dict[str, Set[str]] = {}
        for coupon in coupons or []:
            self.create_coupon(coupon)

    def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        with self._lock:
            return _copy(self._coupons.get(coupon_id))

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        code = code.strip().upper()
        with self._lock:
            for coupon in self._coupons.values():
                if coupon.code == code:
                    return _copy(coupon)
        return None

    def list_coupons(self) -> List[Coupon]:
        with self._lock:
            return [_copy(c) for c in self._coupons.values()]

    def create_coupon(self, coupon: Coupon) -> Coupon:
        with self._lock:
            self._coupons[coupon.id] = _copy(coupon)
            self._redemptions.setdefault(coupon.id, set())
        return coupon

    def save_coupon(self, coupon: Coupon) -> Coupon:
        with self._lock:
            stored = self._coupons.get(coupon.id)
            # used_count belongs to the redemption path, admin edits never overwrite it
            used = stored.used_count if stored is not None else coupon.used_count
            self._coupons[coupon.id] = coupon.model_copy(deep=True, update={"used_count": used})
            return _copy(self._coupons[coupon.id])

    def delete_coupon(self, coupon_id: str) -> bool:
        with self._lock:
            self._redemptions.pop(coupon_id, None)
            return self._coupons.pop(coupon_id, None) is not None

    def increment_usage(self, coupon_id: str, order_id: Optional[str] = None) -> Coupon:
        with self._lock:
            coupon = self._coupons.get(coupon_id)
            if coupon is None:
                raise CouponNotFound(coupon_id)

            redeemed = self._redemptions.setdefault(coupon_id, set())
            if order_id is not None and order_id in redeemed:
                return _copy(coupon)

            if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
                raise CouponUsageLimitReached(coupon.code)

            coupon.used_count += 1
            if order_id is not None:
                redeemed.add(order_id)
            return _copy(coupon)

    def release_usage(self, coupon_id: str, order_id: str) -> Coupon:
        with self._lock:
            coupon = self._coupons.get(coupon_id)
            if coupon is None:
                raise CouponNotFound(coupon_id)

            redeemed = self._redemptions.setdefault(coupon_id, set())
            if order_id in redeemed:
                redeemed.discard(order_id)
                coupon.used_count = max(0, coupon.used_count - 1)
            return _copy(coupon)


class InMemoryOrderStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}

    def create_order(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = _copy(order)
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return _copy(self._orders.get(order_id))

    def list_orders(self, owner: Optional[str] = None) -> List[Order]:
        with self._lock:
            orders = [_copy(o) for o in self._orders.values() if owner is None or o.owner == owner]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def save_order(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order.model_copy(deep=True, update={"updated_at": utcnow()})
            return _copy(self._orders[order.id])

    def delete_order(self, order_id: str) -> bool:
        with self._lock:
            return self._orders.pop(order_id, None) is not None


def memory_stores(items: Optional[List[CatalogItem]] = None, coupons: Optional[List[Coupon]] = None) -> Stores:
    return Stores(
        catalog=InMemoryCatalogStore(items),
        carts=InMemoryCartStore(),
        coupons=InMemoryCouponStore(coupons),
        orders=InMemoryOrderStore(),
    )
