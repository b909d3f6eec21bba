"""
firebase_store.py — Firebase Realtime Database Stores

Document-store implementations of the store protocols in `stores.py`.

Database layout:
    /menuItems/{itemId}
    /carts/{ownerKey}
    /coupons/{couponId}                      coupon document
    /coupons/{couponId}/redemptions/{orderId} keyed redemption markers
    /couponCodes/{CODE}                      code → couponId index
    /orders/{orderId}

Redemption counting and cart version checks run inside
`Reference.transaction`, so concurrent writers retry against fresh data
instead of overwriting each other.
"""

import logging
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, db

from .errors import CouponNotFound, CouponUsageLimitReached, StaleCart
from .models import KEY_FORBIDDEN_CHARS, Cart, CatalogItem, Coupon, Order, utcnow
from .stores import Stores

log = logging.getLogger(__name__)


def init_firebase(settings):
    """
    Initializes the Firebase app once and returns the database root reference.

    Raises:
        RuntimeError: If the service account or database URL is unusable.
    """
    if not firebase_admin._apps:
        try:
            cred = credentials.Certificate(settings.firebase_cred_json)
            firebase_admin.initialize_app(cred, {
                'databaseURL': settings.firebase_db_url
            })
        except Exception as e:
            raise RuntimeError(f"Firebase initialization failed: {e}") from e
        log.info("Firebase app initialized.")
    return db.reference("/")


def safe_key(raw: str) -> str:
    return "".join("_" if ch in KEY_FORBIDDEN_CHARS else ch for ch in raw)


def _doc(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class FirebaseCatalogStore:
    def __init__(self, root):
        self.ref = root.child("menuItems")

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        data = self.ref.child(safe_key(item_id)).get()
        return CatalogItem.model_validate(data) if data else None

    def list_items(self) -> List[CatalogItem]:
        data = self.ref.get() or {}
        return [CatalogItem.model_validate(doc) for doc in data.values()]

    def save_item(self, item: CatalogItem) -> CatalogItem:
        self.ref.child(safe_key(item.id)).set(_doc(item))
        return item

    def delete_item(self, item_id: str) -> bool:
        node = self.ref.child(safe_key(item_id))
        if node.get() is None:
            return False
        node.delete()
        return True


class FirebaseCartStore:
    def __init__(self, root):
        self.ref = root.child("carts")

    def get_cart(self, owner: str) -> Cart:
        node = self.ref.child(safe_key(owner))
        data = node.get()
        if data:
            return Cart.model_validate(data)

        cart = Cart(owner=owner)
        # A concurrent first access may have created it meanwhile; keep theirs.
        created = node.transaction(lambda current: current if current else _doc(cart))
        return Cart.model_validate(created)

    def save_cart(self, cart: Cart, expected_version: int) -> Cart:
        def update(current):
            current_version = (current or {}).get("version", 0)
            if current_version != expected_version:
                raise StaleCart(cart.owner, expected_version, current_version)
            return _doc(cart.model_copy(update={"version": current_version + 1, "updated_at": utcnow()}))

        stored = self.ref.child(safe_key(cart.owner)).transaction(update)
        return Cart.model_validate(stored)


class FirebaseCouponStore:
    def __init__(self, root):
        self.ref = root.child("coupons")
        self.codes = root.child("couponCodes")

    def get_coupon(self, coupon_id: str) -> Optional[Coupon]:
        data = self.ref.child(safe_key(coupon_id)).get()
        return Coupon.model_validate(data) if data else None

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        code = code.strip().upper()
        coupon_id = self.codes.child(safe_key(code)).get()
        coupon = self.get_coupon(coupon_id) if coupon_id else None
        # safe_key folds several codes onto one index key
        if coupon is None or coupon.code != code:
            return None
        return coupon

    def list_coupons(self) -> List[Coupon]:
        data = self.ref.get() or {}
        return [Coupon.model_validate(doc) for doc in data.values()]

    def create_coupon(self, coupon: Coupon) -> Coupon:
        self.ref.child(safe_key(coupon.id)).set(_doc(coupon))
        self.codes.child(safe_key(coupon.code)).set(coupon.id)
        return coupon

    def save_coupon(self, coupon: Coupon) -> Coupon:
        node = self.ref.child(safe_key(coupon.id))
        previous = node.get() or {}
        fields = _doc(coupon)
        # usedCount and redemptions are owned by the redemption transaction
        fields.pop("usedCount", None)
        if coupon.max_uses is None:
            node.child("maxUses").delete()
        node.update(fields)

        old_code = previous.get("code")
        if old_code and old_code != coupon.code:
            self.codes.child(safe_key(old_code)).delete()
        self.codes.child(safe_key(coupon.code)).set(coupon.id)
        return Coupon.model_validate(node.get())

    def delete_coupon(self, coupon_id: str) -> bool:
        node = self.ref.child(safe_key(coupon_id))
        data = node.get()
        if not data:
            return False
        node.delete()
        if data.get("code"):
            self.codes.child(safe_key(data["code"])).delete()
        return True

    def increment_usage(self, coupon_id: str, order_id: Optional[str] = None) -> Coupon:
        def update(current):
            if not current:
                raise CouponNotFound(coupon_id)
            redemptions = dict(current.get("redemptions") or {})
            if order_id is not None and safe_key(order_id) in redemptions:
                return current

            max_uses = current.get("maxUses")
            used = current.get("usedCount", 0)
            if max_uses and used >= max_uses:
                raise CouponUsageLimitReached(current.get("code", coupon_id))

            updated = dict(current)
            updated["usedCount"] = used + 1
            if order_id is not None:
                redemptions[safe_key(order_id)] = {"usedAt": utcnow().isoformat()}
                updated["redemptions"] = redemptions
            return updated

        stored = self.ref.child(safe_key(coupon_id)).transaction(update)
        return Coupon.model_validate(stored)

    def release_usage(self, coupon_id: str, order_id: str) -> Coupon:
        def update(current):
            if not current:
                raise CouponNotFound(coupon_id)
            redemptions = dict(current.get("redemptions") or {})
            if safe_key(order_id) not in redemptions:
                return current

            del redemptions[safe_key(order_id)]
            updated = dict(current)
            updated["usedCount"] = max(0, current.get("usedCount", 0) - 1)
            updated["redemptions"] = redemptions
            return updated

        stored = self.ref.child(safe_key(coupon_id)).transaction(update)
        return Coupon.model_validate(stored)


class FirebaseOrderStore:
    def __init__(self, root):
        self.ref = root.child("orders")

    def create_order(self, order: Order) -> Order:
        self.ref.child(safe_key(order.id)).set(_doc(order))
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        data = self.ref.child(safe_key(order_id)).get()
        return Order.model_validate(data) if data else None

    def list_orders(self, owner: Optional[str] = None) -> List[Order]:
        data = self.ref.get() or {}
        orders = [Order.model_validate(doc) for doc in data.values()]
        if owner is not None:
            orders = [o for o in orders if o.owner == owner]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def save_order(self, order: Order) -> Order:
        order = order.model_copy(update={"updated_at": utcnow()})
        self.ref.child(safe_key(order.id)).set(_doc(order))
        return order

    def delete_order(self, order_id: str) -> bool:
        node = self.ref.child(safe_key(order_id))
        if node.get() is None:
            return False
        node.delete()
        return True


def firebase_stores(root) -> Stores:
    return Stores(
        catalog=FirebaseCatalogStore(root),
        carts=FirebaseCartStore(root),
        coupons=FirebaseCouponStore(root),
        orders=FirebaseOrderStore(root),
    )
