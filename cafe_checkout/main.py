"""
main.py — FastAPI Entry Point for the Café Checkout Service

This module provides the REST API of the café ordering backend: menu, cart,
coupons, checkout and order tracking. Business rules live in the pricing,
coupon, cart and workflow modules; the handlers here only validate input,
call them and shape the response.

Responsibilities:
    • Build the application with its stores (in-memory or Firebase)
    • Map `CheckoutError`s to JSON error responses
    • Guard admin routes with the `x-api-key` header
    • Identify the cart owner through the `X-Cart-Owner` header
    • Provide system health information
"""

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import coupons as coupon_ops
from . import workflow
from .cart import CartService
from .config import Settings, load_settings
from .errors import CheckoutError, DuplicateMenuItem, ItemNotFound, NotAuthorized
from .logging_config import get_logger, setup_logging
from .models import (
    AddToCartRequest,
    CatalogItem,
    CatalogItemUpdate,
    CheckoutRequest,
    CouponApplyRequest,
    CouponCreate,
    CouponUpdate,
    CouponValidateRequest,
    GuestCheckoutRequest,
    OrderStatusUpdate,
    PaymentStatusUpdate,
    UpdateCartItemRequest,
)
from .pricing import PriceRules
from .stores import Stores, memory_stores

log = get_logger(__name__)
router = APIRouter()


def ok(data, **extra):
    return {"success": True, "data": data, **extra}


# --- Dependencies ---

def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def get_cart_service(request: Request) -> CartService:
    return request.app.state.cart_service


def get_rules(request: Request) -> PriceRules:
    return request.app.state.rules


def require_owner(owner: Optional[str] = Header(None, alias="X-Cart-Owner")) -> str:
    owner = (owner or "").strip()
    if not owner:
        raise NotAuthorized("X-Cart-Owner header is required")
    return owner


def optional_owner(owner: Optional[str] = Header(None, alias="X-Cart-Owner")) -> Optional[str]:
    return owner.strip() if owner else None


def check_admin(request: Request, api_key: Optional[str] = Header(None, alias="x-api-key")):
    expected = request.app.state.settings.admin_api_key
    if not expected or api_key != expected:
        raise NotAuthorized("Invalid API key")


# --- Health ---

@router.get("/health")
def health_check():
    """
    Simple health check endpoint for monitoring systems and container orchestrators.
    """
    return {"status": "ok"}


# --- Menu ---

@router.get("/api/menu")
def list_menu(category: Optional[str] = None, available: Optional[bool] = None,
              stores: Stores = Depends(get_stores)):
    items = stores.catalog.list_items()
    if category:
        items = [i for i in items if i.category.lower() == category.lower()]
    if available is not None:
        items = [i for i in items if i.available == available]
    items.sort(key=lambda i: (i.category, i.name))
    return ok(items, count=len(items))


@router.get("/api/menu/{item_id}")
def get_menu_item(item_id: str, stores: Stores = Depends(get_stores)):
    item = stores.catalog.get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    return ok(item)


@router.post("/api/menu", status_code=201, dependencies=[Depends(check_admin)])
def create_menu_item(item: CatalogItem, stores: Stores = Depends(get_stores)):
    if stores.catalog.get_item(item.id) is not None:
        raise DuplicateMenuItem(item.id)
    stores.catalog.save_item(item)
    log.info(f"[Menu: {item.id}] Created '{item.name}'.")
    return ok(item)


@router.put("/api/menu/{item_id}", dependencies=[Depends(check_admin)])
def update_menu_item(item_id: str, changes: CatalogItemUpdate, stores: Stores = Depends(get_stores)):
    item = stores.catalog.get_item(item_id)
    if item is None:
        raise ItemNotFound(item_id)
    updated = CatalogItem.model_validate({**item.model_dump(), **changes.model_dump(exclude_unset=True, exclude_none=True)})
    stores.catalog.save_item(updated)
    log.info(f"[Menu: {item_id}] Updated.")
    return ok(updated)


@router.delete("/api/menu/{item_id}", dependencies=[Depends(check_admin)])
def delete_menu_item(item_id: str, stores: Stores = Depends(get_stores)):
    if not stores.catalog.delete_item(item_id):
        raise ItemNotFound(item_id)
    log.info(f"[Menu: {item_id}] Deleted.")
    return {"success": True, "message": "Menu item deleted"}


# --- Cart ---

@router.get("/api/cart")
def get_cart(owner: str = Depends(require_owner), carts: CartService = Depends(get_cart_service)):
    return ok(carts.get_cart(owner))


@router.post("/api/cart")
def add_to_cart(body: AddToCartRequest, owner: str = Depends(require_owner),
                carts: CartService = Depends(get_cart_service)):
    return ok(carts.add_item(owner, body.to_selection(), body.expected_version))


@router.put("/api/cart/{line_id}")
def update_cart_item(line_id: str, body: UpdateCartItemRequest, owner: str = Depends(require_owner),
                     carts: CartService = Depends(get_cart_service)):
    return ok(carts.update_item(owner, line_id, body.quantity, body.expected_version))


@router.delete("/api/cart/{line_id}")
def remove_cart_item(line_id: str, expected_version: Optional[int] = Query(None, alias="expectedVersion"),
                     owner: str = Depends(require_owner), carts: CartService = Depends(get_cart_service)):
    return ok(carts.remove_item(owner, line_id, expected_version))


@router.delete("/api/cart")
def clear_cart(expected_version: Optional[int] = Query(None, alias="expectedVersion"),
               owner: str = Depends(require_owner), carts: CartService = Depends(get_cart_service)):
    return ok(carts.clear_cart(owner, expected_version))


# --- Coupons ---

@router.get("/api/coupons", dependencies=[Depends(check_admin)])
def list_coupons(stores: Stores = Depends(get_stores)):
    coupons = coupon_ops.list_coupons(stores.coupons)
    return ok(coupons, count=len(coupons))


@router.get("/api/coupons/active")
def list_active_coupons(stores: Stores = Depends(get_stores)):
    coupons = coupon_ops.list_active_coupons(stores.coupons)
    return ok(coupons, count=len(coupons))


@router.post("/api/coupons/validate")
def validate_coupon(body: CouponValidateRequest, stores: Stores = Depends(get_stores)):
    quote = coupon_ops.evaluate_coupon(stores.coupons, body.code, body.order_amount)
    return ok(quote)


@router.get("/api/coupons/{coupon_id}", dependencies=[Depends(check_admin)])
def get_coupon(coupon_id: str, stores: Stores = Depends(get_stores)):
    return ok(coupon_ops.get_coupon(stores.coupons, coupon_id))


@router.post("/api/coupons", status_code=201, dependencies=[Depends(check_admin)])
def create_coupon(body: CouponCreate, stores: Stores = Depends(get_stores)):
    coupon = coupon_ops.create_coupon(stores.coupons, body)
    return ok(coupon, message="Coupon created successfully")


@router.put("/api/coupons/{coupon_id}", dependencies=[Depends(check_admin)])
def update_coupon(coupon_id: str, body: CouponUpdate, stores: Stores = Depends(get_stores)):
    coupon = coupon_ops.update_coupon(stores.coupons, coupon_id, body)
    return ok(coupon, message="Coupon updated successfully")


@router.delete("/api/coupons/{coupon_id}", dependencies=[Depends(check_admin)])
def delete_coupon(coupon_id: str, stores: Stores = Depends(get_stores)):
    coupon_ops.delete_coupon(stores.coupons, coupon_id)
    return {"success": True, "message": "Coupon deleted successfully"}


@router.post("/api/coupons/{coupon_id}/apply")
def apply_coupon(coupon_id: str, body: Optional[CouponApplyRequest] = None, owner: str = Depends(require_owner),
                 stores: Stores = Depends(get_stores)):
    order_id = body.order_id if body else None
    coupon = coupon_ops.apply_coupon(stores.coupons, coupon_id, order_id)
    log.info(f"[Coupon: {coupon.code}] Redeemed by {owner}.")
    return ok(coupon, message="Coupon applied successfully")


# --- Checkout ---

@router.get("/api/checkout/quote")
def quote(coupon_code: Optional[str] = Query(None, alias="couponCode"), owner: str = Depends(require_owner),
          stores: Stores = Depends(get_stores), rules: PriceRules = Depends(get_rules)):
    return ok(workflow.quote_cart(stores, owner, coupon_code, rules=rules))


@router.post("/api/checkout", status_code=201)
def checkout(body: CheckoutRequest, owner: str = Depends(require_owner),
             stores: Stores = Depends(get_stores), rules: PriceRules = Depends(get_rules)):
    return ok(workflow.process_checkout(stores, owner, body, rules=rules))


@router.post("/api/checkout/guest", status_code=201)
def guest_checkout(body: GuestCheckoutRequest, stores: Stores = Depends(get_stores),
                   rules: PriceRules = Depends(get_rules)):
    return ok(workflow.process_guest_checkout(stores, body, rules=rules))


# --- Orders ---

@router.get("/api/orders", dependencies=[Depends(check_admin)])
def list_orders(owner: Optional[str] = None, stores: Stores = Depends(get_stores)):
    orders = workflow.list_orders(stores, owner)
    return ok(orders, count=len(orders))


@router.get("/api/orders/mine")
def my_orders(owner: str = Depends(require_owner), stores: Stores = Depends(get_stores)):
    orders = workflow.list_orders(stores, owner)
    return ok(orders, count=len(orders))


@router.get("/api/orders/track/{order_id}")
def track_order(order_id: str, owner: Optional[str] = Depends(optional_owner), stores: Stores = Depends(get_stores)):
    return ok(workflow.track_order(stores, order_id, owner))


@router.get("/api/orders/{order_id}", dependencies=[Depends(check_admin)])
def get_order(order_id: str, stores: Stores = Depends(get_stores)):
    return ok(workflow.get_order(stores, order_id))


@router.put("/api/orders/{order_id}/status", dependencies=[Depends(check_admin)])
def update_order_status(order_id: str, body: OrderStatusUpdate, stores: Stores = Depends(get_stores)):
    return ok(workflow.update_order_status(stores, order_id, body.status))


@router.put("/api/orders/{order_id}/payment", dependencies=[Depends(check_admin)])
def update_payment_status(order_id: str, body: PaymentStatusUpdate, stores: Stores = Depends(get_stores)):
    return ok(workflow.update_payment_status(stores, order_id, body.payment_status, body.payment_receipt))


# --- Application ---

def _default_stores(settings: Settings) -> Stores:
    if settings.store_backend == "firebase":
        from .firebase_store import firebase_stores, init_firebase
        return firebase_stores(init_firebase(settings))
    return memory_stores()


def create_app(settings: Optional[Settings] = None, stores: Optional[Stores] = None) -> FastAPI:
    """
    Builds the FastAPI application.

    Args:
        settings (Optional[Settings]): Configuration; loaded from the environment when omitted.
        stores (Optional[Stores]): Store set; chosen from `settings.store_backend` when omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or load_settings()
    stores = stores or _default_stores(settings)
    rules = PriceRules.from_settings(settings)

    app = FastAPI(title="Café Checkout Service")
    app.state.settings = settings
    app.state.stores = stores
    app.state.rules = rules
    app.state.cart_service = CartService(stores.catalog, stores.carts, rules=rules,
                                         strict_sizes=settings.strict_sizes)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        log.warning(f"{request.method} {request.url.path} rejected: {exc.kind} - {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        log.critical(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "message": "Server error"})

    @app.on_event("startup")
    def on_startup():
        log.info(f"Checkout service starting (store backend: {settings.store_backend}).")

    app.include_router(router)
    return app


_settings = load_settings()
setup_logging(_settings.log_level, _settings.log_file)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
