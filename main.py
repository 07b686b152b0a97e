import json
import logging
from typing import Any, List, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import catalog
import coupons
import orders
from auth import (
    AdminPrincipal,
    active_store_id,
    authenticate,
    create_access_token,
    get_current_admin,
    get_optional_admin,
    register_admin,
    require_superadmin,
)
from cart import load_cart, options_key, save_cart
from config import Settings, get_settings
from database import ResilientStore, StoreError, get_store
from notifications import STORE_NAME, ResendMailer, get_mailer, send_order_confirmation
from payments import SIGNATURE_HEADER, GatewayError, InfinitePayClient, build_checkout_payload, get_gateway, is_paid, to_cents, verify_signature
from schemas import (
    COLLECTIONS,
    BlogPost,
    Category,
    CheckoutItem,
    CheckoutRequest,
    Coupon,
    CustomerData,
    OrderStatus,
    Product,
    Store,
    StoreSettings,
    WaitingListEntry,
    WishlistItem,
)
from tenancy import (
    FEATURES,
    NEW_STORE_SETTINGS,
    create_store,
    current_store_id,
    get_store_settings,
    has_feature,
    list_stores,
    require_feature,
    update_store_settings,
)

logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("lojinha")

app = FastAPI(title="Lojinha das Graças API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(GatewayError)
def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.body)


# Helpers
def store_name_of(store: ResilientStore, store_id: str) -> str:
    return get_store_settings(store, store_id).get("store_name") or STORE_NAME


def send_confirmation(mailer: ResendMailer, store: ResilientStore, order: dict[str, Any]) -> None:
    send_order_confirmation(mailer, order, store_name_of(store, order["store_id"]))


def schedule_confirmation(background_tasks: BackgroundTasks, mailer: ResendMailer, store: ResilientStore, order: dict[str, Any]) -> None:
    # Settings are read inside the task, off the request path
    background_tasks.add_task(send_confirmation, mailer, store, order)


@app.get("/")
def root():
    return {"name": "Lojinha das Graças", "status": "ok"}


@app.get("/test")
def test_database(store: ResilientStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    response = {
        "backend": "✅ Running",
        "store_backend": store.backend,
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    info = store.ping()
    if "error" in info:
        response["database"] = f"⚠️ Unreachable, serving local cache: {info['error']}"
    else:
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["collections"] = info.get("collections", [])
    return response


# ============ Storefront ============

@app.get("/api/store")
def get_storefront(store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    settings = get_store_settings(store, store_id)
    return {
        "store_id": store_id,
        "settings": settings,
        "features": {f: has_feature(settings, f) for f in sorted(FEATURES)},
    }


@app.get("/api/products", response_model=List[dict])
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    return catalog.list_products(store, store_id, q=q, category=category, featured=featured)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.get_product(store, product_id, store_id)


@app.get("/api/categories", response_model=List[str])
def list_categories(store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_categories(store, store_id)


class ReviewIn(BaseModel):
    customer_email: str
    customer_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    order_id: Optional[str] = None


@app.get("/api/products/{product_id}/reviews", response_model=List[dict])
def list_product_reviews(product_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_reviews(store, product_id, store_id)


@app.post("/api/products/{product_id}/reviews", status_code=201)
def create_product_review(
    product_id: str,
    payload: ReviewIn,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    return catalog.create_review(store, {**payload.model_dump(), "product_id": product_id}, store_id)


@app.post("/api/reviews/{review_id}/helpful")
def mark_review_helpful(review_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    catalog.mark_review_helpful(store, review_id, store_id)
    return {"ok": True}


# ============ Wishlist ============

class WishlistRemove(BaseModel):
    session_id: str
    product_id: str


class WishlistPrefs(BaseModel):
    session_id: str
    notify_on_sale: Optional[bool] = None
    notify_on_stock: Optional[bool] = None


@app.get("/api/wishlist", response_model=List[dict])
def get_wishlist(
    session_id: str,
    user_email: Optional[str] = None,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    return catalog.list_wishlist(store, session_id, store_id, user_email=user_email)


@app.post("/api/wishlist", status_code=201)
def add_to_wishlist(payload: WishlistItem, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    require_feature(store, store_id, "wishlist")
    catalog.get_product(store, payload.product_id, store_id)
    return catalog.add_to_wishlist(store, payload.model_dump(), store_id)


@app.post("/api/wishlist/remove")
def remove_from_wishlist(payload: WishlistRemove, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    removed = catalog.remove_from_wishlist(store, payload.session_id, payload.product_id, store_id)
    return {"removed": removed}


@app.patch("/api/wishlist/{item_id}")
def update_wishlist_item(
    item_id: str,
    payload: WishlistPrefs,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    prefs = payload.model_dump(exclude={"session_id"}, exclude_none=True)
    return catalog.update_wishlist_item(store, item_id, payload.session_id, prefs, store_id)


# ============ Blog, waiting list & newsletter ============

@app.get("/api/blog", response_model=List[dict])
def list_blog_posts(store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_posts(store, store_id)


@app.get("/api/blog/{post_id}")
def get_blog_post(post_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.get_post(store, post_id, store_id)


@app.post("/api/waiting-list", status_code=201)
def join_waiting_list(payload: WaitingListEntry, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    if not (payload.customer_email or payload.customer_phone):
        raise HTTPException(status_code=400, detail="Provide an email or a phone number")
    product = catalog.get_product(store, payload.product_id, store_id)
    data = payload.model_dump(exclude={"notified"})
    data["product_name"] = data.get("product_name") or product.get("name")
    return catalog.join_waiting_list(store, data, store_id)


class NewsletterIn(BaseModel):
    email: str


@app.post("/api/newsletter", status_code=201)
def subscribe_newsletter(payload: NewsletterIn, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    if "@" not in payload.email:
        raise HTTPException(status_code=400, detail="Invalid email")
    return catalog.subscribe_newsletter(store, payload.email, store_id)


# ============ Coupons ============

class CouponCheck(BaseModel):
    code: str
    subtotal: float = Field(0, ge=0)


@app.post("/api/coupons/validate")
def validate_coupon(payload: CouponCheck, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    coupon = coupons.validate(store, payload.code, store_id)
    if coupon is None:
        return {"valid": False, "code": coupons.normalize_code(payload.code)}
    return {
        "valid": True,
        "code": coupon["code"],
        "type": coupon.get("type"),
        "value": coupon.get("value"),
        "min_spend": coupon.get("min_spend"),
        "discount": coupons.discount_for(coupon, payload.subtotal),
    }


# ============ Carts ============

class CartQuantity(BaseModel):
    product_id: str
    delta: int
    options: Optional[dict[str, Any]] = None


class CartLine(BaseModel):
    product_id: str
    options: Optional[dict[str, Any]] = None


class CartCoupon(BaseModel):
    code: str


def _reprice(store: ResilientStore, cart, store_id: str) -> None:
    # The coupon discount follows the subtotal; drop it once it stops applying
    if cart.coupon_code:
        try:
            coupons.apply_to_cart(store, cart, cart.coupon_code, store_id)
        except HTTPException as e:
            logger.info("Coupon %s dropped from cart: %s", cart.coupon_code, e.detail)


@app.get("/api/carts/{session_id}")
def get_cart(session_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    _, cart = load_cart(store, session_id, store_id)
    return cart.to_dict()


@app.post("/api/carts/{session_id}/items")
def add_cart_item(
    session_id: str,
    payload: CheckoutItem,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    product = catalog.get_product(store, payload.product_id, store_id)
    cart_id, cart = load_cart(store, session_id, store_id)
    message = cart.add(product, payload.quantity, payload.options)
    _reprice(store, cart, store_id)
    save_cart(store, cart_id, cart, session_id, store_id)
    return {"message": message, "cart": cart.to_dict()}


@app.patch("/api/carts/{session_id}/items")
def update_cart_item(
    session_id: str,
    payload: CartQuantity,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    cart_id, cart = load_cart(store, session_id, store_id)
    if cart.update_quantity(payload.product_id, payload.delta, options_key(payload.options)) is None:
        raise HTTPException(status_code=404, detail="Item not in cart")
    _reprice(store, cart, store_id)
    save_cart(store, cart_id, cart, session_id, store_id)
    return cart.to_dict()


@app.post("/api/carts/{session_id}/items/remove")
def remove_cart_item(
    session_id: str,
    payload: CartLine,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    cart_id, cart = load_cart(store, session_id, store_id)
    cart.remove(payload.product_id, options_key(payload.options))
    _reprice(store, cart, store_id)
    save_cart(store, cart_id, cart, session_id, store_id)
    return cart.to_dict()


@app.post("/api/carts/{session_id}/coupon")
def apply_cart_coupon(
    session_id: str,
    payload: CartCoupon,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
):
    cart_id, cart = load_cart(store, session_id, store_id)
    try:
        coupons.apply_to_cart(store, cart, payload.code, store_id)
    finally:
        save_cart(store, cart_id, cart, session_id, store_id)
    return cart.to_dict()


@app.delete("/api/carts/{session_id}/coupon")
def remove_cart_coupon(session_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    cart_id, cart = load_cart(store, session_id, store_id)
    cart.remove_coupon()
    save_cart(store, cart_id, cart, session_id, store_id)
    return cart.to_dict()


@app.delete("/api/carts/{session_id}")
def clear_cart(session_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    cart_id, cart = load_cart(store, session_id, store_id)
    cart.clear()
    if cart_id:
        save_cart(store, cart_id, cart, session_id, store_id)
    return cart.to_dict()


class QuoteRequest(BaseModel):
    items: List[CheckoutItem] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


@app.post("/api/quote")
def quote(payload: QuoteRequest, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    cart = orders.price_items(store, payload.items, store_id)
    if payload.coupon_code:
        coupons.apply_to_cart(store, cart, payload.coupon_code, store_id)
    return cart.to_dict()


# ============ Checkout & orders ============

@app.post("/api/checkout", status_code=201)
def checkout(
    payload: CheckoutRequest,
    request: Request,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
    gateway: InfinitePayClient = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    order = orders.create_order(store, payload, store_id)
    handle = get_store_settings(store, store_id).get("infinitepay_handle")
    payment_error = None
    if handle:
        link_payload = build_checkout_payload(
            order,
            handle,
            redirect_url=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/pedido-confirmado/{order['id']}",
            webhook_url=str(request.url_for("infinitepay_webhook")),
        )
        try:
            url = gateway.create_checkout_link(link_payload)
            order = orders.set_checkout_url(store, order, url)
        except GatewayError as e:
            logger.error("Checkout link for order %s failed: %s", order["id"], e.message)
            payment_error = e.message
    return {"order": orders.public_view(order), "checkout_url": order.get("checkout_url"), "payment_error": payment_error}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, store_id: str = Depends(current_store_id), store: ResilientStore = Depends(get_store)):
    return orders.public_view(orders.get_order(store, order_id, store_id))


class ConfirmPaymentIn(BaseModel):
    transaction_nsu: Optional[str] = None
    slug: Optional[str] = None


@app.post("/api/orders/{order_id}/confirm-payment")
def confirm_order_payment(
    order_id: str,
    payload: ConfirmPaymentIn,
    background_tasks: BackgroundTasks,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
    gateway: InfinitePayClient = Depends(get_gateway),
    mailer: ResendMailer = Depends(get_mailer),
):
    order = orders.get_order(store, order_id, store_id)
    if order.get("status") != OrderStatus.pending.value:
        paid = order.get("status") in (OrderStatus.paid.value, OrderStatus.delivered.value)
        return {"paid": paid, "order": orders.public_view(order)}

    handle = get_store_settings(store, store_id).get("infinitepay_handle")
    if not handle:
        raise HTTPException(status_code=400, detail="Store has no payment handle configured")
    check = {"handle": handle, "order_nsu": order_id}
    if payload.transaction_nsu:
        check["transaction_nsu"] = payload.transaction_nsu
    if payload.slug:
        check["slug"] = payload.slug

    status_code, body = gateway.check_payment(check)
    if status_code >= 400 or not is_paid(body):
        logger.info("Payment for order %s not confirmed by gateway (%s)", order_id, status_code)
        return {"paid": False, "order": orders.public_view(order)}

    order, changed = orders.confirm_payment(
        store, order_id, store_id, transaction_nsu=payload.transaction_nsu, gateway_data=body if isinstance(body, dict) else None
    )
    if changed:
        schedule_confirmation(background_tasks, mailer, store, order)
    return {"paid": True, "order": orders.public_view(order)}


# ============ Payments relay ============

@app.post("/api/payments/checkout-link")
def create_checkout_link(payload: dict = Body(...), gateway: InfinitePayClient = Depends(get_gateway)):
    return {"url": gateway.create_checkout_link(payload)}


@app.post("/api/payments/payment-check")
def payment_check(payload: dict = Body(...), gateway: InfinitePayClient = Depends(get_gateway)):
    status_code, body = gateway.check_payment(payload)
    return JSONResponse(status_code=status_code, content=body)


class GatewayAction(BaseModel):
    action: str
    payload: dict = Field(default_factory=dict)


@app.post("/api/payments/infinitepay")
def infinitepay_action(req: GatewayAction, gateway: InfinitePayClient = Depends(get_gateway)):
    if req.action == "create-link":
        return {"url": gateway.create_checkout_link(req.payload)}
    if req.action == "check-payment":
        status_code, body = gateway.check_payment(req.payload)
        return JSONResponse(status_code=status_code, content=body)
    return JSONResponse(status_code=400, content={"error": "Invalid action"})


def _paid_cents(event: dict[str, Any]) -> Optional[int]:
    paid_amount = event.get("paid_amount", event.get("amount"))
    if paid_amount is None:
        return None
    try:
        return int(round(float(paid_amount)))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid paid_amount")


def _apply_webhook(store: ResilientStore, event: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    order_id = event.get("order_nsu")
    if not order_id:
        raise HTTPException(status_code=400, detail="Missing order_nsu")
    paid_cents = _paid_cents(event)
    # The callback carries no store, so search across all of them
    order = store.find_document("orders", str(order_id))
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    if event.get("paid") is False:
        return order, False

    expected = to_cents(order.get("total") or 0)
    if paid_cents is not None and paid_cents < expected:
        logger.warning("Webhook for order %s paid %s cents, expected %s", order["id"], paid_cents, expected)
        return order, False

    return orders.confirm_payment(
        store, order["id"], order["store_id"], transaction_nsu=event.get("transaction_nsu"), gateway_data=event
    )


@app.post("/api/webhooks/infinitepay", name="infinitepay_webhook")
async def infinitepay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    store: ResilientStore = Depends(get_store),
    mailer: ResendMailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    secret = settings.INFINITEPAY_WEBHOOK_SECRET
    if not secret:
        raise HTTPException(status_code=503, detail="Webhook secret not configured")
    raw = await request.body()
    if not verify_signature(secret, raw, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected InfinitePay webhook with bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        event = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    order, changed = await run_in_threadpool(_apply_webhook, store, event)
    if changed:
        schedule_confirmation(background_tasks, mailer, store, order)
    return {"received": True, "order_id": order["id"], "status": order.get("status")}


# ============ Admin auth ============

class RegisterAdmin(BaseModel):
    store_id: str
    email: str
    password: str = Field(..., min_length=6)
    role: str = "owner"


class LoginAdmin(BaseModel):
    email: str
    password: str
    store_id: Optional[str] = None


@app.post("/api/admin/register", status_code=201)
def register(
    payload: RegisterAdmin,
    store: ResilientStore = Depends(get_store),
    current: Optional[AdminPrincipal] = Depends(get_optional_admin),
):
    if store.get_document("stores", payload.store_id) is None:
        raise HTTPException(status_code=404, detail="Store not found")
    is_super = current is not None and current.role == "superadmin"
    if payload.role == "superadmin" and not is_super:
        raise HTTPException(status_code=403, detail="Only a super admin can create super admins")
    # The first admin of a store registers freely; later ones need the owner
    if store.get_documents("admins", {"store_id": payload.store_id}, limit=1) and not is_super:
        if current is None or current.store_id != payload.store_id or current.role != "owner":
            raise HTTPException(status_code=403, detail="Only the store owner can add admins")
    return register_admin(store, payload.store_id, payload.email, payload.password, payload.role)


@app.post("/api/admin/login")
def login(
    payload: LoginAdmin,
    store_id: str = Depends(current_store_id),
    store: ResilientStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    target = payload.store_id or store_id
    admin = authenticate(store, target, payload.email, payload.password)
    if not admin:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {
        "access_token": create_access_token(admin, settings),
        "token_type": "bearer",
        "store_id": target,
        "role": admin.get("role", "staff"),
    }


@app.get("/api/admin/me")
def me(admin: AdminPrincipal = Depends(get_current_admin)):
    return admin.model_dump()


# ============ Stores (super admin) ============

class StoreIn(Store):
    settings: Optional[dict[str, Any]] = None


@app.get("/api/stores", response_model=List[dict])
def get_stores(_: AdminPrincipal = Depends(require_superadmin), store: ResilientStore = Depends(get_store)):
    return list_stores(store)


@app.post("/api/stores", status_code=201)
def add_store(payload: StoreIn, _: AdminPrincipal = Depends(require_superadmin), store: ResilientStore = Depends(get_store)):
    created = create_store(store, payload.model_dump(exclude={"settings"}))
    initial = {**NEW_STORE_SETTINGS, "store_name": payload.name, **(payload.settings or {})}
    update_store_settings(store, created["id"], initial)
    return created


# ============ Admin settings ============

OWNER_ONLY_SETTINGS = {"plan", "status"}


@app.get("/api/admin/settings")
def get_admin_settings(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return get_store_settings(store, store_id)


@app.put("/api/admin/settings")
def put_admin_settings(
    patch: dict = Body(...),
    admin: AdminPrincipal = Depends(get_current_admin),
    store_id: str = Depends(active_store_id),
    store: ResilientStore = Depends(get_store),
):
    allowed = set(StoreSettings.model_fields) - {"store_id"}
    if admin.role != "superadmin":
        allowed -= OWNER_ONLY_SETTINGS
    clean = {k: v for k, v in patch.items() if k in allowed}
    if not clean:
        raise HTTPException(status_code=400, detail="No editable settings given")
    return update_store_settings(store, store_id, clean)


# ============ Admin catalog ============

class StockUpdate(BaseModel):
    stock: Optional[int] = None
    delta: Optional[int] = None


@app.get("/api/admin/products", response_model=List[dict])
def admin_list_products(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_products(store, store_id, include_inactive=True)


@app.post("/api/admin/products", status_code=201)
def admin_create_product(payload: Product, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.create_product(store, payload.model_dump(), store_id)


@app.put("/api/admin/products/{product_id}")
def admin_update_product(product_id: str, payload: Product, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.update_product(store, product_id, payload.model_dump(), store_id)


@app.patch("/api/admin/products/{product_id}/stock")
def admin_set_stock(product_id: str, payload: StockUpdate, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.set_stock(store, product_id, store_id, stock=payload.stock, delta=payload.delta)


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    catalog.delete_product(store, product_id, store_id)
    return {"deleted": True}


@app.post("/api/admin/categories", status_code=201)
def admin_create_category(payload: Category, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.create_category(store, payload.name.strip(), store_id)


@app.delete("/api/admin/categories/{name}")
def admin_delete_category(name: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return {"deleted": catalog.delete_category(store, name, store_id)}


# ============ Admin coupons ============

@app.get("/api/admin/coupons", response_model=List[dict])
def admin_list_coupons(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return coupons.list_coupons(store, store_id)


@app.post("/api/admin/coupons", status_code=201)
def admin_create_coupon(payload: Coupon, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    require_feature(store, store_id, "coupons")
    return coupons.create_coupon(store, payload.model_dump(), store_id)


@app.put("/api/admin/coupons/{coupon_id}")
def admin_update_coupon(coupon_id: str, payload: Coupon, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return coupons.update_coupon(store, coupon_id, payload.model_dump(exclude={"usage_count"}), store_id)


@app.delete("/api/admin/coupons/{coupon_id}")
def admin_delete_coupon(coupon_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    coupons.delete_coupon(store, coupon_id, store_id)
    return {"deleted": True}


# ============ Admin orders ============

class StatusUpdate(BaseModel):
    status: OrderStatus


@app.get("/api/admin/orders", response_model=List[dict])
def admin_list_orders(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return orders.list_orders(store, store_id)


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return orders.get_order(store, order_id, store_id)


@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_status(
    order_id: str,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    store_id: str = Depends(active_store_id),
    store: ResilientStore = Depends(get_store),
    mailer: ResendMailer = Depends(get_mailer),
):
    order, changed = orders.update_status(store, order_id, payload.status.value, store_id)
    if changed and payload.status == OrderStatus.paid:
        schedule_confirmation(background_tasks, mailer, store, order)
    return {"order": order, "changed": changed}


@app.patch("/api/admin/orders/{order_id}/customer")
def admin_update_customer(order_id: str, payload: CustomerData, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return orders.update_customer_data(store, order_id, payload, store_id)


@app.delete("/api/admin/orders/{order_id}")
def admin_delete_order(order_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    orders.delete_order(store, order_id, store_id)
    return {"deleted": True}


@app.post("/api/admin/orders/{order_id}/resend-confirmation", status_code=202)
def admin_resend_confirmation(
    order_id: str,
    background_tasks: BackgroundTasks,
    store_id: str = Depends(active_store_id),
    store: ResilientStore = Depends(get_store),
    mailer: ResendMailer = Depends(get_mailer),
):
    order = orders.get_order(store, order_id, store_id)
    if order.get("status") not in (OrderStatus.paid.value, OrderStatus.delivered.value):
        raise HTTPException(status_code=409, detail="Order is not paid")
    if not order.get("customer_email"):
        raise HTTPException(status_code=400, detail="Order has no customer email")
    schedule_confirmation(background_tasks, mailer, store, order)
    return {"queued": True}


@app.get("/api/admin/metrics")
def admin_metrics(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return orders.get_metrics(store, store_id)


@app.get("/api/admin/customers")
def admin_customers(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return orders.list_customers(store, store_id)


# ============ Admin content ============

class ReviewResponse(BaseModel):
    response: str


class WaitingListUpdate(BaseModel):
    notified: bool


@app.get("/api/admin/reviews", response_model=List[dict])
def admin_list_reviews(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_all_reviews(store, store_id)


@app.post("/api/admin/reviews/{review_id}/respond")
def admin_respond_review(review_id: str, payload: ReviewResponse, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.respond_review(store, review_id, payload.response, store_id)


@app.delete("/api/admin/reviews/{review_id}")
def admin_delete_review(review_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    catalog.delete_review(store, review_id, store_id)
    return {"deleted": True}


@app.get("/api/admin/blog", response_model=List[dict])
def admin_list_posts(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_posts(store, store_id, published_only=False)


@app.post("/api/admin/blog", status_code=201)
def admin_create_post(payload: BlogPost, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    require_feature(store, store_id, "blog")
    return catalog.create_post(store, payload.model_dump(), store_id)


@app.put("/api/admin/blog/{post_id}")
def admin_update_post(post_id: str, payload: BlogPost, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.update_post(store, post_id, payload.model_dump(), store_id)


@app.delete("/api/admin/blog/{post_id}")
def admin_delete_post(post_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    catalog.delete_post(store, post_id, store_id)
    return {"deleted": True}


@app.get("/api/admin/waiting-list", response_model=List[dict])
def admin_list_waiting(store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.list_waiting_list(store, store_id)


@app.patch("/api/admin/waiting-list/{entry_id}")
def admin_update_waiting(entry_id: str, payload: WaitingListUpdate, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    return catalog.update_waiting_entry(store, entry_id, payload.model_dump(), store_id)


@app.delete("/api/admin/waiting-list/{entry_id}")
def admin_delete_waiting(entry_id: str, store_id: str = Depends(active_store_id), store: ResilientStore = Depends(get_store)):
    catalog.delete_waiting_entry(store, entry_id, store_id)
    return {"deleted": True}


# ============ Schema ============

INDEXES = {
    "stores": ["slug"],
    "store_settings": ["store_id"],
    "products": ["store_id", "category", "active"],
    "orders": ["store_id", "status", "created_at"],
    "coupons": ["store_id", "code"],
    "admins": ["store_id", "email"],
    "carts": ["store_id", "session_id"],
}


@app.get("/schema")
def get_schema():
    # Minimal representation for migration tooling / admin
    return {
        "collections": {
            name: {
                "fields": sorted(set(model.model_fields) | {"id", "created_at", "updated_at"}),
                "indexes": INDEXES.get(name, ["store_id"] if "store_id" in model.model_fields else []),
            }
            for name, model in COLLECTIONS.items()
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
