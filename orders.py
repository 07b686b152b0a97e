"""
Order lifecycle

    pending -> paid | cancelled
    paid    -> delivered | cancelled
    delivered, cancelled: terminal

Every mutation loads the order, checks that it belongs to the caller's store
and only then writes. Re-applying the current status is a no-op, so a payment
confirmed twice is recorded (and mailed) once.
"""

from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import HTTPException

import coupons
from cart import Cart
from database import ResilientStore, StoreError, timestamp_key
from schemas import CheckoutItem, CheckoutRequest, CustomerAddress, CustomerData, Order, OrderStatus
from tenancy import get_owned_document

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.pending.value: {OrderStatus.paid.value, OrderStatus.cancelled.value},
    OrderStatus.paid.value: {OrderStatus.delivered.value, OrderStatus.cancelled.value},
    OrderStatus.delivered.value: set(),
    OrderStatus.cancelled.value: set(),
}

# "completed" is a legacy status some stored orders still carry
REVENUE_STATUSES = {"paid", "completed"}

PUBLIC_FIELDS = ("id", "order_number", "status", "items", "subtotal", "discount", "total", "checkout_url", "created_at")


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def flatten_address(address: Optional[CustomerAddress], keep_empty: bool = True) -> dict[str, Any]:
    if address is None:
        return {}
    flat = {f"customer_address_{k}": v or "" for k, v in address.model_dump().items()}
    if keep_empty:
        return flat
    return {k: v for k, v in flat.items() if v}


def public_view(order: dict[str, Any]) -> dict[str, Any]:
    return {k: order.get(k) for k in PUBLIC_FIELDS}


# ============ Checkout ============

def price_items(store: ResilientStore, items: list[CheckoutItem], store_id: str) -> Cart:
    """Build a cart from catalog prices so clients cannot tamper with them."""
    cart = Cart()
    for item in items:
        product = store.get_document("products", item.product_id, store_id=store_id)
        if not product or product.get("store_id") != store_id or not product.get("active", True):
            raise HTTPException(status_code=400, detail=f"Invalid product {item.product_id}")
        cart.add(product, item.quantity, item.options)
        if int(product.get("stock", 0)) < cart.quantity_of(product["id"]):
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {product.get('name')}")
    return cart


def next_order_number(store: ResilientStore, store_id: str) -> int:
    numbers = [o.get("order_number") for o in store.get_documents("orders", {"store_id": store_id})]
    numbers = [n for n in numbers if isinstance(n, int)]
    return max(numbers) + 1 if numbers else 1


def create_order(store: ResilientStore, payload: CheckoutRequest, store_id: str) -> dict[str, Any]:
    cart = price_items(store, payload.items, store_id)
    coupon = None
    if payload.coupon_code:
        coupon = coupons.apply_to_cart(store, cart, payload.coupon_code, store_id)

    order = Order(
        store_id=store_id,
        order_number=next_order_number(store, store_id),
        customer_name=payload.customer_name or "Cliente",
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        items=cart.items,
        subtotal=cart.subtotal,
        discount=cart.coupon_discount,
        coupon_code=cart.coupon_code,
        total=cart.total,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    record = {**order.model_dump(), **flatten_address(payload.customer_address)}
    created = store.create_document("orders", record)
    if coupon:
        coupons.redeem(store, coupon)
    logger.info("Order %s (#%s) created for store %s, total %.2f", created["id"], created["order_number"], store_id, created["total"])
    return created


# ============ Reads ============

def list_orders(store: ResilientStore, store_id: str) -> list[dict[str, Any]]:
    orders = store.get_documents("orders", {"store_id": store_id})
    return sorted(orders, key=lambda o: timestamp_key(o.get("created_at")), reverse=True)


def get_order(store: ResilientStore, order_id: str, store_id: str) -> dict[str, Any]:
    return get_owned_document(store, "orders", order_id, store_id)


def get_metrics(store: ResilientStore, store_id: str) -> dict[str, Any]:
    orders = store.get_documents("orders", {"store_id": store_id})
    revenue = sum(float(o.get("total") or 0) for o in orders if o.get("status") in REVENUE_STATUSES)
    return {
        "total_orders": len(orders),
        "total_revenue": round(revenue, 2),
        "pending_orders": sum(1 for o in orders if o.get("status") == OrderStatus.pending.value),
    }


def customer_tier(total_spent: float, order_count: int) -> str:
    if total_spent > 500 or order_count > 5:
        return "VIP"
    if order_count > 2:
        return "Recorrente"
    return "Novo"


def list_customers(store: ResilientStore, store_id: str) -> dict[str, Any]:
    """Group the store's orders by buyer email, biggest spenders first."""
    customers: dict[str, dict[str, Any]] = {}
    for order in store.get_documents("orders", {"store_id": store_id}):
        email = (order.get("customer_email") or "no-email@undefined.com").lower()
        entry = customers.setdefault(email, {
            "email": email,
            "name": order.get("customer_name") or "Cliente",
            "phone": order.get("customer_phone") or "N/A",
            "order_count": 0,
            "total_spent": 0.0,
            "last_purchase": None,
            "orders": [],
        })
        entry["order_count"] += 1
        entry["total_spent"] += float(order.get("total") or 0)
        entry["orders"].append(order["id"])
        if timestamp_key(order.get("created_at")) > timestamp_key(entry["last_purchase"]):
            entry["last_purchase"] = order.get("created_at")

    result = sorted(customers.values(), key=lambda c: c["total_spent"], reverse=True)
    for entry in result:
        entry["total_spent"] = round(entry["total_spent"], 2)
        entry["tier"] = customer_tier(entry["total_spent"], entry["order_count"])

    spent = sum(c["total_spent"] for c in result)
    return {
        "customers": result,
        "stats": {
            "total": len(result),
            "vips": sum(1 for c in result if c["tier"] == "VIP"),
            "avg_ticket": round(spent / len(result), 2) if result else 0.0,
        },
    }


# ============ Mutations ============

def update_status(store: ResilientStore, order_id: str, status: str, store_id: str) -> tuple[dict[str, Any], bool]:
    """Returns the order and whether the status actually changed."""
    order = get_owned_document(store, "orders", order_id, store_id)
    current = order.get("status", OrderStatus.pending.value)
    if current == status:
        return order, False
    if not can_transition(current, status):
        raise HTTPException(status_code=409, detail=f"Cannot move order from {current} to {status}")

    store.update_document("orders", order_id, {"status": status}, store_id=store_id)
    order = {**order, "status": status}
    logger.info("Order %s: %s -> %s", order_id, current, status)
    if status == OrderStatus.paid.value:
        _decrement_stock(store, order)
    return order, True


def confirm_payment(
    store: ResilientStore,
    order_id: str,
    store_id: Optional[str] = None,
    transaction_nsu: Optional[str] = None,
    gateway_data: Optional[dict[str, Any]] = None,
) -> tuple[dict[str, Any], bool]:
    """
    Mark an order paid. Only call after the payment was verified with the
    gateway (signed webhook or server-side payment check).
    """
    if store_id is None:
        found = store.find_document("orders", order_id)
        if found is None:
            raise HTTPException(status_code=404, detail="Order not found")
        store_id = found["store_id"]

    order, changed = update_status(store, order_id, OrderStatus.paid.value, store_id)
    if transaction_nsu or gateway_data:
        order = update_customer_data(
            store, order_id, CustomerData(transaction_nsu=transaction_nsu, infinitepay_data=gateway_data), store_id
        )
    return order, changed


def update_customer_data(store: ResilientStore, order_id: str, data: CustomerData, store_id: str) -> dict[str, Any]:
    order = get_owned_document(store, "orders", order_id, store_id)
    patch: dict[str, Any] = {}
    if data.name:
        patch["customer_name"] = data.name
    if data.email:
        patch["customer_email"] = data.email
    if data.phone:
        patch["customer_phone"] = data.phone
    if data.transaction_nsu:
        patch["transaction_nsu"] = data.transaction_nsu
    if data.infinitepay_data:
        patch["infinitepay_data"] = data.infinitepay_data
    patch.update(flatten_address(data.address, keep_empty=False))
    if patch:
        store.update_document("orders", order_id, patch, store_id=store_id)
    return {**order, **patch}


def set_checkout_url(store: ResilientStore, order: dict[str, Any], url: str) -> dict[str, Any]:
    store.update_document("orders", order["id"], {"checkout_url": url}, store_id=order["store_id"])
    return {**order, "checkout_url": url}


def delete_order(store: ResilientStore, order_id: str, store_id: str) -> None:
    get_owned_document(store, "orders", order_id, store_id)
    store.delete_document("orders", order_id, store_id=store_id)
    logger.info("Order %s deleted from store %s", order_id, store_id)


def _decrement_stock(store: ResilientStore, order: dict[str, Any]) -> None:
    for item in order.get("items", []):
        try:
            found = store.increment_field("products", item["product_id"], "stock", -int(item["quantity"]), store_id=order["store_id"])
        except StoreError as e:
            logger.error("Could not decrement stock of %s for order %s: %s", item["product_id"], order["id"], e)
            continue
        if not found:
            logger.warning("Product %s of order %s no longer exists", item["product_id"], order["id"])
