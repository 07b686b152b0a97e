"""
Cart aggregation

A cart is an insertion-ordered list of lines. Two lines are the same line iff
product id and serialized options both match; options are serialized as
canonical JSON so key order does not matter. Quantities never drop below 1.
"""

import json
from typing import Any, Optional

from database import ResilientStore
from schemas import CartItem


def options_key(options):
    if not options:
        return None
    return json.dumps(options, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def unit_price(product: dict[str, Any]) -> float:
    promo = product.get("promotional_price")
    if promo:
        return float(promo)
    return float(product.get("price", 0))


class Cart:
    def __init__(self, items: Optional[list[CartItem]] = None, coupon_code: Optional[str] = None, coupon_discount: float = 0.0):
        self.items: list[CartItem] = list(items or [])
        self.coupon_code = coupon_code
        self.coupon_discount = coupon_discount

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        return cls(
            items=[CartItem(**it) for it in data.get("items", [])],
            coupon_code=data.get("coupon_code"),
            coupon_discount=float(data.get("coupon_discount") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [it.model_dump() for it in self.items],
            "coupon_code": self.coupon_code,
            "coupon_discount": self.coupon_discount,
            "subtotal": self.subtotal,
            "total": self.total,
        }

    def _find(self, product_id, key):
        for item in self.items:
            if item.product_id == product_id and options_key(item.options) == key:
                return item
        return None

    def add(self, product: dict[str, Any], quantity: int = 1, options: Optional[dict[str, Any]] = None) -> str:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        existing = self._find(product["id"], options_key(options))
        if existing:
            existing.quantity += quantity
        else:
            self.items.append(CartItem(
                product_id=product["id"],
                name=product.get("name", ""),
                price=unit_price(product),
                image=product.get("image"),
                quantity=quantity,
                options=options or None,
            ))
        return f"Adicionado: {product.get('name', '')}"

    def update_quantity(self, product_id: str, delta: int, key: Optional[str] = None) -> Optional[CartItem]:
        item = self._find(product_id, key)
        if item:
            item.quantity = max(1, item.quantity + delta)
        return item

    def remove(self, product_id: str, key: Optional[str] = None) -> bool:
        before = len(self.items)
        self.items = [it for it in self.items if not (it.product_id == product_id and options_key(it.options) == key)]
        return len(self.items) != before

    def clear(self):
        self.items = []
        self.remove_coupon()

    def apply_coupon(self, code: str, discount: float) -> None:
        self.coupon_code = code
        self.coupon_discount = round(max(0.0, discount), 2)

    def remove_coupon(self):
        self.coupon_code = None
        self.coupon_discount = 0.0

    def quantity_of(self, product_id: str) -> int:
        return sum(it.quantity for it in self.items if it.product_id == product_id)

    @property
    def subtotal(self) -> float:
        return round(sum(it.price * it.quantity for it in self.items), 2)

    @property
    def total(self) -> float:
        return round(max(0.0, self.subtotal - self.coupon_discount), 2)


# ============ Session carts ============

def load_cart(store: ResilientStore, session_id: str, store_id: str) -> tuple[Optional[str], Cart]:
    found = store.get_documents("carts", {"store_id": store_id, "session_id": session_id}, limit=1)
    if not found:
        return None, Cart()
    return found[0]["id"], Cart.from_dict(found[0])


def save_cart(store: ResilientStore, cart_id: Optional[str], cart: Cart, session_id: str, store_id: str) -> str:
    data = {
        "items": [it.model_dump() for it in cart.items],
        "coupon_code": cart.coupon_code,
        "coupon_discount": cart.coupon_discount,
    }
    if cart_id:
        store.update_document("carts", cart_id, data, store_id=store_id)
        return cart_id
    created = store.create_document("carts", {**data, "session_id": session_id, "store_id": store_id})
    return created["id"]
