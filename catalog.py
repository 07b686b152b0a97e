"""
Store-scoped catalog and content: products, categories, reviews, wishlists,
blog posts, the back-in-stock waiting list and newsletter subscriptions.
"""

from __future__ import annotations
import logging
from typing import Any, Optional

from fastapi import HTTPException

from database import ResilientStore, timestamp_key, utcnow
from tenancy import get_owned_document

logger = logging.getLogger(__name__)


def _newest_first(docs: list[dict[str, Any]], field: str = "created_at") -> list[dict[str, Any]]:
    return sorted(docs, key=lambda d: timestamp_key(d.get(field)), reverse=True)


def _update_owned(store: ResilientStore, collection: str, doc_id: str, patch: dict[str, Any], store_id: str) -> dict[str, Any]:
    doc = get_owned_document(store, collection, doc_id, store_id)
    patch = {k: v for k, v in patch.items() if k not in ("id", "store_id")}
    store.update_document(collection, doc_id, patch, store_id=store_id)
    return {**doc, **patch}


def _delete_owned(store: ResilientStore, collection: str, doc_id: str, store_id: str) -> None:
    get_owned_document(store, collection, doc_id, store_id)
    store.delete_document(collection, doc_id, store_id=store_id)


# ============ Products ============

def list_products(
    store: ResilientStore,
    store_id: str,
    q: Optional[str] = None,
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    products = store.get_documents("products", {"store_id": store_id})
    if not include_inactive:
        products = [p for p in products if p.get("active", True)]
    if q:
        needle = q.lower()
        products = [p for p in products if needle in p.get("name", "").lower() or needle in (p.get("code") or "").lower()]
    if category:
        products = [p for p in products if p.get("category") == category]
    if featured is not None:
        products = [p for p in products if bool(p.get("is_featured")) == featured]
    return sorted(products, key=lambda p: p.get("name", "").lower())


def get_product(store: ResilientStore, product_id: str, store_id: str) -> dict[str, Any]:
    product = get_owned_document(store, "products", product_id, store_id)
    if not product.get("active", True):
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def create_product(store: ResilientStore, data: dict[str, Any], store_id: str) -> dict[str, Any]:
    return store.create_document("products", {**data, "store_id": store_id})


def update_product(store: ResilientStore, product_id: str, patch: dict[str, Any], store_id: str) -> dict[str, Any]:
    return _update_owned(store, "products", product_id, patch, store_id)


def set_stock(store: ResilientStore, product_id: str, store_id: str, stock: Optional[int] = None, delta: Optional[int] = None) -> dict[str, Any]:
    product = get_owned_document(store, "products", product_id, store_id)
    if stock is not None:
        new_stock = stock
    elif delta is not None:
        new_stock = int(product.get("stock", 0)) + delta
    else:
        raise HTTPException(status_code=400, detail="Provide stock or delta")
    if new_stock < 0:
        raise HTTPException(status_code=400, detail="Stock cannot be negative")
    store.update_document("products", product_id, {"stock": new_stock}, store_id=store_id)
    return {"id": product_id, "stock": new_stock}


def delete_product(store: ResilientStore, product_id: str, store_id: str) -> None:
    _delete_owned(store, "products", product_id, store_id)


# ============ Categories ============

def list_categories(store: ResilientStore, store_id: str) -> list[str]:
    names = {c.get("name") for c in store.get_documents("categories", {"store_id": store_id}) if c.get("name")}
    return sorted(names, key=str.lower)


def create_category(store: ResilientStore, name: str, store_id: str) -> dict[str, Any]:
    if store.get_documents("categories", {"store_id": store_id, "name": name}, limit=1):
        raise HTTPException(status_code=400, detail="Category already exists")
    return store.create_document("categories", {"name": name, "store_id": store_id})


def delete_category(store: ResilientStore, name: str, store_id: str) -> int:
    found = store.get_documents("categories", {"store_id": store_id, "name": name})
    for c in found:
        store.delete_document("categories", c["id"], store_id=store_id)
    return len(found)


# ============ Reviews ============

def list_reviews(store: ResilientStore, product_id: str, store_id: str) -> list[dict[str, Any]]:
    return _newest_first(store.get_documents("reviews", {"store_id": store_id, "product_id": product_id}))


def list_all_reviews(store: ResilientStore, store_id: str) -> list[dict[str, Any]]:
    return _newest_first(store.get_documents("reviews", {"store_id": store_id}))


def _is_verified_purchase(store: ResilientStore, order_id: Optional[str], product_id: str, store_id: str) -> bool:
    if not order_id:
        return False
    order = store.get_document("orders", order_id, store_id=store_id)
    if not order or order.get("store_id") != store_id or order.get("status") not in ("paid", "delivered"):
        return False
    return any(it.get("product_id") == product_id for it in order.get("items", []))


def create_review(store: ResilientStore, data: dict[str, Any], store_id: str) -> dict[str, Any]:
    get_owned_document(store, "products", data["product_id"], store_id)
    verified = _is_verified_purchase(store, data.get("order_id"), data["product_id"], store_id)
    return store.create_document("reviews", {**data, "store_id": store_id, "helpful_count": 0, "is_verified_purchase": verified})


def respond_review(store: ResilientStore, review_id: str, response: str, store_id: str) -> dict[str, Any]:
    return _update_owned(store, "reviews", review_id, {"admin_response": response, "admin_response_date": utcnow()}, store_id)


def mark_review_helpful(store: ResilientStore, review_id: str, store_id: str) -> None:
    get_owned_document(store, "reviews", review_id, store_id)
    store.increment_field("reviews", review_id, "helpful_count", 1, store_id=store_id)


def delete_review(store: ResilientStore, review_id: str, store_id: str) -> None:
    _delete_owned(store, "reviews", review_id, store_id)


# ============ Wishlist ============

def list_wishlist(store: ResilientStore, session_id: str, store_id: str, user_email: Optional[str] = None) -> list[dict[str, Any]]:
    items = store.get_documents("wishlists", {"store_id": store_id})
    if user_email:
        return [i for i in items if i.get("session_id") == session_id or i.get("user_email") == user_email]
    return [i for i in items if i.get("session_id") == session_id]


def add_to_wishlist(store: ResilientStore, data: dict[str, Any], store_id: str) -> dict[str, Any]:
    existing = store.get_documents(
        "wishlists", {"store_id": store_id, "session_id": data["session_id"], "product_id": data["product_id"]}, limit=1
    )
    if existing:
        return existing[0]
    return store.create_document("wishlists", {**data, "store_id": store_id, "added_at": utcnow()})


def remove_from_wishlist(store: ResilientStore, session_id: str, product_id: str, store_id: str) -> int:
    found = store.get_documents("wishlists", {"store_id": store_id, "session_id": session_id, "product_id": product_id})
    for item in found:
        store.delete_document("wishlists", item["id"], store_id=store_id)
    return len(found)


def update_wishlist_item(store: ResilientStore, item_id: str, session_id: str, prefs: dict[str, Any], store_id: str) -> dict[str, Any]:
    item = get_owned_document(store, "wishlists", item_id, store_id)
    if item.get("session_id") != session_id:
        raise HTTPException(status_code=403, detail="Wishlist item belongs to another session")
    return _update_owned(store, "wishlists", item_id, prefs, store_id)


# ============ Blog ============

def list_posts(store: ResilientStore, store_id: str, published_only: bool = True) -> list[dict[str, Any]]:
    posts = store.get_documents("blog_posts", {"store_id": store_id})
    if published_only:
        posts = [p for p in posts if p.get("is_published")]
    return _newest_first(posts)


def get_post(store: ResilientStore, post_id: str, store_id: str) -> dict[str, Any]:
    post = get_owned_document(store, "blog_posts", post_id, store_id)
    if not post.get("is_published"):
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def create_post(store: ResilientStore, data: dict[str, Any], store_id: str) -> dict[str, Any]:
    return store.create_document("blog_posts", {**data, "store_id": store_id})


def update_post(store: ResilientStore, post_id: str, patch: dict[str, Any], store_id: str) -> dict[str, Any]:
    return _update_owned(store, "blog_posts", post_id, patch, store_id)


def delete_post(store: ResilientStore, post_id: str, store_id: str) -> None:
    _delete_owned(store, "blog_posts", post_id, store_id)


# ============ Waiting list & newsletter ============

def join_waiting_list(store: ResilientStore, data: dict[str, Any], store_id: str) -> dict[str, Any]:
    return store.create_document("waiting_list", {**data, "store_id": store_id, "notified": False})


def list_waiting_list(store: ResilientStore, store_id: str) -> list[dict[str, Any]]:
    return _newest_first(store.get_documents("waiting_list", {"store_id": store_id}))


def update_waiting_entry(store: ResilientStore, entry_id: str, patch: dict[str, Any], store_id: str) -> dict[str, Any]:
    return _update_owned(store, "waiting_list", entry_id, patch, store_id)


def delete_waiting_entry(store: ResilientStore, entry_id: str, store_id: str) -> None:
    _delete_owned(store, "waiting_list", entry_id, store_id)


def subscribe_newsletter(store: ResilientStore, email: str, store_id: str) -> dict[str, Any]:
    email = email.strip().lower()
    existing = store.get_documents("newsletters", {"store_id": store_id, "email": email}, limit=1)
    if existing:
        return existing[0]
    return store.create_document("newsletters", {"email": email, "active": True, "store_id": store_id})
