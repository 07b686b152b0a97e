import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException

from cart import Cart
from database import ResilientStore, StoreError
from tenancy import get_owned_document

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _as_datetime(value):
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def is_redeemable(coupon: dict[str, Any], now: Optional[datetime] = None) -> bool:
    if not coupon.get("active"):
        return False
    expiry = _as_datetime(coupon.get("expiry_date"))
    if expiry and expiry < (now or datetime.now(timezone.utc)):
        return False
    limit = coupon.get("usage_limit")
    if limit and int(coupon.get("usage_count") or 0) >= int(limit):
        return False
    return True


def validate(store: ResilientStore, code: str, store_id: str, now: Optional[datetime] = None) -> Optional[dict[str, Any]]:
    """Active, in-date, under its usage limit and owned by the store; otherwise None."""
    if not code or not code.strip():
        return None
    found = store.get_documents("coupons", {"code": normalize_code(code), "store_id": store_id, "active": True}, limit=1)
    if not found:
        return None
    coupon = found[0]
    try:
        return coupon if is_redeemable(coupon, now) else None
    except (TypeError, ValueError) as e:
        logger.warning("Coupon %s has unreadable fields: %s", coupon.get("id"), e)
        return None


def meets_min_spend(coupon, subtotal):
    return subtotal >= float(coupon.get("min_spend") or 0)


def discount_for(coupon, subtotal):
    """Absolute reduction for a subtotal, capped at the subtotal."""
    if not meets_min_spend(coupon, subtotal):
        return 0.0
    value = float(coupon.get("value") or 0)
    if coupon.get("type") == "percentage":
        amount = subtotal * value / 100.0
    else:
        amount = value
    return round(min(amount, subtotal), 2)


def apply_to_cart(store: ResilientStore, cart: Cart, code: str, store_id: str) -> dict[str, Any]:
    coupon = validate(store, code, store_id)
    if coupon is None:
        cart.remove_coupon()
        raise HTTPException(status_code=400, detail="Invalid or expired coupon")
    if not meets_min_spend(coupon, cart.subtotal):
        cart.remove_coupon()
        raise HTTPException(status_code=400, detail=f"Minimum spend of {float(coupon['min_spend']):.2f} not reached")
    cart.apply_coupon(coupon["code"], discount_for(coupon, cart.subtotal))
    return coupon


def redeem(store: ResilientStore, coupon):
    try:
        store.increment_field("coupons", coupon["id"], "usage_count", 1, store_id=coupon.get("store_id"))
    except StoreError as e:
        logger.error("Could not record redemption of coupon %s: %s", coupon.get("code"), e)


# ============ Admin CRUD ============

def list_coupons(store: ResilientStore, store_id: str) -> list[dict[str, Any]]:
    return sorted(store.get_documents("coupons", {"store_id": store_id}), key=lambda c: c.get("code", ""))


def create_coupon(store: ResilientStore, data: dict[str, Any], store_id: str) -> dict[str, Any]:
    code = normalize_code(data["code"])
    if store.get_documents("coupons", {"store_id": store_id, "code": code}, limit=1):
        raise HTTPException(status_code=400, detail="Coupon already exists")
    return store.create_document("coupons", {**data, "code": code, "store_id": store_id})


def update_coupon(store: ResilientStore, coupon_id: str, patch: dict[str, Any], store_id: str) -> dict[str, Any]:
    coupon = get_owned_document(store, "coupons", coupon_id, store_id)
    if "code" in patch:
        patch["code"] = normalize_code(patch["code"])
    patch.pop("store_id", None)
    store.update_document("coupons", coupon_id, patch, store_id=store_id)
    return {**coupon, **patch}


def delete_coupon(store: ResilientStore, coupon_id: str, store_id: str) -> None:
    get_owned_document(store, "coupons", coupon_id, store_id)
    store.delete_document("coupons", coupon_id, store_id=store_id)
