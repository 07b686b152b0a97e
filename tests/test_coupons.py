from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

import coupons
from cart import Cart

STORE_A = "store-a"
STORE_B = "store-b"


def add_coupon(store, **overrides):
    data = {"code": "DESCONTO10", "type": "fixed", "value": 10, "active": True, "usage_count": 0, "store_id": STORE_A}
    data.update(overrides)
    return store.create_document("coupons", data)


def test_valid_coupon_is_returned_regardless_of_case(store):
    add_coupon(store)
    found = coupons.validate(store, " desconto10 ", STORE_A)
    assert found is not None
    assert found["code"] == "DESCONTO10"


@pytest.mark.parametrize(
    "overrides, code, store_id",
    [
        ({"active": False}, "DESCONTO10", STORE_A),
        ({}, "DESCONTO10", STORE_B),
        ({}, "NAOEXISTE", STORE_A),
        ({}, "   ", STORE_A),
        ({"usage_limit": 2, "usage_count": 2}, "DESCONTO10", STORE_A),
    ],
)
def test_unusable_coupons_are_rejected(store, overrides, code, store_id):
    add_coupon(store, **overrides)
    assert coupons.validate(store, code, store_id) is None


def test_expired_coupon_is_rejected(store):
    add_coupon(store, expiry_date=datetime.now(timezone.utc) - timedelta(days=1))
    assert coupons.validate(store, "DESCONTO10", STORE_A) is None


def test_future_expiry_is_accepted(store):
    add_coupon(store, expiry_date=(datetime.now(timezone.utc) + timedelta(days=1)).isoformat())
    assert coupons.validate(store, "DESCONTO10", STORE_A) is not None


def test_percentage_discount_is_capped_and_rounded():
    assert coupons.discount_for({"type": "percentage", "value": 15}, 200) == 30
    assert coupons.discount_for({"type": "percentage", "value": 150}, 40) == 40
    assert coupons.discount_for({"type": "fixed", "value": 80}, 50) == 50


def test_min_spend_blocks_discount():
    coupon = {"type": "fixed", "value": 10, "min_spend": 150}
    assert coupons.discount_for(coupon, 100) == 0
    assert coupons.discount_for(coupon, 150) == 10


def test_apply_to_cart_below_min_spend_removes_coupon(store):
    add_coupon(store, min_spend=300)
    cart = Cart()
    cart.add({"id": "p1", "name": "Terço", "price": 100}, 2)
    cart.apply_coupon("OLD", 5)
    with pytest.raises(HTTPException) as err:
        coupons.apply_to_cart(store, cart, "DESCONTO10", STORE_A)
    assert err.value.status_code == 400
    assert cart.coupon_code is None
    assert cart.total == 200


def test_apply_to_cart_sets_discount(store):
    add_coupon(store)
    cart = Cart()
    cart.add({"id": "p1", "name": "Terço", "price": 100}, 2)
    coupons.apply_to_cart(store, cart, "desconto10", STORE_A)
    assert cart.coupon_code == "DESCONTO10"
    assert cart.total == 190


def test_redeem_counts_usage(store):
    coupon = add_coupon(store, usage_limit=1)
    coupons.redeem(store, coupon)
    assert store.get_document("coupons", coupon["id"])["usage_count"] == 1
    assert coupons.validate(store, "DESCONTO10", STORE_A) is None


def test_create_coupon_rejects_duplicate_code(store):
    coupons.create_coupon(store, {"code": "natal", "type": "fixed", "value": 5}, STORE_A)
    with pytest.raises(HTTPException) as err:
        coupons.create_coupon(store, {"code": "NATAL", "type": "fixed", "value": 5}, STORE_A)
    assert err.value.status_code == 400
    # Codes are per store
    coupons.create_coupon(store, {"code": "NATAL", "type": "fixed", "value": 5}, STORE_B)


def test_update_coupon_of_other_store_is_forbidden(store):
    coupon = add_coupon(store)
    with pytest.raises(HTTPException) as err:
        coupons.update_coupon(store, coupon["id"], {"value": 99}, STORE_B)
    assert err.value.status_code == 403
    assert store.get_document("coupons", coupon["id"])["value"] == 10
