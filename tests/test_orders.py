from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

import orders
from config import DEFAULT_STORE_ID
from conftest import make_product
from schemas import CheckoutRequest, CustomerData


def checkout(store, items, store_id=DEFAULT_STORE_ID, **extra):
    return orders.create_order(store, CheckoutRequest(items=items, **extra), store_id)


def test_order_is_priced_from_catalog(store):
    product = make_product(store, promotional_price=80.0)
    order = checkout(
        store,
        [{"product_id": product["id"], "quantity": 2}],
        customer_name="Maria",
        customer_address={"street": "Rua das Flores", "city": "São Luís"},
    )
    assert order["status"] == "pending"
    assert order["subtotal"] == 160
    assert order["total"] == 160
    assert order["order_number"] == 1
    assert order["customer_address_street"] == "Rua das Flores"
    assert order["customer_address_zipcode"] == ""

    second = checkout(store, [{"product_id": product["id"]}])
    assert second["order_number"] == 2


def test_coupon_is_applied_and_redeemed(store):
    product = make_product(store)
    coupon = store.create_document(
        "coupons", {"code": "DESCONTO10", "type": "fixed", "value": 10, "active": True, "usage_count": 0, "store_id": DEFAULT_STORE_ID}
    )
    order = checkout(store, [{"product_id": product["id"], "quantity": 2}], coupon_code="desconto10")
    assert order["discount"] == 10
    assert order["total"] == 190
    assert order["coupon_code"] == "DESCONTO10"
    assert store.get_document("coupons", coupon["id"])["usage_count"] == 1


@pytest.mark.parametrize("case", ["missing", "foreign", "inactive", "stock"])
def test_invalid_items_are_rejected(store, case):
    if case == "missing":
        items = [{"product_id": "nope"}]
    elif case == "foreign":
        items = [{"product_id": make_product(store, store_id="outra")["id"]}]
    elif case == "inactive":
        items = [{"product_id": make_product(store, active=False)["id"]}]
    else:
        items = [{"product_id": make_product(store, stock=1)["id"], "quantity": 2}]
    with pytest.raises(HTTPException) as err:
        checkout(store, items)
    assert err.value.status_code == 400
    assert store.get_documents("orders") == []


def test_paid_transition_decrements_stock_once(store):
    product = make_product(store, stock=5)
    order = checkout(store, [{"product_id": product["id"], "quantity": 2}])

    paid, changed = orders.update_status(store, order["id"], "paid", DEFAULT_STORE_ID)
    assert changed and paid["status"] == "paid"
    again, changed = orders.update_status(store, order["id"], "paid", DEFAULT_STORE_ID)
    assert not changed
    assert store.get_document("products", product["id"])["stock"] == 3


@pytest.mark.parametrize(
    "path, target",
    [
        (["paid", "delivered"], "pending"),
        (["cancelled"], "paid"),
        ([], "delivered"),
        (["paid", "delivered"], "cancelled"),
    ],
)
def test_illegal_transitions_conflict(store, path, target):
    product = make_product(store)
    order = checkout(store, [{"product_id": product["id"]}])
    for status in path:
        orders.update_status(store, order["id"], status, DEFAULT_STORE_ID)
    with pytest.raises(HTTPException) as err:
        orders.update_status(store, order["id"], target, DEFAULT_STORE_ID)
    assert err.value.status_code == 409


def test_foreign_store_cannot_touch_order(store):
    product = make_product(store)
    order = checkout(store, [{"product_id": product["id"]}])
    with pytest.raises(HTTPException) as err:
        orders.update_status(store, order["id"], "cancelled", "outra")
    assert err.value.status_code == 403
    with pytest.raises(HTTPException):
        orders.delete_order(store, order["id"], "outra")
    assert store.get_document("orders", order["id"])["status"] == "pending"


def test_confirm_payment_looks_up_store_and_records_gateway_data(store):
    product = make_product(store)
    order = checkout(store, [{"product_id": product["id"]}])
    confirmed, changed = orders.confirm_payment(store, order["id"], transaction_nsu="nsu-1", gateway_data={"paid": True})
    assert changed
    assert confirmed["status"] == "paid"
    assert confirmed["transaction_nsu"] == "nsu-1"
    with pytest.raises(HTTPException) as err:
        orders.confirm_payment(store, "nope")
    assert err.value.status_code == 404


def test_update_customer_data_only_sets_given_fields(store):
    product = make_product(store)
    order = checkout(store, [{"product_id": product["id"]}], customer_name="Maria", customer_email="maria@ex.com")
    updated = orders.update_customer_data(
        store, order["id"], CustomerData(phone="98999990000", address={"city": "Imperatriz"}), DEFAULT_STORE_ID
    )
    assert updated["customer_email"] == "maria@ex.com"
    assert updated["customer_phone"] == "98999990000"
    assert updated["customer_address_city"] == "Imperatriz"


def test_metrics(store):
    product = make_product(store, stock=50)
    first = checkout(store, [{"product_id": product["id"]}])
    checkout(store, [{"product_id": product["id"], "quantity": 2}])
    orders.update_status(store, first["id"], "paid", DEFAULT_STORE_ID)
    store.create_document("orders", {"store_id": DEFAULT_STORE_ID, "status": "completed", "total": 30, "items": []})

    metrics = orders.get_metrics(store, DEFAULT_STORE_ID)
    assert metrics == {"total_orders": 3, "total_revenue": 130, "pending_orders": 1}
    assert orders.get_metrics(store, "outra")["total_orders"] == 0


def test_list_orders_newest_first(store):
    product = make_product(store)
    first = checkout(store, [{"product_id": product["id"]}])
    second = checkout(store, [{"product_id": product["id"]}])
    store.update_document("orders", first["id"], {"created_at": datetime(2020, 1, 1, tzinfo=timezone.utc)})
    assert [o["id"] for o in orders.list_orders(store, DEFAULT_STORE_ID)] == [second["id"], first["id"]]


def test_public_view_hides_customer_data(store):
    product = make_product(store)
    order = checkout(store, [{"product_id": product["id"]}], customer_email="maria@ex.com")
    view = orders.public_view(order)
    assert "customer_email" not in view
    assert view["total"] == 100


def test_local_order_is_updated_after_remote_recovers(flaky):
    remote, store = flaky
    product = make_product(store, stock=5)
    order = checkout(store, [{"product_id": product["id"], "quantity": 2}])
    assert order["_local"] is True
    remote.down = False

    paid, changed = orders.update_status(store, order["id"], "paid", DEFAULT_STORE_ID)
    assert changed and paid["status"] == "paid"
    assert store.get_document("orders", order["id"], store_id=DEFAULT_STORE_ID)["status"] == "paid"
    assert store.get_document("products", product["id"], store_id=DEFAULT_STORE_ID)["stock"] == 3

    confirmed, changed = orders.confirm_payment(store, order["id"], transaction_nsu="nsu-1")
    assert not changed
    assert confirmed["transaction_nsu"] == "nsu-1"


def test_mirrored_order_is_confirmed_while_remote_is_down(flaky):
    remote, store = flaky
    remote.down = False
    product = make_product(store, stock=5)
    order = checkout(store, [{"product_id": product["id"], "quantity": 2}])
    assert "_local" not in order
    remote.down = True

    confirmed, changed = orders.confirm_payment(store, order["id"], transaction_nsu="nsu-2")
    assert changed and confirmed["status"] == "paid"
    cached = store.get_document("orders", order["id"], store_id=DEFAULT_STORE_ID)
    assert cached["status"] == "paid"
    assert cached["transaction_nsu"] == "nsu-2"
    assert store.get_document("products", product["id"], store_id=DEFAULT_STORE_ID)["stock"] == 3

    _, changed = orders.update_status(store, order["id"], "delivered", DEFAULT_STORE_ID)
    assert changed


def test_customers_are_grouped_by_email(store):
    product = make_product(store, stock=50)
    first = checkout(store, [{"product_id": product["id"]}], customer_name="Maria", customer_email="Maria@Ex.com")
    for _ in range(2):
        checkout(store, [{"product_id": product["id"]}], customer_email="maria@ex.com")
    checkout(store, [{"product_id": product["id"], "quantity": 2}], customer_phone="98999990000")
    store.update_document("orders", first["id"], {"created_at": datetime(2020, 1, 1, tzinfo=timezone.utc)})

    result = orders.list_customers(store, DEFAULT_STORE_ID)
    maria, anonymous = result["customers"]
    assert maria["email"] == "maria@ex.com"
    assert maria["name"] == "Maria"
    assert maria["phone"] == "N/A"
    assert maria["order_count"] == 3
    assert maria["total_spent"] == 300
    assert maria["tier"] == "Recorrente"
    assert first["id"] in maria["orders"]
    assert maria["last_purchase"] != datetime(2020, 1, 1, tzinfo=timezone.utc)
    assert anonymous["email"] == "no-email@undefined.com"
    assert anonymous["phone"] == "98999990000"
    assert anonymous["tier"] == "Novo"
    assert result["stats"] == {"total": 2, "vips": 0, "avg_ticket": 250}
    assert orders.list_customers(store, "outra") == {"customers": [], "stats": {"total": 0, "vips": 0, "avg_ticket": 0.0}}


@pytest.mark.parametrize(
    "spent, count, tier",
    [(500.01, 1, "VIP"), (500, 6, "VIP"), (500, 5, "Recorrente"), (100, 3, "Recorrente"), (100, 2, "Novo")],
)
def test_customer_tier(spent, count, tier):
    assert orders.customer_tier(spent, count) == tier
