import pytest

from cart import Cart, options_key, unit_price

TERCO = {"id": "p1", "name": "Terço", "price": 100.0}
VELA = {"id": "p2", "name": "Vela", "price": 12.5}


def test_same_product_and_options_merge_into_one_line():
    cart = Cart()
    cart.add(TERCO, 1, {"cor": "azul", "tamanho": "M"})
    cart.add(TERCO, 2, {"tamanho": "M", "cor": "azul"})
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3


def test_different_options_are_different_lines():
    cart = Cart()
    cart.add(TERCO, 1, {"cor": "azul"})
    cart.add(TERCO, 1, {"cor": "branco"})
    cart.add(TERCO, 1)
    assert len(cart.items) == 3
    assert cart.quantity_of("p1") == 3


def test_add_returns_confirmation_message():
    assert Cart().add(VELA) == "Adicionado: Vela"


def test_add_rejects_non_positive_quantity():
    with pytest.raises(ValueError):
        Cart().add(TERCO, 0)


def test_quantity_never_drops_below_one():
    cart = Cart()
    cart.add(TERCO, 2)
    cart.update_quantity("p1", -5)
    assert cart.items[0].quantity == 1
    cart.update_quantity("p1", 3)
    assert cart.items[0].quantity == 4


def test_update_quantity_targets_the_matching_options():
    cart = Cart()
    cart.add(TERCO, 1, {"cor": "azul"})
    cart.add(TERCO, 1, {"cor": "branco"})
    cart.update_quantity("p1", 2, options_key({"cor": "branco"}))
    assert [it.quantity for it in cart.items] == [1, 3]


def test_fixed_coupon_total_and_removal():
    cart = Cart()
    cart.add(TERCO, 2)
    cart.apply_coupon("DESCONTO10", 10)
    assert cart.subtotal == 200
    assert cart.total == 190
    cart.remove_coupon()
    assert cart.total == 200
    assert cart.coupon_code is None


def test_total_is_never_negative():
    cart = Cart()
    cart.add(VELA, 1)
    cart.apply_coupon("TUDO", 500)
    assert cart.total == 0


def test_remove_and_clear():
    cart = Cart()
    cart.add(TERCO, 1)
    cart.add(VELA, 2)
    assert cart.remove("p1")
    assert not cart.remove("p1")
    cart.apply_coupon("X", 5)
    cart.clear()
    assert cart.items == []
    assert cart.coupon_discount == 0


def test_promotional_price_wins():
    assert unit_price({"price": 50, "promotional_price": 39.9}) == 39.9
    assert unit_price({"price": 50, "promotional_price": None}) == 50


def test_from_dict_restores_lines_and_coupon():
    cart = Cart()
    cart.add(TERCO, 2, {"cor": "azul"})
    cart.apply_coupon("DESCONTO10", 10)
    restored = Cart.from_dict(cart.to_dict())
    assert restored.total == 190
    assert restored.items[0].options == {"cor": "azul"}
