import pytest

from cart import Cart, cart_item_id
from schemas import Subscription


def test_cart_item_id_sorts_variant_entries():
    a = cart_item_id(7, {"Size": "M", "Color": "Red"})
    b = cart_item_id(7, {"Color": "Red", "Size": "M"})
    assert a == b == "7-Color,Red-Size,M"


def test_cart_item_id_markers():
    assert cart_item_id(7) == "7-none"
    assert cart_item_id(7, subscription=Subscription()) == "7-none-monthly"
    assert cart_item_id(7, negotiated_price=85.5) == "7-none-neg85.5"
    assert cart_item_id(7, {"Color": "Red"}, Subscription(), 80) == "7-Color,Red-monthly-neg80"


def test_same_combination_is_merged(make_product):
    cart = Cart()
    p = make_product()
    cart.add(p, 2, {"Color": "Red"})
    cart.add(p, 3, {"Color": "Red"})
    assert len(cart) == 1
    assert cart.items[0].quantity == 5


def test_distinct_variants_and_prices_are_separate_lines(make_product):
    cart = Cart()
    p = make_product()
    cart.add(p, 1, {"Color": "Red"})
    cart.add(p, 1, {"Color": "Blue"})
    cart.add(p, 1, {"Color": "Red"}, negotiated_price=90)
    cart.add(p, 1, {"Color": "Red"}, negotiated_price=85)
    cart.add(p, 1, {"Color": "Red"}, subscription=Subscription())
    assert len(cart) == 5


@pytest.mark.parametrize("first,second", [
    (1234567, 1234571),
    (100.0001, 100.0002),
])
def test_close_negotiated_prices_stay_separate(make_product, first, second):
    cart = Cart()
    p = make_product()
    cart.add(p, 1, negotiated_price=first)
    cart.add(p, 1, negotiated_price=second)
    assert [it.negotiated_price for it in cart] == [first, second]
    assert cart_item_id(p.id, negotiated_price=1234567) == f"{p.id}-none-neg1234567"


def test_cart_keeps_product_snapshot(make_product):
    cart = Cart()
    p = make_product(price=40)
    cart.add(p)
    p.price = 999
    assert cart.items[0].product.price == 40


def test_add_rejects_non_positive_quantity(make_product):
    with pytest.raises(ValueError):
        Cart().add(make_product(), 0)


def test_remove_and_zero_quantity_are_equivalent(make_product):
    p = make_product()
    first, second = Cart(), Cart()
    item_id = first.add(p, 2).cart_item_id
    second.add(p, 2)

    first.remove(item_id)
    second.update_quantity(item_id, 0)

    assert first.find(item_id) is None
    assert second.find(item_id) is None


def test_remove_unknown_line_is_noop(make_product):
    cart = Cart()
    cart.add(make_product())
    cart.remove("nope")
    assert len(cart) == 1


def test_update_quantity_sets_exact_value(make_product):
    cart = Cart()
    item = cart.add(make_product(), 4)
    cart.update_quantity(item.cart_item_id, 2)
    assert cart.items[0].quantity == 2
    cart.update_quantity(item.cart_item_id, -1)
    assert len(cart) == 0


def test_total_prefers_negotiated_price(make_product):
    cart = Cart()
    cart.add(make_product(price=100), 2)
    cart.add(make_product(price=50), 1, negotiated_price=30)
    assert cart.total() == 230
