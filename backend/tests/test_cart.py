from decimal import Decimal
from types import SimpleNamespace

import pytest

import errors
import models
from cart import Cart, CartService
from redis_client import cart_store


def catalog_item(item_id, name, price):
    return SimpleNamespace(id=item_id, name=name, price=Decimal(price))


def line_sum(cart):
    return sum((line.price * line.quantity for line in cart.items), Decimal("0"))


def test_cart_total_matches_lines_after_every_edit():
    cart = Cart(session_id="s1")
    a = catalog_item(1, "Item A", "10.00")
    b = catalog_item(2, "Item B", "5.00")
    c = catalog_item(3, "Item C", "3.35")

    steps = [
        lambda: cart.add(a, 2),
        lambda: cart.add(b),
        lambda: cart.add(c, 3),
        lambda: cart.adjust(3, -1),
        lambda: cart.add(a),
        lambda: cart.remove(2),
        lambda: cart.adjust(1, -3),
        lambda: cart.remove(99),
    ]
    for step in steps:
        step()
        assert cart.total == line_sum(cart)
        for line in cart.items:
            assert line.line_total == line.price * line.quantity

    assert [line.menu_item_id for line in cart.items] == [3]
    assert cart.total == Decimal("6.70")


def test_two_lines_total_twenty_five():
    cart = Cart(session_id="s1")
    cart.add(catalog_item(1, "Item A", "10.00"), 2)
    cart.add(catalog_item(2, "Item B", "5.00"), 1)

    assert cart.total == Decimal("25.00")
    assert cart.item_count == 3


def test_adding_same_item_merges_into_one_line():
    cart = Cart(session_id="s1")
    item = catalog_item(1, "Item A", "10.00")

    cart.add(item)
    cart.add(item, 2)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.items[0].line_total == Decimal("30.00")


def test_adjust_to_zero_removes_line():
    cart = Cart(session_id="s1")
    cart.add(catalog_item(1, "Item A", "10.00"), 2)

    assert cart.adjust(1, -2) is None
    assert cart.is_empty
    assert cart.total == Decimal("0.00")


def test_adjust_missing_line_is_not_found():
    cart = Cart(session_id="s1")
    with pytest.raises(errors.NotFound):
        cart.adjust(5, 1)


def test_add_rejects_non_positive_quantity():
    cart = Cart(session_id="s1")
    with pytest.raises(errors.ValidationError):
        cart.add(catalog_item(1, "Item A", "10.00"), 0)
    assert cart.is_empty


def test_clear_empties_cart():
    cart = Cart(session_id="s1")
    cart.add(catalog_item(1, "Item A", "10.00"))
    cart.clear()

    assert cart.is_empty
    assert cart.total == Decimal("0.00")


def test_blob_roundtrip_keeps_decimal_prices():
    cart = Cart(session_id="s1")
    cart.add(catalog_item(1, "Item A", "12.35"), 2)

    restored = Cart.from_blob(cart.to_blob())

    assert restored.session_id == "s1"
    assert restored.items[0].price == Decimal("12.35")
    assert restored.total == Decimal("24.70")


def test_service_snapshots_price_at_add_time(db, menu):
    carts = CartService(db, cart_store)
    carts.add_item("s1", menu["Item A"], 2)

    item = db.get(models.MenuItem, menu["Item A"])
    item.price = Decimal("99.00")
    db.commit()

    cart = carts.add_item("s1", menu["Item B"])

    assert cart.find(menu["Item A"]).price == Decimal("10.00")
    assert cart.total == Decimal("25.00")


def test_service_rejects_unknown_and_unavailable_items(db, menu):
    carts = CartService(db, cart_store)

    with pytest.raises(errors.NotFound):
        carts.add_item("s1", 999)
    with pytest.raises(errors.NotFound):
        carts.add_item("s1", menu["Item C"])

    assert carts.load("s1").is_empty


def test_carts_are_scoped_to_their_session(db, menu):
    carts = CartService(db, cart_store)
    carts.add_item("s1", menu["Item A"])
    carts.add_item("s2", menu["Item B"], 4)

    assert carts.load("s1").total == Decimal("10.00")
    assert carts.load("s2").total == Decimal("20.00")

    carts.discard("s1")
    assert carts.load("s1").is_empty
    assert carts.load("s2").item_count == 4


def test_unreadable_stored_blob_loads_as_empty_cart(db, menu):
    carts = CartService(db, cart_store)
    cart_store.set("s1", "{not json")
    cart_store.set("s2", '{"session_id": "s2", "items": [{"name": "Old layout"}]}')

    assert carts.load("s1").is_empty
    assert carts.load("s2").is_empty

    cart = carts.add_item("s1", menu["Item A"])
    assert cart.total == Decimal("10.00")
