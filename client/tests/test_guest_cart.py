from decimal import Decimal

import pytest

from storefront.core.exceptions import InvalidQuantity, LineNotFound, QuantityExceeded
from storefront.core.storage import MemoryStore, StorageKeys
from storefront.schemas.cart import Cart, ProductSnapshot
from storefront.services.guest_cart import GuestCart, GuestWishlist


def _assert_totals(cart: Cart) -> None:
    assert cart.item_count == sum(line.quantity for line in cart.lines)
    assert cart.subtotal == sum((line.product.price * line.quantity for line in cart.lines), Decimal("0"))
    assert all(1 <= line.quantity <= 10 for line in cart.lines)


def test_guest_cart_is_created_lazily(products):
    store = MemoryStore()
    guest = GuestCart(store)

    assert guest.load().is_empty
    assert store.get(StorageKeys.guest_cart) is None

    guest.add_item(products["1"])
    assert store.get(StorageKeys.guest_cart) is not None


def test_totals_follow_every_mutation(products):
    guest = GuestCart(MemoryStore())

    cart = guest.add_item(products["1"], 2)
    _assert_totals(cart)
    cart = guest.add_item(products["2"])
    _assert_totals(cart)
    assert cart.item_count == 3
    assert cart.subtotal == Decimal("35600.50")

    line_id = cart.find_product("1").line_id
    cart = guest.update_quantity(line_id, 5)
    _assert_totals(cart)
    cart = guest.remove_item(cart.find_product("2").line_id)
    _assert_totals(cart)
    assert cart.item_count == 5
    assert cart.subtotal == Decimal("51250.00")


def test_adding_same_product_merges_and_clamps(products):
    guest = GuestCart(MemoryStore())

    guest.add_item(products["3"], 6)
    cart = guest.add_item(products["3"], 7)

    assert len(cart.lines) == 1
    assert cart.lines[0].quantity == 10
    cart = guest.add_item(products["3"], 1)
    assert cart.lines[0].quantity == 10


def test_new_line_quantity_is_clamped(products):
    cart = GuestCart(MemoryStore()).add_item(products["1"], 25)
    assert cart.lines[0].quantity == 10


def test_add_rejects_non_positive_quantity(products):
    guest = GuestCart(MemoryStore())
    with pytest.raises(InvalidQuantity):
        guest.add_item(products["1"], 0)
    assert guest.load().is_empty


def test_line_ids_are_unique(products):
    guest = GuestCart(MemoryStore())
    for pid in ("1", "2", "3"):
        guest.add_item(products[pid])
    ids = [line.line_id for line in guest.load().lines]
    assert len(set(ids)) == 3
    assert all(line_id.startswith("guest-") for line_id in ids)


def test_update_to_zero_removes_line(products):
    guest = GuestCart(MemoryStore())
    line_id = guest.add_item(products["1"], 3).lines[0].line_id

    cart = guest.update_quantity(line_id, 0)

    assert cart.find_line(line_id) is None
    assert cart.item_count == 0


def test_update_above_limit_is_rejected_and_state_kept(products):
    guest = GuestCart(MemoryStore())
    line_id = guest.add_item(products["1"], 3).lines[0].line_id

    with pytest.raises(QuantityExceeded) as excinfo:
        guest.update_quantity(line_id, 11)

    assert excinfo.value.limit == 10
    assert guest.load().find_line(line_id).quantity == 3


def test_unknown_line_raises(products):
    guest = GuestCart(MemoryStore())
    guest.add_item(products["1"])
    with pytest.raises(LineNotFound):
        guest.update_quantity("nope", 2)
    with pytest.raises(LineNotFound):
        guest.remove_item("nope")


def test_removing_last_line_drops_snapshot(products):
    store = MemoryStore()
    guest = GuestCart(store)
    line_id = guest.add_item(products["1"]).lines[0].line_id

    guest.remove_item(line_id)

    assert store.get(StorageKeys.guest_cart) is None


def test_clear_removes_snapshot(products):
    store = MemoryStore()
    guest = GuestCart(store)
    guest.add_item(products["1"])

    assert guest.clear().is_empty
    assert not guest.exists


def test_two_engines_share_the_store(products):
    store = MemoryStore()
    header_badge = GuestCart(store)
    page = GuestCart(store)

    page.add_item(products["2"], 2)

    assert header_badge.load().item_count == 2


def test_corrupt_snapshot_reads_as_empty():
    store = MemoryStore({StorageKeys.guest_cart: "{not json"})
    assert GuestCart(store).load().is_empty

    store.set(StorageKeys.guest_cart, '{"lines": [{"line_id": "x"}]}')
    assert GuestCart(store).load().is_empty


def test_wishlist_add_is_idempotent(products):
    wishlist = GuestWishlist(MemoryStore())

    wishlist.add_wish(products["1"])
    result = wishlist.add_wish(products["1"])

    assert result.count == 1
    assert result.contains("1")


def test_wishlist_remove_and_clear(products):
    store = MemoryStore()
    wishlist = GuestWishlist(store)
    wishlist.add_wish(products["1"])
    wishlist.add_wish(products["2"])

    assert wishlist.remove_wish("1").count == 1
    wishlist.clear()
    assert store.get(StorageKeys.guest_wishlist) is None


def test_snapshot_prices_are_money():
    snapshot = ProductSnapshot.model_validate({"id": 9, "name": "Oyster Perpetual", "price": "6199.999"})
    assert snapshot.id == "9"
    assert snapshot.price == Decimal("6200.00")
