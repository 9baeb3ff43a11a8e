"""Guest cart and wishlist kept in the local store.

Nothing here touches the network. Each mutation re-reads the stored snapshot,
applies the change and writes the whole snapshot back, so two clients sharing
a store see each other's last write.
"""

from __future__ import annotations

import logging
import uuid

from pydantic import ValidationError

from storefront.core.config import settings
from storefront.core.exceptions import InvalidQuantity, LineNotFound, QuantityExceeded
from storefront.core.storage import KeyValueStore, StorageKeys, read_json, write_json
from storefront.schemas.cart import Cart, CartLine, ProductSnapshot, Wishlist, WishlistLine

logger = logging.getLogger(__name__)


def clamp_quantity(quantity: int, limit: int) -> int:
    return max(1, min(int(quantity), limit))


class GuestCart:
    def __init__(self, store: KeyValueStore, *, max_quantity: int | None = None) -> None:
        self.store = store
        self.max_quantity = max_quantity or settings.max_line_quantity

    @property
    def exists(self) -> bool:
        return self.store.get(StorageKeys.guest_cart) is not None

    def load(self) -> Cart:
        raw = read_json(self.store, StorageKeys.guest_cart)
        if raw is None:
            return Cart()
        try:
            return Cart.model_validate(raw)
        except ValidationError:
            logger.warning("guest_cart_snapshot_invalid")
            return Cart()

    def _save(self, cart: Cart) -> Cart:
        if cart.is_empty:
            self.store.remove(StorageKeys.guest_cart)
        else:
            write_json(self.store, StorageKeys.guest_cart, cart.model_dump(mode="json"))
        return cart

    def _new_line_id(self, cart: Cart) -> str:
        taken = {line.line_id for line in cart.lines}
        while True:
            candidate = f"guest-{uuid.uuid4().hex[:12]}"
            if candidate not in taken:
                return candidate

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> Cart:
        if quantity < 1:
            raise InvalidQuantity()
        cart = self.load()
        existing = cart.find_product(product.id)
        if existing is not None:
            wanted = existing.quantity + quantity
            existing.quantity = clamp_quantity(wanted, self.max_quantity)
            if wanted > existing.quantity:
                logger.info(
                    "guest_cart_quantity_clamped",
                    extra={"product_id": product.id, "requested": wanted, "kept": existing.quantity},
                )
        else:
            cart.lines.append(
                CartLine(
                    line_id=self._new_line_id(cart),
                    product_id=product.id,
                    quantity=clamp_quantity(quantity, self.max_quantity),
                    product=product,
                )
            )
        return self._save(cart)

    def update_quantity(self, line_id: str, quantity: int) -> Cart:
        cart = self.load()
        line = cart.find_line(line_id)
        if line is None:
            raise LineNotFound()
        if quantity < 1:
            return self.remove_item(line_id)
        if quantity > self.max_quantity:
            raise QuantityExceeded(self.max_quantity)
        line.quantity = quantity
        return self._save(cart)

    def remove_item(self, line_id: str) -> Cart:
        cart = self.load()
        if cart.find_line(line_id) is None:
            raise LineNotFound()
        cart.lines = [line for line in cart.lines if line.line_id != line_id]
        return self._save(cart)

    def clear(self) -> Cart:
        self.store.remove(StorageKeys.guest_cart)
        return Cart()


class GuestWishlist:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @property
    def exists(self) -> bool:
        return self.store.get(StorageKeys.guest_wishlist) is not None

    def load(self) -> Wishlist:
        raw = read_json(self.store, StorageKeys.guest_wishlist)
        if raw is None:
            return Wishlist()
        try:
            return Wishlist.model_validate(raw)
        except ValidationError:
            logger.warning("guest_wishlist_snapshot_invalid")
            return Wishlist()

    def _save(self, wishlist: Wishlist) -> Wishlist:
        if not wishlist.lines:
            self.store.remove(StorageKeys.guest_wishlist)
        else:
            write_json(self.store, StorageKeys.guest_wishlist, wishlist.model_dump(mode="json"))
        return wishlist

    def add_wish(self, product: ProductSnapshot) -> Wishlist:
        wishlist = self.load()
        if wishlist.contains(product.id):
            return wishlist
        wishlist.lines.append(WishlistLine(product_id=product.id, product=product))
        return self._save(wishlist)

    def remove_wish(self, product_id: str) -> Wishlist:
        wishlist = self.load()
        wishlist.lines = [line for line in wishlist.lines if line.product_id != product_id]
        return self._save(wishlist)

    def clear(self) -> Wishlist:
        self.store.remove(StorageKeys.guest_wishlist)
        return Wishlist()
