"""Single context object the presentation layer talks to.

Holds the session, the guest engines and the account client, routes every
cart/wishlist operation to whichever cart is active, and republishes the
resulting state through the notifier.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from storefront.core.config import Settings, settings as default_settings
from storefront.core.events import CartChanged, Event, LoggedOut, SessionNotifier, WishlistChanged
from storefront.core.exceptions import AlreadyExists, EmptyCart, InvalidQuantity, SessionError
from storefront.core.storage import KeyValueStore, StorageKeys, open_store, read_json, write_json
from storefront.schemas.auth import Session, UserRecord, UserRole
from storefront.schemas.cart import Cart, ProductSnapshot, Wishlist
from storefront.services.api import ApiClient
from storefront.services.auth import AuthSessionManager
from storefront.services.catalog import CatalogClient
from storefront.services.guest_cart import GuestCart, GuestWishlist
from storefront.services.reconciliation import ReconciliationCoordinator
from storefront.services.server_cart import ServerCartClient

logger = logging.getLogger(__name__)

ProductRef = ProductSnapshot | str


class Storefront:
    def __init__(
        self,
        *,
        store: KeyValueStore | None = None,
        api: ApiClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Settings | None = None,
    ) -> None:
        self.config = config or default_settings
        self.store = store if store is not None else open_store(self.config)
        self.api = api or ApiClient(config=self.config, transport=transport)
        self.notifier = SessionNotifier()
        self.auth = AuthSessionManager(self.api, self.store, self.notifier)
        self.guest_cart = GuestCart(self.store, max_quantity=self.config.max_line_quantity)
        self.guest_wishlist = GuestWishlist(self.store)
        self.server = ServerCartClient(self.api, self.auth, max_quantity=self.config.max_line_quantity)
        self.catalog = CatalogClient(self.api)
        self.reconciler = ReconciliationCoordinator(self.guest_cart, self.guest_wishlist, self.server, self.notifier)
        self.auth.reconciler = self.reconciler

        self._account_cart: Cart | None = None
        self._account_wishlist: Wishlist | None = None
        self._cart_lock = asyncio.Lock()
        self._wishlist_lock = asyncio.Lock()
        self.notifier.subscribe(self._on_event)

    def _on_event(self, event: Event) -> None:
        if isinstance(event, LoggedOut):
            self._account_cart = None
            self._account_wishlist = None
        elif isinstance(event, CartChanged) and self.auth.is_authenticated:
            self._account_cart = event.cart
        elif isinstance(event, WishlistChanged) and self.auth.is_authenticated:
            self._account_wishlist = event.wishlist

    def subscribe(self, listener: Callable[[Event], None]) -> Callable[[], None]:
        return self.notifier.subscribe(listener)

    # session

    @property
    def session(self) -> Session:
        return self.auth.session

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    def role(self) -> UserRole:
        return self.auth.role()

    async def login(self, username: str, password: str) -> Session:
        return await self.auth.login(username, password)

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: str | None = None,
        role: UserRole | str = UserRole.customer,
    ) -> Session:
        return await self.auth.register(username, email, password, full_name=full_name, role=role)

    def logout(self) -> None:
        self.auth.logout()

    async def current_user(self) -> UserRecord | None:
        return await self.auth.current_user()

    # snapshots

    @property
    def cart(self) -> Cart:
        if self.auth.is_authenticated:
            return self._account_cart or Cart()
        return self.guest_cart.load()

    @property
    def wishlist(self) -> Wishlist:
        if self.auth.is_authenticated:
            return self._account_wishlist or Wishlist()
        return self.guest_wishlist.load()

    def _publish_cart(self, cart: Cart) -> Cart:
        if self.auth.is_authenticated:
            self._account_cart = cart
        self.notifier.publish(CartChanged(cart))
        return cart

    def _publish_wishlist(self, wishlist: Wishlist) -> Wishlist:
        if self.auth.is_authenticated:
            self._account_wishlist = wishlist
        self.notifier.publish(WishlistChanged(wishlist))
        return wishlist

    async def _snapshot(self, product: ProductRef) -> ProductSnapshot:
        if isinstance(product, ProductSnapshot):
            return product
        return await self.catalog.get_product(product)

    @staticmethod
    def _product_id(product: ProductRef) -> str:
        return product.id if isinstance(product, ProductSnapshot) else str(product)

    # cart

    async def load_cart(self) -> Cart:
        async with self._cart_lock:
            if self.auth.is_authenticated:
                try:
                    return self._publish_cart(await self.server.get_cart())
                except SessionError:
                    logger.info("cart_fallback_to_guest", extra={"operation": "load"})
            return self._publish_cart(self.guest_cart.load())

    async def _account_room(self, product_id: str) -> int:
        # Room is measured against the server cart, never the local cache.
        self._account_cart = await self.server.get_cart()
        line = self._account_cart.find_product(product_id)
        held = line.quantity if line else 0
        return max(0, self.config.max_line_quantity - held)

    async def add_to_cart(self, product: ProductRef, quantity: int = 1) -> Cart:
        """Add to the active cart, clamping each line at the per-product maximum.

        If the account rejects the session mid-way the item lands in the guest
        cart instead of being dropped.
        """
        if quantity < 1:
            raise InvalidQuantity()
        product_id = self._product_id(product)
        async with self._cart_lock:
            if self.auth.is_authenticated:
                try:
                    room = await self._account_room(product_id)
                    if room == 0:
                        logger.info("cart_line_at_maximum", extra={"product_id": product_id})
                        return self._publish_cart(self._account_cart or Cart())
                    cart = await self.server.add_item(product_id, min(quantity, room))
                    return self._publish_cart(cart)
                except SessionError:
                    logger.info("cart_fallback_to_guest", extra={"operation": "add", "product_id": product_id})
            snapshot = await self._snapshot(product)
            return self._publish_cart(self.guest_cart.add_item(snapshot, quantity))

    async def update_quantity(self, line_id: str, quantity: int) -> Cart:
        async with self._cart_lock:
            if self.auth.is_authenticated:
                cart = await self.server.update_quantity(line_id, quantity)
            else:
                cart = self.guest_cart.update_quantity(line_id, quantity)
            return self._publish_cart(cart)

    async def remove_from_cart(self, line_id: str) -> Cart:
        async with self._cart_lock:
            if self.auth.is_authenticated:
                cart = await self.server.remove_item(line_id)
            else:
                cart = self.guest_cart.remove_item(line_id)
            return self._publish_cart(cart)

    async def clear_cart(self) -> Cart:
        async with self._cart_lock:
            if self.auth.is_authenticated:
                cart = await self.server.clear()
            else:
                cart = self.guest_cart.clear()
            return self._publish_cart(cart)

    # wishlist

    async def load_wishlist(self) -> Wishlist:
        async with self._wishlist_lock:
            if self.auth.is_authenticated:
                try:
                    return self._publish_wishlist(await self.server.get_wishlist())
                except SessionError:
                    logger.info("wishlist_fallback_to_guest", extra={"operation": "load"})
            return self._publish_wishlist(self.guest_wishlist.load())

    async def add_to_wishlist(self, product: ProductRef) -> Wishlist:
        product_id = self._product_id(product)
        async with self._wishlist_lock:
            if self.auth.is_authenticated:
                try:
                    return self._publish_wishlist(await self.server.add_wish(product_id))
                except AlreadyExists:
                    return self._publish_wishlist(await self.server.get_wishlist())
                except SessionError:
                    logger.info("wishlist_fallback_to_guest", extra={"operation": "add", "product_id": product_id})
            snapshot = await self._snapshot(product)
            return self._publish_wishlist(self.guest_wishlist.add_wish(snapshot))

    async def remove_from_wishlist(self, product_id: str) -> Wishlist:
        async with self._wishlist_lock:
            if self.auth.is_authenticated:
                wishlist = await self.server.remove_wish(str(product_id))
            else:
                wishlist = self.guest_wishlist.remove_wish(str(product_id))
            return self._publish_wishlist(wishlist)

    async def toggle_wishlist(self, product: ProductRef) -> bool:
        """Add or remove ``product``; returns whether it is wished afterwards."""
        product_id = self._product_id(product)
        current = self.wishlist
        if self.auth.is_authenticated and self._account_wishlist is None:
            current = await self.load_wishlist()
        if current.contains(product_id):
            await self.remove_from_wishlist(product_id)
            return False
        wishlist = await self.add_to_wishlist(product)
        return wishlist.contains(product_id)

    # checkout

    async def begin_checkout(self) -> Cart:
        cart = await self.load_cart()
        if cart.is_empty:
            raise EmptyCart()
        write_json(self.store, StorageKeys.checkout, cart.model_dump(mode="json"))
        return cart

    def checkout_snapshot(self) -> Cart | None:
        raw = read_json(self.store, StorageKeys.checkout)
        if raw is None:
            return None
        return Cart.model_validate(raw)
