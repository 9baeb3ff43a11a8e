from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:
    from storefront.schemas.auth import UserRecord
    from storefront.schemas.cart import Cart, Wishlist

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoggedIn:
    user: "UserRecord"


@dataclass(frozen=True)
class LoggedOut:
    pass


@dataclass(frozen=True)
class CartChanged:
    cart: "Cart"


@dataclass(frozen=True)
class WishlistChanged:
    wishlist: "Wishlist"


Event = Union[LoggedIn, LoggedOut, CartChanged, WishlistChanged]
Listener = Callable[[Event], None]


class SessionNotifier:
    """Synchronous in-process publish/subscribe.

    Listeners registered after an event was published do not receive it.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("session_listener_failed", extra={"event": type(event).__name__})

    def __len__(self) -> int:
        return len(self._listeners)
