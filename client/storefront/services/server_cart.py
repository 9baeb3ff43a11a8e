from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from pydantic import ValidationError

from storefront.core.config import settings
from storefront.core.exceptions import AlreadyExists, QuantityExceeded, ServerError, Unauthorized
from storefront.schemas.cart import (
    Cart,
    CartItemCreate,
    CartItemUpdate,
    CartLine,
    ProductSnapshot,
    Wishlist,
    WishlistItemCreate,
    WishlistLine,
    to_money,
)
from storefront.services.api import ApiClient

if TYPE_CHECKING:
    from storefront.services.auth import AuthSessionManager

logger = logging.getLogger(__name__)

# Servers in the wild disagree on total field names.
_SUBTOTAL_KEYS = ("subtotal", "total_amount", "total")
_COUNT_KEYS = ("item_count", "total_items")
_PRODUCT_FIELDS = ("name", "price", "image_url", "material", "case_size", "reference_number")


def wire_id(value: str) -> int | str:
    return int(value) if value.isascii() and value.isdigit() else value


def _first_present(envelope: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if envelope.get(key) is not None:
            return envelope[key]
    return None


def _cart_envelope(payload: Any) -> tuple[dict[str, Any], list[Any]]:
    if isinstance(payload, list):
        return {}, payload
    if not isinstance(payload, dict):
        return {}, []
    nested = payload.get("cart")
    envelope = nested if isinstance(nested, dict) else payload
    items = envelope.get("items")
    return envelope, items if isinstance(items, list) else []


def _product_snapshot(item: dict[str, Any], product_id: Any) -> ProductSnapshot:
    data: dict[str, Any] = {
        "id": product_id,
        "name": item.get("name") or item.get("product_name") or "",
        "price": item.get("price", item.get("unit_price")),
        "image_url": item.get("image_url") or item.get("image"),
    }
    nested = item.get("product")
    if isinstance(nested, dict):
        for field in _PRODUCT_FIELDS:
            if nested.get(field) is not None:
                data[field] = nested[field]
        if data["image_url"] is None and nested.get("image"):
            data["image_url"] = nested["image"]
    return ProductSnapshot.model_validate(data)


def normalize_line(item: dict[str, Any]) -> CartLine:
    nested = item.get("product") if isinstance(item.get("product"), dict) else {}
    product_id = item.get("product_id", nested.get("id"))
    line_id = _first_present(item, ("id", "cart_item_id", "line_id"))
    return CartLine(
        line_id=line_id,
        product_id=product_id,
        quantity=item.get("quantity", 1),
        product=_product_snapshot(item, product_id),
    )


def _log_drift(cart: Cart, envelope: dict[str, Any]) -> None:
    reported_subtotal = _first_present(envelope, _SUBTOTAL_KEYS)
    reported_count = _first_present(envelope, _COUNT_KEYS)
    drift: dict[str, Any] = {}
    try:
        if reported_subtotal is not None and to_money(reported_subtotal) != cart.subtotal:
            drift["reported_subtotal"] = str(reported_subtotal)
    except ArithmeticError:
        drift["reported_subtotal"] = str(reported_subtotal)
    if reported_count is not None and str(reported_count) != str(cart.item_count):
        drift["reported_item_count"] = reported_count
    if drift:
        logger.warning(
            "cart_totals_drift",
            extra={"subtotal": str(cart.subtotal), "item_count": cart.item_count, **drift},
        )


def normalize_cart(payload: Any) -> Cart:
    """Map any observed cart response shape onto the canonical Cart."""
    envelope, items = _cart_envelope(payload)
    lines: list[CartLine] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            lines.append(normalize_line(item))
        except ValidationError:
            logger.warning("cart_line_unreadable", extra={"line_id": item.get("id")})
    cart = Cart(lines=lines)
    _log_drift(cart, envelope)
    return cart


def normalize_wishlist_item(item: dict[str, Any]) -> WishlistLine:
    if "product_id" in item:
        nested = item.get("product")
        product = _product_snapshot(nested, item["product_id"]) if isinstance(nested, dict) else None
        return WishlistLine(product_id=item["product_id"], product=product)
    nested = item.get("product")
    source = nested if isinstance(nested, dict) else item
    return WishlistLine(product_id=source.get("id"), product=_product_snapshot(source, source.get("id")))


def normalize_wishlist(payload: Any) -> Wishlist:
    if isinstance(payload, dict):
        items = payload.get("items")
    else:
        items = payload
    lines: list[WishlistLine] = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        try:
            lines.append(normalize_wishlist_item(item))
        except ValidationError:
            logger.warning("wishlist_line_unreadable")
    return Wishlist(lines=lines)


def _is_duplicate(exc: ServerError) -> bool:
    if exc.status_code == 409:
        return True
    return exc.status_code == 400 and "already" in exc.message.lower()


class ServerCartClient:
    """Account cart and wishlist; every call is one authenticated round-trip.

    A 401 clears the session through the auth manager before it propagates.
    """

    def __init__(self, api: ApiClient, auth: "AuthSessionManager", *, max_quantity: int | None = None) -> None:
        self.api = api
        self.auth = auth
        self.max_quantity = max_quantity or settings.max_line_quantity

    async def _call(self, method: str, path: str, *, json: Any = None) -> Any:
        token = self.auth.token
        if not token:
            raise Unauthorized("Please sign in to continue")
        try:
            return await self.api.request(method, path, json=json, token=token)
        except Unauthorized:
            self.auth.expire(token)
            raise

    async def _cart_from_mutation(self, body: Any) -> Cart:
        if isinstance(body, dict) and isinstance(body.get("cart"), dict):
            return normalize_cart(body["cart"])
        return await self.get_cart()

    async def get_cart(self) -> Cart:
        return normalize_cart(await self._call("GET", "/cart"))

    async def add_item(self, product_id: str, quantity: int = 1) -> Cart:
        payload = CartItemCreate(product_id=product_id, quantity=quantity)
        body = await self._call(
            "POST", "/cart", json={"product_id": wire_id(payload.product_id), "quantity": payload.quantity}
        )
        return await self._cart_from_mutation(body)

    async def update_quantity(self, line_id: str, quantity: int) -> Cart:
        if quantity < 1:
            return await self.remove_item(line_id)
        if quantity > self.max_quantity:
            raise QuantityExceeded(self.max_quantity)
        payload = CartItemUpdate(quantity=quantity)
        body = await self._call("PUT", f"/cart/{quote(str(line_id), safe='')}", json=payload.model_dump())
        return await self._cart_from_mutation(body)

    async def remove_item(self, line_id: str) -> Cart:
        body = await self._call("DELETE", f"/cart/{quote(str(line_id), safe='')}")
        return await self._cart_from_mutation(body)

    async def clear(self) -> Cart:
        body = await self._call("DELETE", "/cart")
        return await self._cart_from_mutation(body)

    async def get_wishlist(self) -> Wishlist:
        return normalize_wishlist(await self._call("GET", "/wishlist"))

    async def add_wish(self, product_id: str) -> Wishlist:
        payload = WishlistItemCreate(product_id=product_id)
        try:
            await self._call("POST", "/wishlist", json={"product_id": wire_id(payload.product_id)})
        except ServerError as exc:
            if _is_duplicate(exc):
                raise AlreadyExists() from exc
            raise
        return await self.get_wishlist()

    async def remove_wish(self, product_id: str) -> Wishlist:
        await self._call("DELETE", f"/wishlist/{quote(str(product_id), safe='')}")
        return await self.get_wishlist()
