from __future__ import annotations

from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from storefront.core.exceptions import ServerError
from storefront.schemas.cart import ProductSnapshot
from storefront.services.api import ApiClient


def _first_image(payload: dict[str, Any]) -> str | None:
    images = payload.get("images")
    if not isinstance(images, list) or not images:
        return None
    first = images[0]
    if isinstance(first, dict):
        return first.get("url") or first.get("image_url")
    return first if isinstance(first, str) else None


def product_from_payload(payload: Any) -> ProductSnapshot:
    if not isinstance(payload, dict):
        raise ServerError("Unexpected product response")
    data = dict(payload)
    data["image_url"] = data.get("image_url") or data.get("image") or _first_image(payload)
    try:
        return ProductSnapshot.model_validate(data)
    except ValidationError as exc:
        raise ServerError("Unexpected product response") from exc


class CatalogClient:
    """Public product lookups, used to snapshot products added as a guest."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def get_product(self, product_id: str) -> ProductSnapshot:
        body = await self.api.get(f"/products/{quote(str(product_id), safe='')}")
        return product_from_payload(body)
