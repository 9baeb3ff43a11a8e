import itertools
import json
from collections import defaultdict
from collections.abc import Generator
from decimal import Decimal
from typing import Any

import anyio
import httpx
import pytest

from storefront.core import metrics
from storefront.core.config import Settings
from storefront.core.events import Event
from storefront.core.storage import MemoryStore
from storefront.schemas.cart import ProductSnapshot
from storefront.services.storefront import Storefront

API_BASE = "http://shop.test/api"

PRODUCTS: dict[str, dict[str, Any]] = {
    "1": {"id": 1, "name": "Submariner Date", "price": 10250.0, "image_url": "/img/sub.jpg", "material": "Oystersteel"},
    "2": {"id": 2, "name": "Daytona", "price": 15100.5, "image_url": "/img/daytona.jpg", "case_size": "40mm"},
    "3": {"id": 3, "name": "Datejust 36", "price": 7900.0, "reference_number": "126234"},
}


class FakeStoreApi:
    """In-memory stand-in for the storefront REST API."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {
            "alice": {
                "password": "secret",
                "user": {"id": 7, "username": "alice", "email": "alice@example.com", "role": "customer", "customer_id": 70},
            },
            "sam": {
                "password": "secret",
                "user": {"id": 8, "username": "sam", "email": "sam@example.com", "role": "seller", "seller_id": 80},
            },
        }
        self.tokens: dict[str, str] = {}
        self.carts: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.wishlists: dict[str, list[str]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []
        self.offline = False
        self.latency = 0.0
        self.failing_products: set[str] = set()
        self.omit_role_on_register = False
        self._ids = itertools.count(100)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def issue_token(self, username: str) -> str:
        token = f"tok-{username}-{next(self._ids)}"
        self.tokens[token] = username
        return token

    def revoke_all(self) -> None:
        self.tokens.clear()

    def seed_cart(self, username: str, product_id: str, quantity: int) -> str:
        line_id = str(next(self._ids))
        self.carts[username].append(
            {"id": int(line_id), "product_id": int(product_id), "quantity": quantity, "product": PRODUCTS[product_id]}
        )
        return line_id

    def cart_quantities(self, username: str) -> dict[str, int]:
        return {str(item["product_id"]): item["quantity"] for item in self.carts[username]}

    def _cart_body(self, username: str) -> dict[str, Any]:
        items = self.carts[username]
        total = sum(Decimal(str(item["product"]["price"])) * item["quantity"] for item in items)
        return {
            "items": items,
            "total_amount": float(total),
            "total_items": sum(item["quantity"] for item in items),
        }

    def _user_for(self, request: httpx.Request) -> str | None:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return None
        return self.tokens.get(header.removeprefix("Bearer "))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.latency:
            await anyio.sleep(self.latency)
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        path = request.url.path.removeprefix("/api")
        self.calls.append((request.method, path))
        body = json.loads(request.content) if request.content else None

        if path == "/auth/login":
            return self._login(body)
        if path == "/auth/register":
            return self._register(body)
        if path.startswith("/products/"):
            product = PRODUCTS.get(path.removeprefix("/products/"))
            if product is None:
                return httpx.Response(404, json={"detail": "Product not found"})
            return httpx.Response(200, json=product)

        username = self._user_for(request)
        if username is None:
            return httpx.Response(401, json={"detail": "Could not validate credentials"})
        if path == "/auth/me":
            return httpx.Response(200, json=self.users[username]["user"])
        if path.startswith("/cart"):
            return self._cart(request.method, path, body, username)
        if path.startswith("/wishlist"):
            return self._wishlist(request.method, path, body, username)
        return httpx.Response(404, json={"detail": "Not Found"})

    def _login(self, body: dict[str, Any]) -> httpx.Response:
        account = self.users.get(body.get("username"))
        if account is None or account["password"] != body.get("password"):
            return httpx.Response(401, json={"detail": "Invalid credentials"})
        token = self.issue_token(body["username"])
        return httpx.Response(200, json={"access_token": token, "token_type": "bearer", "user": account["user"]})

    def _register(self, body: dict[str, Any]) -> httpx.Response:
        if body["username"] in self.users:
            return httpx.Response(409, json={"detail": "Username already registered"})
        user = {"id": next(self._ids), "username": body["username"], "email": body["email"]}
        if not self.omit_role_on_register:
            user["role"] = body.get("role", "customer")
        self.users[body["username"]] = {"password": body["password"], "user": user}
        token = self.issue_token(body["username"])
        return httpx.Response(201, json={"access_token": token, "user": user})

    def _cart(self, method: str, path: str, body: Any, username: str) -> httpx.Response:
        items = self.carts[username]
        if path == "/cart" and method == "GET":
            return httpx.Response(200, json=self._cart_body(username))
        if path == "/cart" and method == "POST":
            product_id = str(body["product_id"])
            if product_id in self.failing_products or product_id not in PRODUCTS:
                return httpx.Response(500, json={"detail": "Could not add product"})
            existing = next((item for item in items if str(item["product_id"]) == product_id), None)
            if existing:
                existing["quantity"] += body["quantity"]
            else:
                self.seed_cart(username, product_id, body["quantity"])
            return httpx.Response(200, json={"message": "Added to cart", "cart": self._cart_body(username)})
        if path == "/cart" and method == "DELETE":
            items.clear()
            return httpx.Response(200, json={"message": "Cart cleared", "cart": self._cart_body(username)})
        line_id = path.removeprefix("/cart/")
        line = next((item for item in items if str(item["id"]) == line_id), None)
        if line is None:
            return httpx.Response(404, json={"detail": "Cart item not found"})
        if method == "PUT":
            line["quantity"] = body["quantity"]
            return httpx.Response(200, json={"message": "Cart updated"})
        items.remove(line)
        return httpx.Response(200, json={"message": "Removed from cart", "cart": self._cart_body(username)})

    def _wishlist(self, method: str, path: str, body: Any, username: str) -> httpx.Response:
        wished = self.wishlists[username]
        if method == "GET":
            items = [{"id": idx, "product_id": int(pid), "product": PRODUCTS[pid]} for idx, pid in enumerate(wished)]
            return httpx.Response(200, json={"items": items, "count": len(items)})
        if method == "POST":
            product_id = str(body["product_id"])
            if product_id in wished:
                return httpx.Response(400, json={"detail": "Product already in wishlist"})
            wished.append(product_id)
            return httpx.Response(201, json={"message": "Added to wishlist"})
        product_id = path.removeprefix("/wishlist/")
        if product_id in wished:
            wished.remove(product_id)
        return httpx.Response(200, json={"message": "Removed from wishlist"})


@pytest.fixture
def products() -> dict[str, ProductSnapshot]:
    return {pid: ProductSnapshot.model_validate(data) for pid, data in PRODUCTS.items()}


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    # Counters are process-global and would leak across tests.
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def fake_api() -> FakeStoreApi:
    return FakeStoreApi()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(api_base_url=API_BASE, storage_path=None, max_line_quantity=10)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def front(fake_api: FakeStoreApi, store: MemoryStore, test_settings: Settings) -> Storefront:
    return Storefront(store=store, transport=fake_api.transport, config=test_settings)


@pytest.fixture
def events(front: Storefront) -> list[Event]:
    received: list[Event] = []
    front.subscribe(received.append)
    return received
