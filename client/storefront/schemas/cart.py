from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

MAX_LINE_QUANTITY = 10


def to_money(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    dec = value if isinstance(value, Decimal) else Decimal(str(value))
    return dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class ProductSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str = ""
    price: Decimal = Decimal("0.00")
    image_url: str | None = None
    material: str | None = None
    case_size: str | None = None
    reference_number: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("price", mode="before")
    @classmethod
    def _price_as_money(cls, value: Any) -> Decimal:
        try:
            return to_money(value)
        except ArithmeticError as exc:
            raise ValueError(f"invalid price {value!r}") from exc


class CartLine(BaseModel):
    line_id: str
    product_id: str
    quantity: int = Field(ge=1)
    product: ProductSnapshot

    @field_validator("line_id", "product_id", mode="before")
    @classmethod
    def _ids_as_str(cls, value: Any) -> Any:
        return _coerce_id(value)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.product.price * self.quantity)


class Cart(BaseModel):
    """Canonical cart; totals are always derived from the lines."""

    lines: list[CartLine] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        return to_money(sum((line.line_total for line in self.lines), Decimal("0")))

    def find_line(self, line_id: str) -> CartLine | None:
        return next((line for line in self.lines if line.line_id == line_id), None)

    def find_product(self, product_id: str) -> CartLine | None:
        return next((line for line in self.lines if line.product_id == product_id), None)

    @property
    def is_empty(self) -> bool:
        return not self.lines


class WishlistLine(BaseModel):
    product_id: str
    product: ProductSnapshot | None = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return _coerce_id(value)


class Wishlist(BaseModel):
    lines: list[WishlistLine] = []

    @field_validator("lines")
    @classmethod
    def _unique_products(cls, lines: list[WishlistLine]) -> list[WishlistLine]:
        seen: set[str] = set()
        unique: list[WishlistLine] = []
        for line in lines:
            if line.product_id in seen:
                continue
            seen.add(line.product_id)
            unique.append(line)
        return unique

    @computed_field  # type: ignore[prop-decorator]
    @property
    def count(self) -> int:
        return len(self.lines)

    def contains(self, product_id: str) -> bool:
        return any(line.product_id == product_id for line in self.lines)


class CartItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)

    @field_validator("product_id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return _coerce_id(value)


class CartItemUpdate(BaseModel):
    quantity: int = Field(ge=1)


class WishlistItemCreate(BaseModel):
    product_id: str

    @field_validator("product_id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return _coerce_id(value)
