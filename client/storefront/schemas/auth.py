import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class UserRole(str, enum.Enum):
    customer = "customer"
    seller = "seller"


def _coerce_optional_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class UserRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    username: str = ""
    email: str = ""
    full_name: str | None = None
    role: UserRole = UserRole.customer
    seller_id: str | None = None
    customer_id: str | None = None

    @field_validator("id", "seller_id", "customer_id", mode="before")
    @classmethod
    def _ids_as_str(cls, value: Any) -> Any:
        return _coerce_optional_id(value)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> Any:
        if isinstance(value, UserRole):
            return value
        normalized = str(value or "").strip().lower()
        if normalized == UserRole.seller.value:
            return UserRole.seller
        return UserRole.customer


class Session(BaseModel):
    token: str | None = None
    user: UserRecord | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and self.user is not None

    @property
    def role(self) -> UserRole:
        return self.user.role if self.user else UserRole.customer


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    full_name: str | None = None
    role: UserRole = UserRole.customer


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "bearer"
    user: dict[str, Any]
