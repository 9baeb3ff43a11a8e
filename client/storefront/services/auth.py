from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from storefront.core import metrics
from storefront.core.events import LoggedIn, LoggedOut, SessionNotifier
from storefront.core.exceptions import AuthError, ServerError, SessionError, Unauthorized
from storefront.core.storage import KeyValueStore, StorageKeys, read_json, write_json
from storefront.schemas.auth import LoginRequest, RegisterRequest, Session, TokenResponse, UserRecord, UserRole
from storefront.services.api import ApiClient

logger = logging.getLogger(__name__)

# Keys wiped by a logout or an expired session.
_SESSION_KEYS = (
    StorageKeys.auth_token,
    StorageKeys.user,
    StorageKeys.guest_cart,
    StorageKeys.guest_wishlist,
    StorageKeys.checkout,
)


class Reconciler(Protocol):
    async def run(self) -> Any: ...


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg") or "Invalid value"
    return f"{field}: {msg}" if field else msg


def _is_conflict(exc: ServerError) -> bool:
    if exc.status_code == 409:
        return True
    lowered = exc.message.lower()
    return exc.status_code == 400 and ("already" in lowered or "exists" in lowered)


class AuthSessionManager:
    """Owns the current token and user record.

    State is restored from the store on construction, so a fresh instance over
    the same store behaves like a page reload.
    """

    def __init__(self, api: ApiClient, store: KeyValueStore, notifier: SessionNotifier) -> None:
        self.api = api
        self.store = store
        self.notifier = notifier
        self.reconciler: Reconciler | None = None
        self._token: str | None = store.get(StorageKeys.auth_token) or None
        self._user: UserRecord | None = self._load_user() if self._token else None
        self._me_lock = asyncio.Lock()

    def _load_user(self) -> UserRecord | None:
        raw = read_json(self.store, StorageKeys.user)
        if raw is None:
            return None
        try:
            return UserRecord.model_validate(raw)
        except ValidationError:
            logger.warning("stored_user_invalid")
            self.store.remove(StorageKeys.user)
            return None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def session(self) -> Session:
        return Session(token=self._token, user=self._user)

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def role(self) -> UserRole:
        return self._user.role if self._user else UserRole.customer

    def seller_id(self) -> str | None:
        return self._user.seller_id if self._user else None

    def customer_id(self) -> str | None:
        return self._user.customer_id if self._user else None

    def _persist(self, token: str, user: UserRecord) -> None:
        self._token = token
        self._user = user
        self.store.set(StorageKeys.auth_token, token)
        write_json(self.store, StorageKeys.user, user.model_dump(mode="json"))

    def _clear(self) -> None:
        self._token = None
        self._user = None
        for key in _SESSION_KEYS:
            self.store.remove(key)
        self.notifier.publish(LoggedOut())

    async def _establish(self, body: Any, *, fallback_role: UserRole) -> Session:
        try:
            tokens = TokenResponse.model_validate(body)
            user_data = dict(tokens.user)
            if not user_data.get("role"):
                user_data["role"] = fallback_role.value
            user = UserRecord.model_validate(user_data)
        except ValidationError as exc:
            raise ServerError("Unexpected response from the store") from exc

        self._persist(tokens.access_token, user)
        if self.reconciler is not None:
            await self.reconciler.run()
        if self._token != tokens.access_token:
            # The fresh token was rejected while merging the guest cart.
            raise SessionError(SessionError.EXPIRED)
        self.notifier.publish(LoggedIn(user))
        logger.info("session_established", extra={"user_id": user.id, "role": user.role.value})
        return self.session

    async def login(self, username: str, password: str) -> Session:
        try:
            payload = LoginRequest(username=username, password=password)
        except ValidationError as exc:
            raise AuthError(AuthError.VALIDATION_ERROR, "Username and password are required") from exc
        try:
            body = await self.api.post("/auth/login", json=payload.model_dump())
        except Unauthorized as exc:
            metrics.record_login_failure()
            raise AuthError(AuthError.INVALID_CREDENTIALS, "Invalid username or password") from exc
        except ServerError as exc:
            metrics.record_login_failure()
            if exc.status_code in (400, 403):
                raise AuthError(AuthError.INVALID_CREDENTIALS, exc.message) from exc
            if exc.status_code == 422:
                raise AuthError(AuthError.VALIDATION_ERROR, exc.message) from exc
            raise
        session = await self._establish(body, fallback_role=UserRole.customer)
        metrics.record_login_success()
        return session

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: str | None = None,
        role: UserRole | str = UserRole.customer,
    ) -> Session:
        try:
            payload = RegisterRequest(
                username=username, email=email, password=password, full_name=full_name, role=role
            )
        except ValidationError as exc:
            raise AuthError(AuthError.VALIDATION_ERROR, _validation_message(exc)) from exc
        try:
            body = await self.api.post("/auth/register", json=payload.model_dump(mode="json", exclude_none=True))
        except ServerError as exc:
            if _is_conflict(exc):
                raise AuthError(AuthError.CONFLICT, exc.message) from exc
            if exc.status_code in (400, 422):
                raise AuthError(AuthError.VALIDATION_ERROR, exc.message) from exc
            raise
        metrics.record_signup()
        return await self._establish(body, fallback_role=payload.role)

    def logout(self) -> None:
        """Clear the local session. Never touches the network."""
        self._clear()
        logger.info("session_logged_out")

    def expire(self, token: str | None) -> bool:
        """Terminal clear after the server rejected ``token``.

        Only the first rejection of a given token clears; later ones from
        requests that were already in flight are ignored.
        """
        if not token or token != self._token:
            return False
        metrics.record_session_expired()
        logger.warning("session_expired")
        self._clear()
        return True

    async def current_user(self) -> UserRecord | None:
        if self._user is not None or not self._token:
            return self._user
        token = self._token
        async with self._me_lock:
            if self._user is not None or self._token != token:
                return self._user
            try:
                body = await self.api.get("/auth/me", token=token)
            except Unauthorized:
                self.expire(token)
                return None
            try:
                user = UserRecord.model_validate(body)
            except ValidationError as exc:
                raise ServerError("Unexpected response from the store") from exc
            if self._token != token:
                return None
            self._persist(token, user)
            return user
