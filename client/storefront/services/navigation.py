"""Role-based routing decisions.

These helpers never navigate; they tell the caller whether a page may be shown
and where to send the user otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass

from storefront.core.config import Settings, settings as default_settings
from storefront.schemas.auth import Session, UserRole


@dataclass(frozen=True)
class NavigationDecision:
    allowed: bool
    redirect_to: str | None = None
    message: str | None = None


def redirect_target(session: Session, config: Settings | None = None) -> str:
    config = config or default_settings
    if session.role is UserRole.seller:
        return config.seller_home_path
    return config.customer_home_path


def require_auth(session: Session, config: Settings | None = None) -> NavigationDecision:
    config = config or default_settings
    if not session.token:
        return NavigationDecision(False, config.signin_path)
    return NavigationDecision(True)


def require_seller(session: Session, config: Settings | None = None) -> NavigationDecision:
    config = config or default_settings
    decision = require_auth(session, config)
    if not decision.allowed:
        return decision
    if session.role is not UserRole.seller:
        return NavigationDecision(False, config.customer_home_path, "Access denied. Seller account required.")
    return NavigationDecision(True)


def require_customer(session: Session, config: Settings | None = None) -> NavigationDecision:
    config = config or default_settings
    decision = require_auth(session, config)
    if not decision.allowed:
        return decision
    if session.role is not UserRole.customer:
        return NavigationDecision(False, config.seller_home_path)
    return NavigationDecision(True)


def redirect_if_authenticated(session: Session, config: Settings | None = None) -> NavigationDecision:
    """For sign-in and sign-up pages: bounce users who already have a session."""
    if session.token:
        return NavigationDecision(False, redirect_target(session, config))
    return NavigationDecision(True)
