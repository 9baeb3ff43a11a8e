"""Moves the guest cart and wishlist into the account after sign-in.

Guest lines are replayed one at a time against the account API, each capped at
what the matching account line can still hold. The guest snapshot is dropped
only once every line has been attempted and at least one request actually
reached the server; if the network was down for all of them the guest copy
stays put for the next sign-in.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field

from storefront.core import metrics
from storefront.core.events import CartChanged, SessionNotifier, WishlistChanged
from storefront.core.exceptions import AlreadyExists, NetworkError, SessionError, StorefrontError
from storefront.schemas.cart import Cart, Wishlist
from storefront.services.guest_cart import GuestCart, GuestWishlist
from storefront.services.server_cart import ServerCartClient

logger = logging.getLogger(__name__)


class MigrationState(str, enum.Enum):
    idle = "idle"
    migrating = "migrating"


@dataclass
class BatchResult:
    attempted: int = 0
    migrated: int = 0
    failed: list[str] = field(default_factory=list)
    reached_server: bool = False
    session_lost: bool = False
    cleared: bool = False


@dataclass
class MigrationReport:
    cart: BatchResult = field(default_factory=BatchResult)
    wishlist: BatchResult = field(default_factory=BatchResult)
    server_cart: Cart | None = None
    server_wishlist: Wishlist | None = None

    @property
    def failed_lines(self) -> int:
        return len(self.cart.failed) + len(self.wishlist.failed)


class ReconciliationCoordinator:
    def __init__(
        self,
        guest_cart: GuestCart,
        guest_wishlist: GuestWishlist,
        server: ServerCartClient,
        notifier: SessionNotifier,
    ) -> None:
        self.guest_cart = guest_cart
        self.guest_wishlist = guest_wishlist
        self.server = server
        self.notifier = notifier
        self.state = MigrationState.idle

    def _should_clear(self, result: BatchResult) -> bool:
        if result.session_lost:
            return False
        return result.attempted == 0 or result.reached_server

    async def _account_quantities(self, result: BatchResult) -> dict[str, int]:
        try:
            cart = await self.server.get_cart()
        except SessionError:
            result.session_lost = True
            return {}
        except StorefrontError as exc:
            logger.warning("account_cart_unavailable", extra={"error": exc.message})
            return {}
        return {line.product_id: line.quantity for line in cart.lines}

    async def _migrate_cart(self) -> BatchResult:
        result = BatchResult()
        lines = self.guest_cart.load().lines
        if not lines:
            return self._finish_cart(result)
        held = await self._account_quantities(result)
        if result.session_lost:
            return result
        limit = self.server.max_quantity
        for line in lines:
            result.attempted += 1
            room = limit - held.get(line.product_id, 0)
            if room <= 0:
                logger.info("guest_cart_line_at_maximum", extra={"product_id": line.product_id})
                result.reached_server = True
                result.migrated += 1
                continue
            quantity = min(line.quantity, room)
            try:
                await self.server.add_item(line.product_id, quantity)
            except SessionError:
                result.session_lost = True
                result.failed.append(line.product_id)
                break
            except NetworkError as exc:
                result.failed.append(line.product_id)
                logger.warning("guest_cart_line_not_migrated", extra={"product_id": line.product_id, "error": exc.message})
                continue
            except StorefrontError as exc:
                result.reached_server = True
                result.failed.append(line.product_id)
                logger.warning("guest_cart_line_not_migrated", extra={"product_id": line.product_id, "error": exc.message})
                continue
            result.reached_server = True
            result.migrated += 1
        return self._finish_cart(result)

    def _finish_cart(self, result: BatchResult) -> BatchResult:
        if self._should_clear(result):
            self.guest_cart.clear()
            result.cleared = True
        return result

    async def _migrate_wishlist(self) -> BatchResult:
        result = BatchResult()
        for line in self.guest_wishlist.load().lines:
            result.attempted += 1
            try:
                await self.server.add_wish(line.product_id)
            except AlreadyExists:
                result.reached_server = True
                result.migrated += 1
                continue
            except SessionError:
                result.session_lost = True
                result.failed.append(line.product_id)
                break
            except NetworkError as exc:
                result.failed.append(line.product_id)
                logger.warning("guest_wish_not_migrated", extra={"product_id": line.product_id, "error": exc.message})
                continue
            except StorefrontError as exc:
                result.reached_server = True
                result.failed.append(line.product_id)
                logger.warning("guest_wish_not_migrated", extra={"product_id": line.product_id, "error": exc.message})
                continue
            result.reached_server = True
            result.migrated += 1
        if self._should_clear(result):
            self.guest_wishlist.clear()
            result.cleared = True
        return result

    async def _publish_canonical(self, report: MigrationReport) -> None:
        try:
            report.server_cart = await self.server.get_cart()
            report.server_wishlist = await self.server.get_wishlist()
        except StorefrontError as exc:
            logger.warning("post_migration_fetch_failed", extra={"error": exc.message})
            return
        self.notifier.publish(CartChanged(report.server_cart))
        self.notifier.publish(WishlistChanged(report.server_wishlist))

    async def run(self) -> MigrationReport:
        if self.state is MigrationState.migrating:
            logger.warning("migration_already_running")
            return MigrationReport()
        self.state = MigrationState.migrating
        report = MigrationReport()
        try:
            report.cart = await self._migrate_cart()
            if not report.cart.session_lost:
                report.wishlist = await self._migrate_wishlist()
            if not (report.cart.session_lost or report.wishlist.session_lost):
                await self._publish_canonical(report)
        finally:
            self.state = MigrationState.idle

        metrics.record_lines_migrated(report.cart.migrated + report.wishlist.migrated)
        if report.failed_lines:
            metrics.record_migration_failure()
        logger.info(
            "guest_migration_finished",
            extra={
                "cart_migrated": report.cart.migrated,
                "wishlist_migrated": report.wishlist.migrated,
                "failed": report.failed_lines,
                "cart_cleared": report.cart.cleared,
                "wishlist_cleared": report.wishlist.cleared,
            },
        )
        return report
