import argparse
import asyncio
import getpass
import json
from pathlib import Path
from typing import Any

from storefront.core.config import settings
from storefront.core.exceptions import StorefrontError
from storefront.core.logging_config import configure_logging
from storefront.core.storage import FileStore
from storefront.services import navigation
from storefront.services.storefront import Storefront

DEFAULT_STORAGE_PATH = Path("~/.storefront/session.json")


def _storage_path(raw: str | None) -> Path:
    return Path(raw or settings.storage_path or DEFAULT_STORAGE_PATH).expanduser()


def _emit(value: Any) -> None:
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    print(json.dumps(value, indent=2, ensure_ascii=False))


async def _login(front: Storefront, args: argparse.Namespace) -> None:
    password = args.password or getpass.getpass("Password: ")
    session = await front.login(args.username, password)
    _emit({"user": session.user.model_dump(mode="json") if session.user else None, "redirect": navigation.redirect_target(session)})


async def _register(front: Storefront, args: argparse.Namespace) -> None:
    password = args.password or getpass.getpass("Password: ")
    session = await front.register(args.username, args.email, password, full_name=args.full_name, role=args.role)
    _emit({"user": session.user.model_dump(mode="json") if session.user else None, "redirect": navigation.redirect_target(session)})


async def _whoami(front: Storefront, _args: argparse.Namespace) -> None:
    user = await front.current_user()
    _emit(user.model_dump(mode="json") if user else None)


async def _logout(front: Storefront, _args: argparse.Namespace) -> None:
    front.logout()
    _emit({"logged_out": True})


async def _cart(front: Storefront, args: argparse.Namespace) -> None:
    action = args.cart_action
    if action == "add":
        cart = await front.add_to_cart(args.product_id, args.quantity)
    elif action == "update":
        cart = await front.update_quantity(args.line_id, args.quantity)
    elif action == "remove":
        cart = await front.remove_from_cart(args.line_id)
    elif action == "clear":
        cart = await front.clear_cart()
    elif action == "checkout":
        cart = await front.begin_checkout()
    else:
        cart = await front.load_cart()
    _emit(cart)


async def _wishlist(front: Storefront, args: argparse.Namespace) -> None:
    action = args.wishlist_action
    if action == "add":
        wishlist = await front.add_to_wishlist(args.product_id)
    elif action == "remove":
        wishlist = await front.remove_from_wishlist(args.product_id)
    else:
        wishlist = await front.load_wishlist()
    _emit(wishlist)


_HANDLERS = {
    "login": _login,
    "register": _register,
    "whoami": _whoami,
    "logout": _logout,
    "cart": _cart,
    "wishlist": _wishlist,
}


def _add_session_commands(subparsers) -> None:
    login = subparsers.add_parser("login", help="Sign in and merge the guest cart into the account")
    login.add_argument("username")
    login.add_argument("--password")

    register = subparsers.add_parser("register", help="Create an account and merge the guest cart")
    register.add_argument("username")
    register.add_argument("email")
    register.add_argument("--password")
    register.add_argument("--full-name", dest="full_name")
    register.add_argument("--role", choices=["customer", "seller"], default="customer")

    subparsers.add_parser("whoami", help="Show the signed-in user")
    subparsers.add_parser("logout", help="Forget the session and the guest cart")


def _add_cart_commands(subparsers) -> None:
    cart = subparsers.add_parser("cart", help="Inspect or change the active cart")
    actions = cart.add_subparsers(dest="cart_action")
    actions.add_parser("show")
    add = actions.add_parser("add")
    add.add_argument("product_id")
    add.add_argument("--quantity", type=int, default=1)
    update = actions.add_parser("update")
    update.add_argument("line_id")
    update.add_argument("quantity", type=int)
    remove = actions.add_parser("remove")
    remove.add_argument("line_id")
    actions.add_parser("clear")
    actions.add_parser("checkout", help="Snapshot the cart for the checkout page")

    wishlist = subparsers.add_parser("wishlist", help="Inspect or change the active wishlist")
    wish_actions = wishlist.add_subparsers(dest="wishlist_action")
    wish_actions.add_parser("show")
    wish_add = wish_actions.add_parser("add")
    wish_add.add_argument("product_id")
    wish_remove = wish_actions.add_parser("remove")
    wish_remove.add_argument("product_id")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront session and cart client")
    parser.add_argument("--storage", help="Session file (default: STOREFRONT_STORAGE_PATH or ~/.storefront/session.json)")
    parser.add_argument("--api", help="API base URL (default: STOREFRONT_API_BASE_URL)")
    parser.add_argument("--json-logs", action="store_true", default=settings.json_logs)
    subparsers = parser.add_subparsers(dest="command")
    _add_session_commands(subparsers)
    _add_cart_commands(subparsers)
    return parser


async def _dispatch(args: argparse.Namespace) -> None:
    front = Storefront(store=FileStore(_storage_path(args.storage)))
    if args.api:
        front.api.base_url = args.api.rstrip("/")
    await _HANDLERS[args.command](front, args)


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command not in _HANDLERS:
        return False
    configure_logging(json_logs=args.json_logs, level=settings.log_level)
    try:
        asyncio.run(_dispatch(args))
    except StorefrontError as exc:
        raise SystemExit(exc.message) from exc
    return True


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
