import json

import pytest

from storefront import cli
from storefront.core.storage import FileStore, StorageKeys
from storefront.services.storefront import Storefront


@pytest.fixture
def run(monkeypatch, fake_api, test_settings, tmp_path, capsys):
    storage = tmp_path / "session.json"

    def factory(*, store):
        return Storefront(store=store, transport=fake_api.transport, config=test_settings)

    monkeypatch.setattr(cli, "Storefront", factory)
    monkeypatch.setattr(cli, "configure_logging", lambda **_kwargs: None)

    def _run(*argv: str):
        args = cli._build_parser().parse_args(["--storage", str(storage), *argv])
        handled = cli._run_cli_command(args)
        out = capsys.readouterr().out
        return handled, json.loads(out) if out.strip() else None

    _run.storage = storage
    return _run


def test_no_command_is_not_handled():
    args = cli._build_parser().parse_args([])
    assert cli._run_cli_command(args) is False


def test_guest_cart_persists_between_invocations(run):
    handled, cart = run("cart", "add", "1", "--quantity", "2")
    assert handled
    assert cart["item_count"] == 2

    _, shown = run("cart", "show")
    assert shown["lines"][0]["product"]["name"] == "Submariner Date"
    assert FileStore(run.storage).get(StorageKeys.guest_cart) is not None


def test_login_merges_and_reports_redirect(run, fake_api):
    run("cart", "add", "3")

    _, result = run("login", "sam", "--password", "secret")

    assert result["redirect"] == "/seller-dashboard.html"
    assert fake_api.cart_quantities("sam") == {"3": 1}
    _, who = run("whoami")
    assert who["username"] == "sam"


def test_errors_exit_with_message(run):
    with pytest.raises(SystemExit) as excinfo:
        run("cart", "update", "missing", "2")
    assert str(excinfo.value) == "Cart item not found"

    with pytest.raises(SystemExit) as excinfo:
        run("cart", "checkout")
    assert str(excinfo.value) == "Your cart is empty"
