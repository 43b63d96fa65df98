"""Tests for the JSON web API against a live server on an ephemeral port."""

import threading
import time

import pytest
import requests

from conftest import make_snapshot
from srp_monitor.client import CartResult
from srp_monitor.config import AuthConfig
from srp_monitor.errors import Unauthorized
from srp_monitor.history import ProductHistory
from srp_monitor.monitor import StockMonitor
from srp_monitor.server import ApiServer, AppContext

P = "38450594"
URL = f"https://www.showroomprive.com/link/product/{P}"


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeScheduler:
    def __init__(self):
        self.is_running = False
        self.starts = 0
        self.stops = 0

    def start(self):
        self.starts += 1
        self.is_running = True

    def stop(self, timeout=None):
        self.stops += 1
        self.is_running = False


@pytest.fixture
def ctx(client, notifier):
    return AppContext(
        monitor=StockMonitor(client, notifier),
        scheduler=FakeScheduler(),
        client=client,
        notifier=notifier,
        auth=AuthConfig(),
        history=ProductHistory(),
    )


@pytest.fixture(autouse=True)
def _no_proxy(monkeypatch):
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")


@pytest.fixture
def base_url(ctx):
    server = ApiServer(ctx, host="127.0.0.1", port=0)
    url = server.start()
    assert url
    yield url
    server.stop()


def test_add_product_registers_and_starts_monitoring(base_url, ctx, client, notifier):
    client.queue(P, make_snapshot(P, {"O1": (0, "M", "19.9"), "O2": (2, "L", "19.9")}, label="Veste"))

    resp = requests.post(f"{base_url}/api/products/add", json={"url": URL, "watchedSizes": ["O1", "O2"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["watchedSizes"] == ["M", "L"]
    assert body["alreadyInStock"] == ["L"]
    assert notifier.events == [("cart", P, "O2")]
    assert ctx.scheduler.starts == 1
    assert [e.product_id for e in ctx.history.entries()] == [P]

    listing = requests.get(f"{base_url}/api/products").json()
    assert listing["isMonitoring"] is True
    product = listing["products"][0]
    assert product["key"] == P
    assert product["notified"] == ["O2"]
    assert product["currentStock"]["O1"] == {"available": 0, "label": "M", "price": 19.9}
    assert product["productInfo"]["label"] == "Veste"


def test_add_product_requires_watched_sizes(base_url):
    resp = requests.post(f"{base_url}/api/products/add", json={"productId": P, "watchedSizes": []})

    assert resp.status_code == 400


def test_fetch_product_preview(base_url, client):
    client.queue(P, make_snapshot(P, {"O1": (3, "M", "89.90")}, label="Veste"))

    resp = requests.post(f"{base_url}/api/products/fetch", json={"url": URL})

    assert resp.status_code == 200
    body = resp.json()
    assert body["productId"] == P
    assert body["sizes"] == [{"offerId": "O1", "size": "M", "stock": 3, "price": 89.9}]


def test_fetch_product_rejects_bad_url(base_url):
    resp = requests.post(f"{base_url}/api/products/fetch", json={"url": "https://example.com/x"})

    assert resp.status_code == 400


def test_fetch_unauthorized_sends_alert(base_url, client, notifier):
    client.queue(P, Unauthorized("Unauthorized (401) - Token expired or invalid", status=401))

    resp = requests.post(f"{base_url}/api/products/fetch", json={"productId": P})

    assert resp.status_code == 500
    assert "Unauthorized" in resp.json()["error"]
    assert notifier.events[0][0] == "auth"


def test_remove_last_product_stops_monitoring(base_url, ctx):
    ctx.monitor.register_product(P, ["O1"], make_snapshot(P, {}))

    assert requests.delete(f"{base_url}/api/products/{P}").status_code == 200
    assert ctx.scheduler.stops == 1
    assert requests.delete(f"{base_url}/api/products/{P}").status_code == 404


def test_reset_notifications_route(base_url, ctx):
    ctx.monitor.register_product(P, ["O1"], make_snapshot(P, {"O1": (1, "M", "10")}))

    assert requests.post(f"{base_url}/api/products/{P}/reset").status_code == 200
    assert ctx.monitor.get(P).notified == frozenset()
    assert requests.post(f"{base_url}/api/products/unknown/reset").status_code == 404


def test_history_routes(base_url, ctx):
    ctx.history.record("1", "", None, {})
    ctx.history.record("2", "", None, {})
    ctx.monitor.register_product("2", ["A"], make_snapshot("2", {}))

    history = requests.get(f"{base_url}/api/history").json()["history"]
    monitored = {h["productId"]: h["isCurrentlyMonitored"] for h in history}
    assert monitored == {"1": False, "2": True}

    assert requests.delete(f"{base_url}/api/history/1").status_code == 200
    assert requests.delete(f"{base_url}/api/history/1").status_code == 404
    assert requests.delete(f"{base_url}/api/history").status_code == 200
    assert len(ctx.history) == 0


def test_config_update_resets_auth_alert(base_url, ctx, notifier):
    notifier.notify_auth_expired("Unauthorized (401)")

    resp = requests.post(
        f"{base_url}/api/config/headers",
        json={"headers": "token: fresh\nclient_num: 7", "crm": "c"},
    )

    assert resp.status_code == 200
    assert notifier.auth_sent is False
    assert ctx.auth.auth_headers() == {"crm": "c", "token": "fresh", "client_num": "7"}


def test_test_add_to_cart_route(base_url, client):
    client.cart_results.append(CartResult(accepted=False, reason="Stock insuffisant"))

    resp = requests.post(f"{base_url}/api/test/addtocart", json={"productId": P, "sizeId": "O1"})

    assert resp.status_code == 200
    assert resp.json()["success"] is False
    assert client.cart_calls == [(P, "O1")]


def test_health_and_ping(base_url, ctx):
    health = requests.get(f"{base_url}/health").json()
    assert health["status"] == "alive"
    assert health["monitoredProducts"] == 0
    assert health["hasAuth"] is False

    assert requests.get(f"{base_url}/ping").text == "pong"
    assert requests.get(f"{base_url}/nope").status_code == 404


def test_invalid_json_body(base_url):
    resp = requests.post(
        f"{base_url}/api/products/add",
        data="{not json",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400


def test_add_racing_last_remove_keeps_monitoring(base_url, ctx, client, monkeypatch):
    ctx.monitor.register_product("A", ["O1"], make_snapshot("A", {}))
    ctx.scheduler.start()
    client.queue("B", make_snapshot("B", {"O1": (0, "M", "10")}))
    responses = []
    unregister = ctx.monitor.unregister_product

    def unregister_then_race_an_add(key):
        emptied = unregister(key)
        adder = threading.Thread(
            target=lambda: responses.append(
                requests.post(f"{base_url}/api/products/add", json={"productId": "B", "watchedSizes": ["O1"]})
            )
        )
        adder.start()
        adder.join(0.3)
        return emptied

    monkeypatch.setattr(ctx.monitor, "unregister_product", unregister_then_race_an_add)

    assert requests.delete(f"{base_url}/api/products/A").status_code == 200
    assert _wait_for(lambda: responses)

    assert responses[0].status_code == 200
    assert "B" in ctx.monitor
    assert ctx.scheduler.is_running
