from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from srp_monitor.client import CartResult, Offer, StockSnapshot
from srp_monitor.monitor import StockMonitor


def make_snapshot(product_id: str, stock: Dict[str, Tuple[int, str, str]], label: Optional[str] = None) -> StockSnapshot:
    """stock maps offer id -> (available, size label, price)."""
    offers = {
        oid: Offer(available=available, label=size, price=Decimal(price))
        for oid, (available, size, price) in stock.items()
    }
    return StockSnapshot(product_id=product_id, offers=offers, label=label)


class FakeClient:
    """Returns queued snapshots (or raises queued errors) per product."""

    def __init__(self) -> None:
        self.responses: Dict[str, List[object]] = {}
        self.cart_results: List[object] = []
        self.fetch_calls: List[str] = []
        self.cart_calls: List[Tuple[str, str]] = []

    def queue(self, product_id: str, *responses: object) -> None:
        self.responses.setdefault(product_id, []).extend(responses)

    def fetch_stock(self, product_id: str) -> StockSnapshot:
        self.fetch_calls.append(product_id)
        queue = self.responses.get(product_id) or []
        if not queue:
            raise AssertionError(f"no response queued for {product_id}")
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def add_to_cart(self, product_id: str, offer_id: str) -> CartResult:
        self.cart_calls.append((product_id, offer_id))
        result = self.cart_results.pop(0) if self.cart_results else CartResult(accepted=True)
        if isinstance(result, Exception):
            raise result
        return result


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: List[Tuple[str, ...]] = []
        self.auth_sent = False
        self.fail_with: Optional[Exception] = None

    def notify_stock_found(self, title, product_id, offer_id, offer):
        self.events.append(("stock", product_id, offer_id))
        if self.fail_with:
            raise self.fail_with
        return True

    def notify_cart_added(self, title, product_id, offer_id, offer):
        self.events.append(("cart", product_id, offer_id))
        if self.fail_with:
            raise self.fail_with
        return True

    def notify_auth_expired(self, error_message):
        if self.auth_sent:
            return False
        self.auth_sent = True
        self.events.append(("auth", error_message))
        return True

    def reset_auth_expired(self):
        self.auth_sent = False


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def monitor(client, notifier) -> StockMonitor:
    return StockMonitor(client, notifier)
