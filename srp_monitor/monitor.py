"""Stock transition monitor.

Holds the registry of watched products, compares each poll against the
previous one and decides when a watched size has come back in stock.  A
transition triggers one cart-add attempt; the notification sent depends on
whether the vendor accepted it.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from .client import CartResult, Offer, StockSnapshot
from .errors import MonitorError, NotFound, NotificationError, Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SizeInfo:
    size: str
    price: Decimal


@dataclass(frozen=True)
class WatchedProduct:
    """Monitor state of one product.

    Records are immutable; every change produces a new record that replaces
    the old one in the registry.
    """

    product_id: str
    watched_sizes: FrozenSet[str]
    previous_stock: Mapping[str, Offer] = field(default_factory=dict)
    notified: FrozenSet[str] = frozenset()
    size_mapping: Mapping[str, SizeInfo] = field(default_factory=dict)
    title: str = ""
    label: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "previous_stock", MappingProxyType(dict(self.previous_stock)))
        object.__setattr__(self, "size_mapping", MappingProxyType(dict(self.size_mapping)))
        if not self.title:
            object.__setattr__(self, "title", f"Produit {self.product_id}")


@dataclass(frozen=True)
class WatchResult:
    product: WatchedProduct
    snapshot: StockSnapshot
    already_in_stock: List[str]


def _size_mapping(snapshot: StockSnapshot) -> Dict[str, SizeInfo]:
    return {oid: SizeInfo(size=o.label, price=o.price) for oid, o in snapshot.offers.items()}


class StockMonitor:
    """Registry of watched products plus the per-tick transition logic.

    ``client`` needs ``fetch_stock(product_id)`` and
    ``add_to_cart(product_id, offer_id)``; ``notifier`` needs
    ``notify_stock_found``, ``notify_cart_added`` and ``notify_auth_expired``.
    """

    def __init__(self, client, notifier) -> None:
        self.client = client
        self.notifier = notifier
        self._products: Dict[str, WatchedProduct] = {}
        self._lock = threading.RLock()

    # ---- registry -----------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._products)

    def __contains__(self, product_id: object) -> bool:
        with self._lock:
            return product_id in self._products

    def get(self, product_id: str) -> Optional[WatchedProduct]:
        with self._lock:
            return self._products.get(product_id)

    def products(self) -> List[WatchedProduct]:
        """Return the current records; they are immutable and safe to share."""
        with self._lock:
            return list(self._products.values())

    def register_product(
        self,
        product_id: str,
        watched_sizes: Iterable[str],
        initial_snapshot: StockSnapshot,
        *,
        title: Optional[str] = None,
    ) -> WatchedProduct:
        """Create or replace the record for ``product_id``.

        Watched sizes already in stock in ``initial_snapshot`` are marked as
        notified; alerting for them is the caller's job.
        """
        watched = frozenset(str(s) for s in watched_sizes)
        if not watched:
            raise ValueError("watched_sizes must not be empty")

        in_stock = frozenset(
            oid for oid in watched
            if oid in initial_snapshot.offers and initial_snapshot.offers[oid].available > 0
        )
        record = WatchedProduct(
            product_id=str(product_id),
            watched_sizes=watched,
            previous_stock=initial_snapshot.offers,
            notified=in_stock,
            size_mapping=_size_mapping(initial_snapshot),
            title=title or "",
            label=initial_snapshot.label,
        )
        with self._lock:
            self._products[record.product_id] = record
        logger.info(
            "Registered product %s (%d watched sizes, %d already in stock)",
            record.product_id, len(watched), len(in_stock),
        )
        return record

    def unregister_product(self, product_id: str) -> bool:
        """Remove ``product_id``; return True when no product is left to watch."""
        with self._lock:
            removed = self._products.pop(product_id, None)
            empty = not self._products
        if removed is not None:
            logger.info("Unregistered product %s", product_id)
        return empty

    def reset_notifications(self, product_id: str) -> WatchedProduct:
        with self._lock:
            record = self._products.get(product_id)
            if record is None:
                raise NotFound(f"Product {product_id} is not monitored")
            record = replace(record, notified=frozenset())
            self._products[product_id] = record
        logger.info("Notifications reset for product %s", product_id)
        return record

    def _commit(self, expected: WatchedProduct, updated: WatchedProduct) -> bool:
        """Swap in ``updated`` unless the record changed since ``expected`` was read."""
        with self._lock:
            if self._products.get(expected.product_id) is not expected:
                return False
            self._products[expected.product_id] = updated
            return True

    # ---- alerting -----------------------------------------------------------

    def _attempt_cart(self, product_id: str, offer_id: str) -> CartResult:
        try:
            return self.client.add_to_cart(product_id, offer_id)
        except MonitorError as e:
            return CartResult(accepted=False, reason=str(e))

    def _fire(self, record: WatchedProduct, offer_id: str, offer: Offer) -> CartResult:
        """Try the cart once, then send the matching notification."""
        logger.info(
            "NEW STOCK: %s size %s (%s) - %d units",
            record.product_id, offer.label or "?", offer_id, offer.available,
        )
        result = self._attempt_cart(record.product_id, offer_id)
        try:
            if result.accepted:
                logger.info("Added %s size %s to cart", record.product_id, offer.label)
                self.notifier.notify_cart_added(record.title, record.product_id, offer_id, offer)
            else:
                logger.warning(
                    "Failed to add %s size %s to cart: %s",
                    record.product_id, offer.label, result.reason,
                )
                self.notifier.notify_stock_found(record.title, record.product_id, offer_id, offer)
        except NotificationError:
            logger.exception("Notification for %s/%s was not delivered", record.product_id, offer_id)
        return result

    def _alert_auth_expired(self, error: Unauthorized) -> None:
        try:
            self.notifier.notify_auth_expired(str(error))
        except NotificationError:
            logger.exception("Expired-credential alert was not delivered")

    # ---- polling ------------------------------------------------------------

    def watch(self, product_id: str, watched_sizes: Iterable[str], *, title: Optional[str] = None) -> WatchResult:
        """Fetch, alert on watched sizes already in stock, then register.

        Fetch failures propagate; an Unauthorized also raises the
        expired-credential alert.
        """
        product_id = str(product_id)
        watched = [str(s) for s in watched_sizes]
        if not watched:
            raise ValueError("watched_sizes must not be empty")

        try:
            snapshot = self.client.fetch_stock(product_id)
        except Unauthorized as e:
            self._alert_auth_expired(e)
            raise

        pending = WatchedProduct(product_id=product_id, watched_sizes=frozenset(watched), title=title or "")
        already: List[str] = []
        for offer_id in dict.fromkeys(watched):
            offer = snapshot.offers.get(offer_id)
            if offer is None or offer.available <= 0:
                continue
            already.append(offer.label or offer_id)
            self._fire(pending, offer_id, offer)

        record = self.register_product(product_id, watched, snapshot, title=title)
        return WatchResult(product=record, snapshot=snapshot, already_in_stock=already)

    def _advance(self, record: WatchedProduct, snapshot: StockSnapshot) -> WatchedProduct:
        notified = set(record.notified)
        for offer_id, offer in snapshot.offers.items():
            prev = record.previous_stock.get(offer_id)
            was_out = prev is None or prev.available == 0
            now_in = offer.available > 0

            if (
                offer_id in record.watched_sizes
                and was_out
                and now_in
                and offer_id not in notified
            ):
                self._fire(record, offer_id, offer)
                notified.add(offer_id)

            # Re-arm for the next restock.
            if offer_id in notified and not now_in:
                notified.discard(offer_id)

        size_mapping = dict(record.size_mapping)
        size_mapping.update(_size_mapping(snapshot))
        return replace(
            record,
            previous_stock=snapshot.offers,
            notified=frozenset(notified),
            size_mapping=size_mapping,
            label=snapshot.label if snapshot.label is not None else record.label,
        )

    def check_product(self, record: WatchedProduct) -> bool:
        """Poll one product and commit its new state; return True on success."""
        try:
            snapshot = self.client.fetch_stock(record.product_id)
        except Unauthorized as e:
            logger.error("Error monitoring %s: %s", record.product_id, e)
            self._alert_auth_expired(e)
            return False
        except MonitorError as e:
            logger.error("Error monitoring %s: %s", record.product_id, e)
            return False

        logger.info("Checking product %s (%d offers)", record.product_id, len(snapshot.offers))
        updated = self._advance(record, snapshot)
        if not self._commit(record, updated):
            logger.debug("Product %s changed during the check; discarding poll result", record.product_id)
        return True

    def tick(self) -> None:
        """Poll every registered product once, sequentially."""
        for record in self.products():
            try:
                self.check_product(record)
            except Exception:
                logger.exception("Unexpected error while monitoring %s", record.product_id)


__all__ = ["SizeInfo", "WatchedProduct", "WatchResult", "StockMonitor"]
