"""JSON web API for managing watched products.

Lightweight `http.server` front end: product registration, removal,
notification reset, history and credential updates.  All monitoring state
is reached through :class:`~srp_monitor.monitor.StockMonitor`.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from .client import VendorClient, parse_product_url
from .config import AuthConfig
from .errors import MonitorError, NotFound, NotificationError, Unauthorized
from .history import ProductHistory
from .monitor import StockMonitor, WatchedProduct
from .notifier import DiscordNotifier
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

Response = Tuple[int, Any]


class BadRequest(Exception):
    """Client sent an unusable request; mapped to HTTP 400."""


@dataclass
class AppContext:
    monitor: StockMonitor
    scheduler: Scheduler
    client: VendorClient
    notifier: DiscordNotifier
    auth: AuthConfig
    history: ProductHistory
    started_at: float = field(default_factory=time.time)
    # Orders registry changes with the scheduler start/stop they imply.
    lifecycle_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def serialize_product(product: WatchedProduct) -> Dict[str, Any]:
    return {
        "key": product.product_id,
        "productId": product.product_id,
        "productInfo": {
            "productId": product.product_id,
            "title": product.title,
            "label": product.label,
        },
        "sizeMapping": {
            oid: {"size": info.size, "price": info.price}
            for oid, info in product.size_mapping.items()
        },
        "watchedSizes": sorted(product.watched_sizes),
        "currentStock": {
            oid: {"available": o.available, "label": o.label, "price": o.price}
            for oid, o in product.previous_stock.items()
        },
        "notified": sorted(product.notified),
    }


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m {seconds % 60}s"


class ApiHandler(BaseHTTPRequestHandler):
    """Routes JSON requests to the monitor, scheduler and history store."""

    server_version = "SrpMonitor/1.0"

    def log_message(self, format, *args):
        """Override to use Python logging instead of stderr."""
        logger.info("%s - %s", self.address_string(), format % args)

    @property
    def ctx(self) -> AppContext:
        return self.server.ctx  # type: ignore[attr-defined]

    # ---- plumbing -----------------------------------------------------------

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def _routes(self) -> List[Tuple[str, "re.Pattern[str]", Callable[..., Response]]]:
        return [
            ("GET", re.compile(r"^/api/products/?$"), self._list_products),
            ("POST", re.compile(r"^/api/products/fetch$"), self._fetch_product),
            ("POST", re.compile(r"^/api/products/add$"), self._add_product),
            ("DELETE", re.compile(r"^/api/products/([^/]+)$"), self._remove_product),
            ("POST", re.compile(r"^/api/products/([^/]+)/reset$"), self._reset_product),
            ("GET", re.compile(r"^/api/history/?$"), self._list_history),
            ("DELETE", re.compile(r"^/api/history/?$"), self._clear_history),
            ("DELETE", re.compile(r"^/api/history/([^/]+)$"), self._remove_history),
            ("POST", re.compile(r"^/api/config/headers$"), self._update_headers),
            ("POST", re.compile(r"^/api/test/stock$"), self._test_stock),
            ("POST", re.compile(r"^/api/test/addtocart$"), self._test_add_to_cart),
            ("GET", re.compile(r"^/health$"), self._health),
            ("GET", re.compile(r"^/ping$"), self._ping),
            ("GET", re.compile(r"^/$"), self._index),
        ]

    def _dispatch(self, method: str) -> None:
        path = urlparse(self.path).path
        try:
            for route_method, pattern, handler in self._routes():
                match = pattern.match(path)
                if route_method == method and match:
                    status, body = handler(*(unquote(g) for g in match.groups()))
                    break
            else:
                status, body = 404, {"error": "Not found"}
        except BadRequest as e:
            status, body = 400, {"error": str(e)}
        except NotFound as e:
            status, body = 404, {"error": str(e)}
        except MonitorError as e:
            status, body = 500, {"error": str(e)}
        except Exception as e:
            logger.exception("Error handling %s %s", method, path)
            status, body = 500, {"error": f"Server error: {e}"}
        self._send(status, body)

    def _send(self, status: int, body: Any) -> None:
        if isinstance(body, str):
            data = body.encode("utf-8")
            content_type = "text/plain; charset=utf-8"
        else:
            data = json.dumps(body, default=_json_default).encode("utf-8")
            content_type = "application/json"
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _read_json(self) -> Dict[str, Any]:
        length = int(self.headers.get("Content-Length") or 0)
        if length <= 0:
            return {}
        raw = self.rfile.read(length)
        try:
            body = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise BadRequest(f"Invalid JSON body: {e}") from e
        if not isinstance(body, dict):
            raise BadRequest("JSON body must be an object")
        return body

    def _alert_if_unauthorized(self, error: MonitorError) -> None:
        if isinstance(error, Unauthorized):
            try:
                self.ctx.notifier.notify_auth_expired(str(error))
            except NotificationError:
                logger.exception("Expired-credential alert was not delivered")

    # ---- products -----------------------------------------------------------

    def _list_products(self) -> Response:
        products = [serialize_product(p) for p in self.ctx.monitor.products()]
        return 200, {"products": products, "isMonitoring": self.ctx.scheduler.is_running}

    def _fetch_product(self) -> Response:
        body = self._read_json()
        product_id = body.get("productId")
        url = body.get("url")
        if url:
            product_id = parse_product_url(url)
            if not product_id:
                raise BadRequest("Invalid Showroomprivé URL format")
        if not product_id:
            raise BadRequest("Product ID is required")

        try:
            snapshot = self.ctx.client.fetch_stock(str(product_id))
        except MonitorError as e:
            logger.error("Fetch error: %s", e)
            self._alert_if_unauthorized(e)
            raise

        sizes = [
            {"offerId": oid, "size": o.label, "stock": o.available, "price": o.price}
            for oid, o in snapshot.offers.items()
        ]
        return 200, {
            "productId": str(product_id),
            "productInfo": {
                "productId": str(product_id),
                "title": f"Produit {product_id}",
                "label": snapshot.label,
            },
            "sizes": sizes,
            "sizeUnique": snapshot.size_unique,
        }

    def _add_product(self) -> Response:
        body = self._read_json()
        product_id = body.get("productId")
        url = body.get("url")
        watched_sizes = body.get("watchedSizes")
        if url:
            product_id = parse_product_url(url) or product_id
        if not product_id or not isinstance(watched_sizes, list) or not watched_sizes:
            raise BadRequest("Product ID and watchedSizes array are required")

        with self.ctx.lifecycle_lock:
            try:
                result = self.ctx.monitor.watch(str(product_id), [str(s) for s in watched_sizes])
            except MonitorError as e:
                logger.error("Add product error: %s", e)
                raise
            self.ctx.scheduler.start()

        product = result.product
        size_mapping = {
            oid: {"size": info.size, "price": info.price}
            for oid, info in product.size_mapping.items()
        }
        self.ctx.history.record(product.product_id, product.title, product.label, size_mapping)

        return 200, {
            "success": True,
            "message": f"Now monitoring product {product.product_id}",
            "watchedSizes": [
                product.size_mapping[s].size if s in product.size_mapping else s
                for s in (str(s) for s in watched_sizes)
            ],
            "alreadyInStock": result.already_in_stock,
        }

    def _remove_product(self, key: str) -> Response:
        with self.ctx.lifecycle_lock:
            if key not in self.ctx.monitor:
                raise NotFound("Product not found")
            if self.ctx.monitor.unregister_product(key):
                self.ctx.scheduler.stop()
        return 200, {"success": True, "message": "Product removed"}

    def _reset_product(self, key: str) -> Response:
        try:
            self.ctx.monitor.reset_notifications(key)
        except NotFound:
            raise NotFound("Product not found") from None
        return 200, {"success": True, "message": "Notifications reset"}

    # ---- history ------------------------------------------------------------

    def _list_history(self) -> Response:
        history = [
            {
                "productId": e.product_id,
                "title": e.title,
                "label": e.label,
                "sizeMapping": e.size_mapping,
                "addedAt": e.added_at,
                "lastMonitored": e.last_monitored,
                "isCurrentlyMonitored": e.product_id in self.ctx.monitor,
            }
            for e in self.ctx.history.entries()
        ]
        return 200, {"history": history}

    def _clear_history(self) -> Response:
        self.ctx.history.clear()
        return 200, {"success": True, "message": "History cleared"}

    def _remove_history(self, product_id: str) -> Response:
        try:
            self.ctx.history.remove(product_id)
        except NotFound:
            raise NotFound("Item not found in history") from None
        return 200, {"success": True, "message": "Item removed from history"}

    # ---- config -------------------------------------------------------------

    def _update_headers(self) -> Response:
        body = self._read_json()
        changed = self.ctx.auth.update(
            headers=body.get("headers"),
            token=body.get("token"),
            client_num=body.get("clientNum"),
            crm=body.get("crm"),
        )
        for name in changed:
            logger.info("%s updated via API", name)
        self.ctx.notifier.reset_auth_expired()
        return 200, {"success": True, "message": "Config updated"}

    # ---- diagnostics --------------------------------------------------------

    def _test_stock(self) -> Response:
        body = self._read_json()
        product_id = body.get("productId")
        if not product_id:
            raise BadRequest("productId is required")
        snapshot = self.ctx.client.fetch_stock(str(product_id))
        data = {
            "label": snapshot.label,
            "sizeUnique": snapshot.size_unique,
            "offers": [
                {"offerId": oid, "available": o.available, "label": o.label, "price": o.price}
                for oid, o in snapshot.offers.items()
            ],
        }
        return 200, {"success": True, "data": data}

    def _test_add_to_cart(self) -> Response:
        body = self._read_json()
        product_id, size_id = body.get("productId"), body.get("sizeId")
        if not product_id or not size_id:
            raise BadRequest("productId and sizeId are required")
        result = self.ctx.client.add_to_cart(str(product_id), str(size_id))
        return 200, {
            "success": result.accepted,
            "result": {"success": result.accepted, "message": result.reason, "update": result.update},
        }

    def _health(self) -> Response:
        uptime = time.time() - self.ctx.started_at
        return 200, {
            "status": "alive",
            "uptime": _format_uptime(uptime),
            "uptimeSeconds": uptime,
            "monitoredProducts": len(self.ctx.monitor),
            "isMonitoring": self.ctx.scheduler.is_running,
            "hasAuth": self.ctx.auth.configured,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _ping(self) -> Response:
        return 200, "pong"

    def _index(self) -> Response:
        return 200, "Showroomprivé stock monitor - JSON API under /api, health check at /health"


class _ApiHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler, ctx: AppContext):
        super().__init__(address, handler)
        self.ctx = ctx


class ApiServer:
    """Runs the web API in a background thread or in the foreground."""

    def __init__(self, ctx: AppContext, host: str = "127.0.0.1", port: int = 3000):
        self.ctx = ctx
        self.host = host
        self.port = port
        self.server: Optional[_ApiHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        if self.server is None:
            return ""
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def _bind(self) -> _ApiHTTPServer:
        if self.server is None:
            self.server = _ApiHTTPServer((self.host, self.port), ApiHandler, self.ctx)
        return self.server

    def start(self) -> str:
        """Start serving in a daemon thread and return the base URL."""
        if self.server_thread is not None:
            return self.url
        try:
            server = self._bind()
        except OSError as e:
            logger.error("Failed to start API server on %s:%s: %s", self.host, self.port, e)
            return ""
        self.server_thread = threading.Thread(target=server.serve_forever, name="api-server", daemon=True)
        self.server_thread.start()
        logger.info("API server started at %s", self.url)
        return self.url

    def serve_forever(self) -> None:
        server = self._bind()
        logger.info("API server listening at %s", self.url)
        server.serve_forever()

    def stop(self) -> None:
        if self.server is not None:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            self.server_thread = None
            logger.info("API server stopped")


__all__ = ["AppContext", "ApiHandler", "ApiServer", "serialize_product"]
