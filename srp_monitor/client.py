"""Showroomprivé mobile API client.

Talks to the private ``market.svc`` (stock per size) and ``cart.svc``
(add to cart) endpoints with the headers of the iOS app plus the
credentials held in :class:`~srp_monitor.config.AuthConfig`.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import requests
from requests.structures import CaseInsensitiveDict

from . import config
from .config import AuthConfig
from .errors import DecodeError, HttpError, Unauthorized, VendorError
from .utils import call_with_retry, get_http_session, send_request

logger = logging.getLogger(__name__)

# Headers sent by the iOS app. Credentials and the custom header bag are layered on top.
DEFAULT_HEADERS: Dict[str, str] = {
    "deviceversion": "5",
    "X-SRP-enable-hpsegment": "true",
    "country": "64",
    "User-Agent": "Showroom/25121601 CFNetwork/3860.300.31 Darwin/25.2.0",
    "bundle_identifier": "com.showroomprive.showroompriveiphone",
    "region": "10",
    "appversion": "14.50",
    "mecapromo": "true",
    "ab_list": '{"ab_product":"B","ab_home_ordo_predictive":"A","ab_enable_plp":false}',
    "osnumber": "iPhone",
    "deviceid": "2",
    "Accept-Language": "fr-FR,fr;q=0.9",
    "ab_home": "B",
    "darkmode": "dark",
    "osversion": "ios",
    "Accept": "*/*",
    "Connection": "keep-alive",
    "Accept-Encoding": "gzip, deflate",
    "langue": "0",
    "ab_test_flagship": (
        '{"mobile-hp-sale-picto":true,"mobile-classic-all-products":true,'
        '"mobile-hp-univers-bar-v4":true,"mobile-tlp-segment":"segment_d",'
        '"mobile-plp-segment":"segment_b","mobile-homepage-cards-2024":true}'
    ),
}

# Content encodings urllib3 decodes without optional extras.
_SUPPORTED_ENCODINGS = {"gzip", "x-gzip", "deflate", "identity"}

# Substrings of a vendor status message that point at expired credentials.
_AUTH_MARKERS = ("unauthorized", "token", "auth", "401", "403")

_PRODUCT_URL_RE = re.compile(r"/product/(\d+)")


@dataclass(frozen=True)
class Offer:
    """Stock of one size (offer) as reported by the vendor."""

    available: int
    label: str
    price: Decimal


@dataclass(frozen=True)
class StockSnapshot:
    """One poll of a product: offer id -> :class:`Offer`, in vendor order."""

    product_id: str
    offers: Mapping[str, Offer]
    label: Optional[str] = None
    size_unique: Optional[bool] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "offers", MappingProxyType(dict(self.offers)))


@dataclass(frozen=True)
class CartResult:
    accepted: bool
    reason: Optional[str] = None
    update: Optional[dict] = field(default=None, compare=False)


def parse_product_url(url: str) -> Optional[str]:
    """Return the numeric product id from ``…/product/<id>`` URLs, else None."""
    match = _PRODUCT_URL_RE.search(url or "")
    return match.group(1) if match else None


def _to_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _status_of(payload: dict) -> tuple[Any, str]:
    status = payload.get("status") or {}
    if not isinstance(status, dict):
        return None, ""
    return status.get("code"), str(status.get("message") or "")


def _looks_like_auth_failure(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _AUTH_MARKERS)


def build_snapshot(product_id: str, data: Mapping[str, Any]) -> StockSnapshot:
    """Build a :class:`StockSnapshot` from the ``data`` object of a quantity response.

    Response format::

        {"label": "...", "sizeUnique": false,
         "offers": [{"available": 3, "label": "L", "offerId": "5014052",
                     "price": 89.90, "productSku": "38450594"}]}
    """
    offers: Dict[str, Offer] = {}
    for raw in data.get("offers") or []:
        if not isinstance(raw, dict) or raw.get("offerId") in (None, ""):
            continue
        offers[str(raw["offerId"])] = Offer(
            available=_to_int(raw.get("available")),
            label=str(raw.get("label") or ""),
            price=_to_decimal(raw.get("price")),
        )
    return StockSnapshot(
        product_id=str(product_id),
        offers=offers,
        label=data.get("label"),
        size_unique=data.get("sizeUnique"),
    )


class VendorClient:
    """Authenticated access to the stock and cart endpoints."""

    def __init__(
        self,
        auth: AuthConfig,
        *,
        host: str = config.API_HOST,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        fetch_attempts: int = config.FETCH_ATTEMPTS,
        retry_wait_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.auth = auth
        self.base_url = f"https://{host}"
        self.timeout = timeout
        self.fetch_attempts = fetch_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self.session = session or get_http_session()

    def close(self) -> None:
        self.session.close()

    def _headers(self) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict(DEFAULT_HEADERS)
        headers.update(self.auth.auth_headers())
        return headers

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        """Send one request and return the decoded JSON payload.

        Raises Unauthorized on 401/403, DecodeError when the body cannot be
        decompressed or parsed, HttpError on any other status >= 400 and
        TransportError on network failures.
        """
        kwargs: Dict[str, Any] = {"headers": dict(self._headers()), "timeout": self.timeout}
        if body is not None:
            kwargs["json"] = body

        resp = send_request(self.session, method, self.base_url + path, **kwargs)

        if resp.status_code in (401, 403):
            raise Unauthorized(
                f"Unauthorized ({resp.status_code}) - Token expired or invalid",
                status=resp.status_code,
            )

        encoding = (resp.headers.get("Content-Encoding") or "").lower()
        unsupported = [
            token.strip() for token in encoding.split(",")
            if token.strip() and token.strip() not in _SUPPORTED_ENCODINGS
        ]
        if unsupported:
            raise DecodeError(f"Unsupported content encoding: {', '.join(unsupported)}")

        text = resp.content.decode("utf-8", errors="replace")
        if resp.status_code >= 400:
            raise HttpError(resp.status_code, text)

        try:
            payload = json.loads(text, parse_float=Decimal)
        except ValueError as e:
            raise DecodeError(f"Parse error: {e} - Raw: {text[:200]}") from e
        if not isinstance(payload, dict):
            raise DecodeError(f"Unexpected payload type {type(payload).__name__}")
        return payload

    def _fetch_stock_once(self, product_id: str) -> StockSnapshot:
        path = f"/market.svc/quantity/{product_id}?productid={product_id}"
        payload = self._request("GET", path)

        code, message = _status_of(payload)
        if code not in (1, "1"):
            message = message or "Failed to get stock"
            if _looks_like_auth_failure(message):
                raise Unauthorized(message)
            raise VendorError(message)

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise DecodeError("Stock response has no data object")
        return build_snapshot(product_id, data)

    def fetch_stock(self, product_id: str) -> StockSnapshot:
        """Return the current per-size stock of ``product_id``."""
        snapshot = call_with_retry(
            self._fetch_stock_once,
            str(product_id),
            attempts=self.fetch_attempts,
            wait_seconds=self.retry_wait_seconds,
        )
        logger.debug("Fetched %d offers for product %s", len(snapshot.offers), product_id)
        return snapshot

    def add_to_cart(self, product_id: str, offer_id: str) -> CartResult:
        """Add one unit of ``offer_id`` to the cart.

        Vendor rejections and HTTP error statuses come back as
        ``CartResult(accepted=False)``; only transport and decode failures
        raise.  The request is sent once and never retried.
        """
        body = {
            "add_cart_origin": 1,
            "updates": [
                {
                    "prod_id": str(product_id),
                    "quantity": 1,
                    "sized_id": str(offer_id),
                }
            ],
        }
        try:
            payload = self._request("POST", "/cart.svc/cart", body)
        except (Unauthorized, HttpError) as e:
            logger.warning("Cart add for %s/%s refused: %s", product_id, offer_id, e)
            return CartResult(accepted=False, reason=str(e))

        code, message = _status_of(payload)
        if code in (1, "1"):
            data = payload.get("data") or {}
            updates = data.get("updates") if isinstance(data, dict) else None
            update = updates[0] if isinstance(updates, list) and updates else None
            return CartResult(accepted=True, update=update)
        return CartResult(accepted=False, reason=message or "Add to cart failed")


__all__ = [
    "DEFAULT_HEADERS",
    "Offer",
    "StockSnapshot",
    "CartResult",
    "VendorClient",
    "build_snapshot",
    "parse_product_url",
]
