"""Configuration loader.

Reads environment variables and `.env` to configure the service.  Vendor
credentials live in an :class:`AuthConfig` instance because the web API can
replace them while the monitor is running.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


# ---- Discord -----------------------------------------------------------------

# Discord webhook URL. Notifications are only logged when unset.
DISCORD_WEBHOOK_URL: Optional[str] = _get_env("DISCORD_WEBHOOK") or _get_env("DISCORD_WEBHOOK_URL")

# ---- Vendor API --------------------------------------------------------------

API_HOST: str = _get_env("SRP_API_HOST", "mtandao.showroomprive.com")
PRODUCT_URL_TEMPLATE: str = "https://www.showroomprive.com/link/product/{product_id}"
CHECKOUT_URL: str = _get_env("SRP_CHECKOUT_URL", "https://www.showroomprive.com/checkout/cart")

# Raw header block copied from the mobile app, one "Name: value" per line.
SRP_HEADERS: str = _get_env("SRP_HEADERS", "") or ""
SRP_TOKEN: str = _get_env("SRP_TOKEN", "") or ""
SRP_CLIENT_NUM: str = _get_env("SRP_CLIENT_NUM", "") or ""
SRP_CRM: str = _get_env("SRP_CRM", "") or ""

# Per-request timeout; an expired timeout counts as a transport failure.
REQUEST_TIMEOUT_SECONDS: float = _parse_float(_get_env("REQUEST_TIMEOUT_SECONDS", "15"), 15.0)

# Attempts for the stock GET on connection errors/timeouts (cart adds are never retried).
FETCH_ATTEMPTS: int = _parse_int(_get_env("FETCH_ATTEMPTS", "2"), 2)

# ---- Monitoring --------------------------------------------------------------

CHECK_INTERVAL_SECONDS: int = _parse_int(_get_env("CHECK_INTERVAL_SECONDS", "60"), 60)

# How long the vendor holds a cart line before checkout must complete.
CART_RESERVATION_MINUTES: int = _parse_int(_get_env("CART_RESERVATION_MINUTES", "15"), 15)

# ---- Web API -----------------------------------------------------------------

HOST: str = _get_env("HOST", "0.0.0.0")
PORT: int = _parse_int(_get_env("PORT", "3000"), 3000)

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")


# ---- Credentials -------------------------------------------------------------

_DROPPED_HEADERS = ("host", "content-length")


def parse_headers(raw: Optional[str]) -> Dict[str, str]:
    """Parse a pasted header block into a dict of lower-cased names.

    Lines without a colon, request/status lines (``http...``), ``host`` and
    ``content-length`` are ignored, as are empty names or values.
    """
    if not raw:
        return {}

    headers: Dict[str, str] = {}
    for line in raw.split("\n"):
        name, sep, value = line.partition(":")
        if not sep or not name:
            continue
        name = name.strip().lower()
        value = value.strip()
        if not name or not value:
            continue
        if name.startswith("http") or name in _DROPPED_HEADERS:
            continue
        headers[name] = value
    return headers


@dataclass
class AuthConfig:
    """Vendor credentials, replaceable at runtime from the web API."""

    custom_headers: Dict[str, str] = field(default_factory=dict)
    token: str = ""
    client_num: str = ""
    crm: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def from_env(cls) -> "AuthConfig":
        return cls(
            custom_headers=parse_headers(SRP_HEADERS),
            token=SRP_TOKEN,
            client_num=SRP_CLIENT_NUM,
            crm=SRP_CRM,
        )

    def update(
        self,
        *,
        headers: Optional[str] = None,
        token: Optional[str] = None,
        client_num: Optional[str] = None,
        crm: Optional[str] = None,
    ) -> list[str]:
        """Replace the supplied fields; empty values leave the field as is.

        Returns the names of the fields that changed.
        """
        changed: list[str] = []
        with self._lock:
            if headers:
                self.custom_headers = parse_headers(headers)
                changed.append("headers")
            if token:
                self.token = token
                changed.append("token")
            if client_num:
                self.client_num = client_num
                changed.append("client_num")
            if crm:
                self.crm = crm
                changed.append("crm")
        return changed

    def auth_headers(self) -> Dict[str, str]:
        """Return discrete credentials followed by the custom header bag."""
        with self._lock:
            headers: Dict[str, str] = {}
            if self.token:
                headers["token"] = self.token
            if self.client_num:
                headers["client_num"] = self.client_num
            if self.crm:
                headers["crm"] = self.crm
            headers.update(self.custom_headers)
            return headers

    @property
    def configured(self) -> bool:
        with self._lock:
            return bool(self.token or self.custom_headers)


# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate configuration values that would make the service unusable."""
    if CHECK_INTERVAL_SECONDS <= 0:
        raise RuntimeError("CHECK_INTERVAL_SECONDS must be a positive number of seconds.")
    if REQUEST_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be positive.")
    if FETCH_ATTEMPTS < 1:
        raise RuntimeError("FETCH_ATTEMPTS must be at least 1.")


__all__ = [
    # Discord
    "DISCORD_WEBHOOK_URL",
    # Vendor
    "API_HOST",
    "PRODUCT_URL_TEMPLATE",
    "CHECKOUT_URL",
    "SRP_HEADERS",
    "SRP_TOKEN",
    "SRP_CLIENT_NUM",
    "SRP_CRM",
    "REQUEST_TIMEOUT_SECONDS",
    "FETCH_ATTEMPTS",
    # Monitoring
    "CHECK_INTERVAL_SECONDS",
    "CART_RESERVATION_MINUTES",
    # Web API
    "HOST",
    "PORT",
    "LOG_LEVEL",
    # Helpers
    "parse_headers",
    "AuthConfig",
    "validate",
]
