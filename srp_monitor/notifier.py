"""Discord webhook notifier.

Sends stock, cart and expired-credential alerts to a Discord channel via
webhook.  Delivery failures raise :class:`NotificationError`; callers log
them and move on, nothing is retried.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests

from . import config
from .client import Offer
from .errors import MonitorError, NotificationError
from .utils import get_http_session, send_request

logger = logging.getLogger(__name__)

COLOR_STOCK = 0x9C27B0
COLOR_CART = 0x4CAF50
COLOR_AUTH = 0xF44336


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _format_price(price) -> str:
    return f"{price}€"


def product_url(product_id: str) -> str:
    return config.PRODUCT_URL_TEMPLATE.format(product_id=product_id)


class DiscordNotifier:
    """Builds embeds and posts them to a single webhook.

    Also owns the "auth expired alert already sent" flag: the first
    :meth:`notify_auth_expired` of an expiry episode is delivered, later
    calls are no-ops until :meth:`reset_auth_expired`.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = config.DISCORD_WEBHOOK_URL,
        *,
        checkout_url: str = config.CHECKOUT_URL,
        reservation_minutes: int = config.CART_RESERVATION_MINUTES,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.webhook_url = webhook_url
        self.checkout_url = checkout_url
        self.reservation_minutes = reservation_minutes
        self.timeout = timeout
        self.session = session or get_http_session()
        self.clock = clock
        self._auth_alert_sent = False
        self._auth_lock = threading.Lock()

    # ---- delivery -----------------------------------------------------------

    def _post(self, payload: dict) -> bool:
        if not self.webhook_url:
            logger.error("Discord webhook URL is not configured. Cannot send notification.")
            return False
        try:
            resp = send_request(self.session, "POST", self.webhook_url, json=payload, timeout=self.timeout)
        except MonitorError as e:
            raise NotificationError(str(e)) from e
        if resp.status_code not in (200, 204):
            raise NotificationError(f"Discord error: {resp.status_code}")
        return True

    def _timestamp(self) -> str:
        return self.clock().astimezone(timezone.utc).isoformat()

    # ---- embeds -------------------------------------------------------------

    def build_stock_payload(self, title: str, product_id: str, offer_id: str, offer: Offer) -> dict:
        embed = {
            "title": "🚨 STOCK DISPONIBLE!",
            "color": COLOR_STOCK,
            "fields": [
                {"name": "👕 Produit", "value": f"**{title or 'Produit'}**", "inline": False},
                {"name": "📏 Taille", "value": f"**{offer.label or '?'}**", "inline": True},
                {"name": "📦 Quantité", "value": f"{offer.available} dispo", "inline": True},
                {"name": "💰 Prix", "value": _format_price(offer.price), "inline": True},
                {"name": "🔗 Produit", "value": f"[Voir le produit]({product_url(product_id)})", "inline": True},
                {"name": "🛒 Checkout", "value": f"[Aller au panier]({self.checkout_url})", "inline": True},
            ],
            "footer": {"text": f"Offer ID: {offer_id}"},
            "timestamp": self._timestamp(),
        }
        return {
            "content": "@everyone 🚨 **STOCK DISPONIBLE - AJOUTE VITE AU PANIER!**",
            "embeds": [embed],
        }

    def checkout_deadline(self) -> datetime:
        return self.clock() + timedelta(minutes=self.reservation_minutes)

    def build_cart_payload(self, title: str, product_id: str, offer_id: str, offer: Offer) -> dict:
        deadline = self.checkout_deadline().strftime("%d/%m/%Y %H:%M")
        embed = {
            "title": "🛒 ARTICLE AJOUTÉ AU PANIER!",
            "color": COLOR_CART,
            "fields": [
                {"name": "👕 Produit", "value": f"**{title or 'Produit'}**", "inline": False},
                {"name": "📏 Taille", "value": f"**{offer.label or '?'}**", "inline": True},
                {"name": "💰 Prix", "value": _format_price(offer.price), "inline": True},
                {"name": "⏰ CHECKOUT AVANT", "value": f"**{deadline}**", "inline": False},
                {"name": "🔗 Produit", "value": f"[Voir le produit]({product_url(product_id)})", "inline": True},
                {"name": "🛒 Checkout", "value": f"[Aller au panier]({self.checkout_url})", "inline": True},
            ],
            "footer": {"text": f"Offer ID: {offer_id}"},
            "timestamp": self._timestamp(),
        }
        return {
            "content": "@everyone 🛒 **AJOUTÉ AU PANIER - CHECKOUT MAINTENANT!**",
            "embeds": [embed],
        }

    def build_auth_payload(self, error_message: str) -> dict:
        embed = {
            "title": "⚠️ TOKEN EXPIRÉ",
            "color": COLOR_AUTH,
            "description": "Le token Showroomprivé a expiré. Le monitoring est en pause.",
            "fields": [
                {"name": "🔧 Action requise", "value": "Mettez à jour les headers via l'interface web", "inline": False},
                {"name": "❌ Erreur", "value": f"`{error_message}`", "inline": False},
            ],
            "footer": {"text": "Showroomprivé Monitor"},
            "timestamp": self._timestamp(),
        }
        return {
            "content": "@everyone ⚠️ **TOKEN EXPIRÉ - MISE À JOUR REQUISE!**",
            "embeds": [embed],
        }

    # ---- public API ---------------------------------------------------------

    def notify_stock_found(self, title: str, product_id: str, offer_id: str, offer: Offer) -> bool:
        logger.info("Sending stock notification for %s size %s (%s)", product_id, offer.label, offer_id)
        return self._post(self.build_stock_payload(title, product_id, offer_id, offer))

    def notify_cart_added(self, title: str, product_id: str, offer_id: str, offer: Offer) -> bool:
        logger.info("Sending cart notification for %s size %s (%s)", product_id, offer.label, offer_id)
        return self._post(self.build_cart_payload(title, product_id, offer_id, offer))

    def notify_auth_expired(self, error_message: str) -> bool:
        with self._auth_lock:
            if self._auth_alert_sent:
                return False
            self._auth_alert_sent = True
        logger.warning("Token expired - sending Discord notification")
        return self._post(self.build_auth_payload(error_message))

    def reset_auth_expired(self) -> None:
        with self._auth_lock:
            self._auth_alert_sent = False

    @property
    def auth_alert_sent(self) -> bool:
        with self._auth_lock:
            return self._auth_alert_sent

    def close(self) -> None:
        self.session.close()


__all__ = ["DiscordNotifier", "product_url"]
