"""Tests for DiscordNotifier payloads, delivery and the one-shot auth alert."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from srp_monitor.client import Offer
from srp_monitor.errors import NotificationError
from srp_monitor.notifier import DiscordNotifier

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)
OFFER = Offer(available=2, label="M", price=Decimal("19.90"))


def _notifier(status=204, side_effect=None, webhook="https://discord.test/api/webhooks/1/abc"):
    session = MagicMock(spec=requests.Session)
    if side_effect is not None:
        session.request.side_effect = side_effect
    else:
        resp = requests.Response()
        resp.status_code = status
        session.request.return_value = resp
    notifier = DiscordNotifier(webhook, session=session, clock=lambda: NOW, reservation_minutes=15)
    return notifier, session


def _fields(payload):
    return {f["name"]: f["value"] for f in payload["embeds"][0]["fields"]}


def test_cart_payload_has_deadline_and_links():
    notifier, _ = _notifier()

    payload = notifier.build_cart_payload("Produit 1", "38450594", "5014052", OFFER)

    fields = _fields(payload)
    assert fields["⏰ CHECKOUT AVANT"] == "**14/03/2026 09:45**"
    assert fields["💰 Prix"] == "19.90€"
    assert "https://www.showroomprive.com/link/product/38450594" in fields["🔗 Produit"]
    assert payload["embeds"][0]["footer"] == {"text": "Offer ID: 5014052"}
    assert payload["embeds"][0]["timestamp"] == NOW.isoformat()


def test_stock_payload_shows_quantity():
    notifier, _ = _notifier()

    fields = _fields(notifier.build_stock_payload("Produit 1", "1", "5014052", OFFER))

    assert fields["📦 Quantité"] == "2 dispo"
    assert fields["📏 Taille"] == "**M**"


def test_notify_posts_json_to_webhook():
    notifier, session = _notifier()

    assert notifier.notify_cart_added("Produit 1", "1", "9", OFFER) is True

    method, url = session.request.call_args.args
    assert method == "POST"
    assert url == "https://discord.test/api/webhooks/1/abc"
    assert session.request.call_args.kwargs["json"]["embeds"][0]["title"] == "🛒 ARTICLE AJOUTÉ AU PANIER!"


def test_non_success_status_raises():
    notifier, _ = _notifier(status=429)

    with pytest.raises(NotificationError):
        notifier.notify_stock_found("Produit 1", "1", "9", OFFER)


def test_transport_failure_raises_without_retry():
    notifier, session = _notifier(side_effect=requests.ConnectionError("down"))

    with pytest.raises(NotificationError):
        notifier.notify_stock_found("Produit 1", "1", "9", OFFER)
    assert session.request.call_count == 1


def test_undecodable_webhook_response_raises_notification_error():
    notifier, _ = _notifier(side_effect=requests.exceptions.ContentDecodingError("bad gzip"))

    with pytest.raises(NotificationError):
        notifier.notify_cart_added("Produit 1", "1", "9", OFFER)


def test_missing_webhook_is_not_an_error():
    notifier, session = _notifier(webhook=None)

    assert notifier.notify_stock_found("Produit 1", "1", "9", OFFER) is False
    session.request.assert_not_called()


def test_auth_expired_is_sent_once_until_reset():
    notifier, session = _notifier()

    assert notifier.notify_auth_expired("Unauthorized (401)") is True
    assert notifier.notify_auth_expired("Unauthorized (401)") is False
    assert session.request.call_count == 1
    assert notifier.auth_alert_sent is True

    notifier.reset_auth_expired()
    assert notifier.notify_auth_expired("Unauthorized (403)") is True
    assert session.request.call_count == 2


def test_auth_flag_stays_set_when_delivery_fails():
    notifier, session = _notifier(status=500)

    with pytest.raises(NotificationError):
        notifier.notify_auth_expired("Unauthorized (401)")
    assert notifier.notify_auth_expired("Unauthorized (401)") is False
    assert session.request.call_count == 1
