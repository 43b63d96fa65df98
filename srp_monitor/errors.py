"""Exception types shared by the client, monitor, notifier and routes."""

from __future__ import annotations

from typing import Optional


class MonitorError(Exception):
    """Base class for every error raised by this package."""


class TransportError(MonitorError):
    """Network failure or timeout while talking to a remote endpoint."""


class Unauthorized(MonitorError):
    """Vendor credentials were rejected (HTTP 401/403 or an auth status message)."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class HttpError(MonitorError):
    """Vendor answered with a non-auth HTTP error status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"HTTP Error {status}: {body[:200]}")
        self.status = status
        self.body = body


class DecodeError(MonitorError):
    """Response body could not be decompressed or parsed."""


class VendorError(MonitorError):
    """Vendor returned HTTP 200 with a failure status in the payload."""


class NotFound(MonitorError):
    """Operation on a product that is not registered."""


class NotificationError(MonitorError):
    """Webhook delivery failed."""


__all__ = [
    "MonitorError",
    "TransportError",
    "Unauthorized",
    "HttpError",
    "DecodeError",
    "VendorError",
    "NotFound",
    "NotificationError",
]
