"""Helper utilities.

This module centralises common helper functions such as creating a
configured HTTP session, translating `requests` failures into this
package's error types and applying the retry policy to network calls.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import requests
from requests import Response
from tenacity import (Retrying, after_log, retry_if_exception_type,
                      stop_after_attempt, wait_fixed)

from .errors import DecodeError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_http_session() -> requests.Session:
    """Return a new HTTP session with sensible defaults.

    Caller is responsible for closing the session or letting it be
    garbage collected.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": "Mozilla/5.0 (compatible; SrpMonitor/1.0)",
            "Accept": "application/json, */*; q=0.01",
        }
    )
    return session


def send_request(session: requests.Session, method: str, url: str, **kwargs: Any) -> Response:
    """Issue a request and map `requests` exceptions onto our error types.

    HTTP error statuses are returned untouched; classifying them is up to
    the caller.
    """
    try:
        return session.request(method, url, **kwargs)
    except requests.exceptions.ContentDecodingError as e:
        raise DecodeError(f"Could not decode response body: {e}") from e
    except requests.Timeout as e:
        raise TransportError(f"Timed out: {method} {url}") from e
    except requests.RequestException as e:
        raise TransportError(f"{method} {url} failed: {e}") from e


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    attempts: int = 2,
    wait_seconds: float = 1.0,
    **kwargs: Any,
) -> T:
    """Call ``fn`` again on :class:`TransportError`, up to ``attempts`` times in total.

    Only meant for idempotent reads; anything else is re-raised on the
    first failure.
    """
    retryer = Retrying(
        reraise=True,
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type(TransportError),
        after=after_log(logger, logging.WARNING),
    )
    return retryer(fn, *args, **kwargs)


__all__ = ["get_http_session", "send_request", "call_with_retry"]
