"""
Showroomprivé stock monitor package.

This package contains modules for polling the Showroomprivé mobile API for
per-size stock, adding newly available sizes to the cart, notifying Discord
and serving a small JSON API to manage the watched products.  See README.md
for details.
"""

__all__ = [
    "client",
    "config",
    "errors",
    "history",
    "main",
    "monitor",
    "notifier",
    "scheduler",
    "server",
    "utils",
]
