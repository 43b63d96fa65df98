"""In-memory history of registered products (lost on restart)."""

from __future__ import annotations

import datetime as _dt
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

from .errors import NotFound


@dataclass(frozen=True)
class HistoryEntry:
    product_id: str
    title: str
    label: Optional[str]
    size_mapping: Mapping
    added_at: str
    last_monitored: str


def _utcnow() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


class ProductHistory:
    def __init__(self, clock: Callable[[], str] = _utcnow) -> None:
        self._clock = clock
        self._entries: Dict[str, HistoryEntry] = {}
        self._lock = threading.Lock()

    def record(self, product_id: str, title: str, label: Optional[str], size_mapping: Mapping) -> HistoryEntry:
        now = self._clock()
        entry = HistoryEntry(
            product_id=str(product_id),
            title=title or f"Produit {product_id}",
            label=label,
            size_mapping=dict(size_mapping),
            added_at=now,
            last_monitored=now,
        )
        with self._lock:
            self._entries[entry.product_id] = entry
        return entry

    def entries(self) -> List[HistoryEntry]:
        """Most recently monitored first."""
        with self._lock:
            items = list(self._entries.values())
        return sorted(items, key=lambda e: e.last_monitored, reverse=True)

    def remove(self, product_id: str) -> None:
        with self._lock:
            if product_id not in self._entries:
                raise NotFound(f"Product {product_id} is not in history")
            del self._entries[product_id]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["HistoryEntry", "ProductHistory"]
