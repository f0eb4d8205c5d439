from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class CatalogDocument:
    filename: str
    content: bytes


class CatalogCache:
    """Rendered catalogs per merchant, kept for ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[int, tuple[float, CatalogDocument]] = {}
        self._lock = threading.Lock()

    def get(self, merchant_id: int) -> CatalogDocument | None:
        with self._lock:
            entry = self._entries.get(merchant_id)
            if entry is None:
                return None
            expires_at, document = entry
            if self._clock() >= expires_at:
                del self._entries[merchant_id]
                return None
            return document

    def put(self, merchant_id: int, document: CatalogDocument) -> None:
        with self._lock:
            self._entries[merchant_id] = (self._clock() + self.ttl_seconds, document)

    def invalidate(self, merchant_id: int | None = None) -> None:
        with self._lock:
            if merchant_id is None:
                self._entries.clear()
            else:
                self._entries.pop(merchant_id, None)
