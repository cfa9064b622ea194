"""In-memory response cache keyed by normalized-query fingerprint, with TTL and LRU eviction."""

from __future__ import annotations

import hashlib
import re
import threading
import time
import unicodedata
from collections import OrderedDict
from collections.abc import Callable

from llm_reliability.models.domain import CacheEntry, OrchestrationResult
from llm_reliability.observability.logger import get_logger

logger = get_logger("response_cache")


def normalize_query(text: str) -> str:
    text = unicodedata.normalize("NFKC", text).lower()
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def fingerprint(text: str, context_level: str = "plain") -> str:
    payload = f"{normalize_query(text)}|{context_level}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResponseCache:
    """Concurrent map of fingerprint -> CacheEntry.

    Writes are last-writer-wins; a racing miss only costs a duplicate provider
    call. Entries flagged ``requires_revalidation`` are treated as misses.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_s
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> OrchestrationResult | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self.misses += 1
                logger.debug("cache_expired", fingerprint=key[:12])
                return None
            if entry.requires_revalidation:
                self.misses += 1
                logger.info("cache_revalidation_required", fingerprint=key[:12])
                return None
            entry.hit_count += 1
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.response

    def put(
        self, key: str, response: OrchestrationResult, pending_validation: bool = False
    ) -> None:
        """Store a response. Pending entries are not served until ``mark_validated``."""
        with self._lock:
            self._entries[key] = CacheEntry(
                fingerprint=key,
                response=response,
                created_at=self._clock(),
                ttl=self._ttl,
                requires_revalidation=pending_validation,
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("cache_evicted", fingerprint=evicted[:12])

    def require_revalidation(self, key: str) -> None:
        """Stop serving an entry until a fresh response replaces it."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.requires_revalidation = True

    def mark_validated(self, key: str, response: OrchestrationResult) -> bool:
        """Clear the revalidation flag if the entry still holds ``response``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.response is not response:
                return False
            entry.requires_revalidation = False
            return True

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info("cache_invalidated", fingerprint=key[:12])
        return removed

    def entry(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)
