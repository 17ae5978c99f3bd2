"""Response Cache: TTL + LRU memoization of provider responses.

Entries are keyed by a fingerprint of ``(provider, workspace_id, normalized
request)``. Only fields that can change the model output take part in the
fingerprint: model, the ordered message list, temperature and max_tokens.

Streaming requests are never read or written, and responses without usage
accounting are never stored. The cache never raises: every failure degrades
to a miss.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from promptgate.gateway.types import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_SECONDS = 15 * 60


def normalize_request(request: LLMRequest) -> dict:
    """Fields of ``request`` that determine the provider output."""
    return {
        "model": request.model,
        "messages": [[m.role, m.content] for m in request.messages],
        # 1 and 1.0 must hash alike
        "temperature": None if request.temperature is None else float(request.temperature),
        "max_tokens": None if request.max_tokens is None else int(request.max_tokens),
    }


def make_cache_key(provider: str, request: LLMRequest, workspace_id: str) -> str:
    provider = getattr(provider, "value", provider)
    key_data = {
        "provider": provider,
        "workspace_id": workspace_id,
        "request": normalize_request(request),
    }
    canonical = json.dumps(key_data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"llm:{provider}:{digest}"


@dataclass
class CacheEntry:
    key: str
    value: LLMResponse
    workspace_id: str
    provider: str
    inserted_at: float
    last_accessed_at: float
    ttl: float
    size: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


class ResponseCache:
    """Capacity-bounded LRU cache with per-entry TTL.

    Usage:
        cache = ResponseCache(max_size=100, ttl=900)

        cached = cache.get("openai", request, workspace_id)
        if cached is None:
            response = await adapter.complete(request)
            cache.set("openai", request, workspace_id, response)
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max(1, int(max_size))
        self.ttl = float(ttl)
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def _is_cacheable_request(request: LLMRequest) -> bool:
        return not getattr(request, "stream", False)

    @staticmethod
    def _is_cacheable_response(response: LLMResponse | None) -> bool:
        return response is not None and response.usage is not None

    def get(self, provider: str, request: LLMRequest, workspace_id: str) -> LLMResponse | None:
        """Return a fresh cached response or None."""
        if not self._is_cacheable_request(request):
            return None

        try:
            key = make_cache_key(provider, request, workspace_id)
        except (TypeError, ValueError) as e:
            logger.warning("Cache key derivation failed, treating as miss: %s", e)
            return None

        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(now) or not self._is_cacheable_response(entry.value):
                del self._entries[key]
                self._misses += 1
                return None

            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            self._hits += 1
            return copy.deepcopy(entry.value)

    def set(self, provider: str, request: LLMRequest, workspace_id: str, response: LLMResponse) -> None:
        """Store ``response`` if both request and response are eligible."""
        if not self._is_cacheable_request(request) or not self._is_cacheable_response(response):
            return

        try:
            key = make_cache_key(provider, request, workspace_id)
            size = len(json.dumps(response.to_dict(), ensure_ascii=False).encode("utf-8"))
        except (TypeError, ValueError) as e:
            logger.warning("Cache write skipped: %s", e)
            return

        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._purge_expired_locked(now)
                while len(self._entries) >= self.max_size:
                    evicted_key, _ = self._entries.popitem(last=False)
                    self._evictions += 1
                    logger.debug("Evicted LRU cache entry %s", evicted_key)

            self._entries[key] = CacheEntry(
                key=key,
                value=copy.deepcopy(response),
                workspace_id=workspace_id,
                provider=getattr(provider, "value", provider),
                inserted_at=now,
                last_accessed_at=now,
                ttl=self.ttl,
                size=size,
            )
            self._entries.move_to_end(key)

    def _purge_expired_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def invalidate_workspace(self, workspace_id: str) -> int:
        """Drop every entry belonging to a workspace."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.workspace_id == workspace_id]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.info("Invalidated %d cache entries for workspace %s", len(keys), workspace_id)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "calculated_size": sum(e.size for e in self._entries.values()),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
