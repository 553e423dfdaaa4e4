import hashlib
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Union


def cache_key(namespace: str, payload: Union[str, bytes]) -> str:
    """SHA-256 cache key for a payload, scoped by namespace"""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return f"{namespace}:{hashlib.sha256(payload).hexdigest()}"


class ResultCache:
    """Thread-safe LRU cache with TTL for parse results"""

    def __init__(self, max_size: int = 1000, ttl: int = 300):
        """
        Args:
            max_size: Maximum number of items in cache (0 disables caching)
            ttl: Time to live in seconds (default: 5 minutes)
        """
        self.max_size = max_size
        self.ttl = ttl
        self.items: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self._cleanup_counter = 0

    def get(self, key: str) -> Optional[Any]:
        """Get item from cache, return None if not found or expired"""
        with self.lock:
            item = self.items.get(key)
            if item is None:
                self.misses += 1
                return None

            if time.time() - item["timestamp"] > self.ttl:
                del self.items[key]
                self.misses += 1
                return None

            item["timestamp"] = time.time()
            self.items.move_to_end(key)
            self.hits += 1
            return item["value"]

    def set(self, key: str, value: Any):
        """Set item in cache, evicting LRU if necessary"""
        if self.max_size <= 0:
            return

        with self.lock:
            # Cleanup every 100 operations
            self._cleanup_counter += 1
            if self._cleanup_counter >= 100:
                self._remove_expired()
                self._cleanup_counter = 0

            if key in self.items:
                self.items.move_to_end(key)
            elif len(self.items) >= self.max_size:
                self.items.popitem(last=False)

            self.items[key] = {"value": value, "timestamp": time.time()}

    def _remove_expired(self) -> int:
        current_time = time.time()
        expired_keys = [
            k for k, v in self.items.items() if current_time - v["timestamp"] > self.ttl
        ]
        for key in expired_keys:
            del self.items[key]
        return len(expired_keys)

    def cleanup_expired(self) -> int:
        """Manually trigger cleanup and return count of removed items"""
        with self.lock:
            return self._remove_expired()

    def clear(self):
        with self.lock:
            self.items.clear()

    def size(self) -> int:
        with self.lock:
            return len(self.items)

    def stats(self) -> Dict[str, Any]:
        with self.lock:
            total_requests = self.hits + self.misses
            return {
                "size": len(self.items),
                "max_size": self.max_size,
                "ttl": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
                "total_requests": total_requests,
                "hit_ratio": self.hits / max(total_requests, 1),
            }
