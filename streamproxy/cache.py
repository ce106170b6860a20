import math
import threading
import time

from cachetools import TTLCache

# Seconds an entry stays valid. Fixed per deployment.
CACHE_TTL = 600


class ResponseCache:
    """In-memory store for rewritten playlists (str) and segment payloads (bytes).

    Keys are the exact target URL strings, with no normalization. Entries
    only leave the cache by TTL expiry or ``clear()``; there is no capacity
    bound. Expired entries are dropped lazily, on access or on ``stats()``.

    All operations take one lock, so a single instance can be shared by
    concurrently handled requests, whether they run on one event loop or
    in worker threads.
    """

    def __init__(self, ttl=CACHE_TTL, timer=time.monotonic):
        self.ttl = ttl
        self._cache = TTLCache(maxsize=math.inf, ttl=ttl, timer=timer)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str):
        """Return the stored str/bytes payload or None. Counts a hit or a miss."""
        with self._lock:
            value = self._cache.get(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def set(self, key: str, value):
        if not isinstance(value, (str, bytes)):
            raise TypeError(f"Cache values must be str or bytes, not {type(value).__name__}")
        with self._lock:
            self._cache[key] = value

    def clear(self):
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict:
        with self._lock:
            self._cache.expire()
            return {
                "hits": self._hits,
                "misses": self._misses,
                "keys": len(self._cache),
                "ksize": sum(len(k) for k in self._cache.keys()),
                "vsize": sum(len(v) for v in self._cache.values()),
            }

    def __len__(self):
        with self._lock:
            self._cache.expire()
            return len(self._cache)
