"""
Memo for the provider discovery document (RealmConfig).
Concurrent misses on one cache share a single fetch; failures are not cached; optional TTL.
"""
import threading
import time
from typing import Callable

from oidc_session.models import RealmConfig


class RealmConfigCache:
    def __init__(self, ttl_seconds: float | None = None):
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._config: RealmConfig | None = None
        self._fetched_at = 0.0

    def _fresh(self) -> bool:
        if self._config is None:
            return False
        if self._ttl is None:
            return True
        return (time.monotonic() - self._fetched_at) < self._ttl

    def get(self, fetch: Callable[[], RealmConfig]) -> RealmConfig:
        if self._fresh():
            return self._config
        with self._lock:
            # Another thread may have filled the cache while we waited
            if self._fresh():
                return self._config
            config = fetch()
            self._config = config
            self._fetched_at = time.monotonic()
            return config

    def clear(self) -> None:
        with self._lock:
            self._config = None
            self._fetched_at = 0.0
