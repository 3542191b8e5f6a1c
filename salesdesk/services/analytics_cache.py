"""In-process TTL cache for per-user analytics payloads."""

import time
from typing import Any

import structlog

logger = structlog.get_logger()

CACHE_TTL_SECONDS = 5 * 60


class AnalyticsCache:
    """Time-stamped dashboard payloads keyed by user.

    Entries expire after ``ttl_seconds``; stale entries are replaced on the next
    write rather than evicted.
    """

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS):
        """Initialize cache.

        Args:
            ttl_seconds: Age after which an entry is no longer served
        """
        self.ttl_seconds = ttl_seconds

        # Store: key -> {"data", "timestamp", "userId"}
        self.entries: dict[str, dict[str, Any]] = {}

    @staticmethod
    def key_for(user_id: int) -> str:
        return f"analytics_{user_id}"

    def get(self, user_id: int, now: float | None = None) -> Any | None:
        """Cached payload for a user, or None when missing or expired."""
        entry = self.entries.get(self.key_for(user_id))
        if entry is None:
            return None

        current_time = time.time() if now is None else now
        if current_time - entry["timestamp"] >= self.ttl_seconds:
            return None

        logger.debug("analytics_cache_hit", user_id=user_id)
        return entry["data"]

    def set(self, user_id: int, data: Any, now: float | None = None) -> None:
        self.entries[self.key_for(user_id)] = {
            "data": data,
            "timestamp": time.time() if now is None else now,
            "userId": str(user_id),
        }

    def invalidate(self, user_id: int) -> None:
        self.entries.pop(self.key_for(user_id), None)

    def clear(self) -> None:
        self.entries.clear()


# Global cache instance
analytics_cache = AnalyticsCache()
