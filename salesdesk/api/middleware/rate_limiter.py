"""Rate limiting for authentication endpoints."""

import time
from collections import defaultdict

from fastapi import HTTPException, Request, status


class RateLimiter:
    """Simple in-memory rate limiter.

    Implements token bucket algorithm keyed by client identifier.
    """

    def __init__(
        self,
        requests_per_minute: int = 100,
        burst_size: int = 100,
        cleanup_interval: int = 60,
    ):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Sustained requests per minute per client
            burst_size: Maximum burst requests allowed
            cleanup_interval: Interval (seconds) to cleanup old entries
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.cleanup_interval = cleanup_interval

        # Store: client_id -> (tokens, last_update, request_count)
        self.buckets: dict[str, tuple[float, float, int]] = defaultdict(
            lambda: (burst_size, time.time(), 0)
        )
        self.last_cleanup = time.time()

    def _refill_tokens(self, client_id: str) -> float:
        """Refill tokens for a client based on time elapsed.

        Args:
            client_id: Client identifier

        Returns:
            Current token count
        """
        tokens, last_update, count = self.buckets[client_id]
        current_time = time.time()

        time_elapsed = current_time - last_update
        tokens_to_add = time_elapsed * (self.requests_per_minute / 60.0)

        new_tokens = min(tokens + tokens_to_add, self.burst_size)
        self.buckets[client_id] = (new_tokens, current_time, count)

        return new_tokens

    def _retry_after(self, tokens: float) -> int:
        """Seconds until one token is available again."""
        missing = max(0.0, 1.0 - tokens)
        return max(1, int(missing * 60 / self.requests_per_minute + 0.999))

    async def check_rate_limit(self, client_id: str) -> None:
        """Check if a client has exceeded the rate limit.

        Args:
            client_id: Client identifier

        Raises:
            HTTPException: 429 if rate limit exceeded
        """
        current_time = time.time()
        if current_time - self.last_cleanup > self.cleanup_interval:
            self._cleanup_old_entries()
            self.last_cleanup = current_time

        tokens = self._refill_tokens(client_id)

        if tokens < 1.0:
            retry_after = self._retry_after(tokens)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "Too many requests",
                    "message": "Please try again later",
                    "retryAfter": retry_after,
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Remaining": "0",
                },
            )

        tokens, last_update, count = self.buckets[client_id]
        self.buckets[client_id] = (tokens - 1.0, last_update, count + 1)

    def _cleanup_old_entries(self) -> None:
        """Clean up old entries to prevent memory growth."""
        current_time = time.time()
        cutoff_time = current_time - (self.cleanup_interval * 2)

        to_remove = [
            client_id
            for client_id, (_, last_update, _) in self.buckets.items()
            if last_update < cutoff_time
        ]

        for client_id in to_remove:
            del self.buckets[client_id]

    def get_client_stats(self, client_id: str) -> dict:
        """Get rate limit statistics for a client.

        Args:
            client_id: Client identifier

        Returns:
            Dict with tokens available, total requests, etc.
        """
        if client_id not in self.buckets:
            return {
                "tokens_available": self.burst_size,
                "requests_remaining": self.burst_size,
                "total_requests": 0,
            }

        tokens = self._refill_tokens(client_id)
        _, _, count = self.buckets[client_id]

        return {
            "tokens_available": int(tokens),
            "requests_remaining": int(tokens),
            "total_requests": count,
            "limit_per_minute": self.requests_per_minute,
        }

    def reset(self) -> None:
        """Forget all clients."""
        self.buckets.clear()


def get_client_ip(request: Request) -> str:
    """Resolve the caller address, honouring reverse proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("x-real-ip", "x-client-ip"):
        value = request.headers.get(header)
        if value:
            return value
    return request.client.host if request.client else "127.0.0.1"


# Limiter shared by the sign-in endpoint
auth_rate_limiter = RateLimiter()


async def check_auth_rate_limit(request: Request) -> None:
    """FastAPI dependency rate limiting authentication attempts per client IP.

    Example:
        @router.post("/signin", dependencies=[Depends(check_auth_rate_limit)])
        async def signin(...):
            ...
    """
    await auth_rate_limiter.check_rate_limit(get_client_ip(request))
