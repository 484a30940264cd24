"""Rate limiting for plugin calls to external services.

Limits are per external service, not per plugin: every caller that talks to
the same service key shares one token bucket.
"""

import asyncio
import time

import structlog

log = structlog.get_logger(__name__)


class RateLimiter:
    """Token bucket rate limiter.

    ``acquire()`` waits until a token is available instead of rejecting the
    caller.
    """

    def __init__(self, rate: float, burst: int | None = None) -> None:
        """Initialize rate limiter.

        Args:
            rate: Sustained requests per second.
            burst: Bucket capacity. Defaults to ``max(1, int(rate))``.
        """
        if rate <= 0:
            msg = "rate must be positive"
            raise ValueError(msg)
        self._rate = rate
        self._burst = burst if burst is not None else max(1, int(rate))
        self._tokens = float(self._burst)
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_update
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._last_update = now

    async def acquire(self) -> None:
        """Take a token, sleeping until one is available.

        The lock is held while waiting so callers are served in arrival order.
        """
        async with self._lock:
            self._refill(time.monotonic())
            if self._tokens < 1:
                wait = (1 - self._tokens) / self._rate
                log.debug("plugin.ratelimit.waiting", wait_seconds=round(wait, 3))
                await asyncio.sleep(wait)
                self._refill(time.monotonic())
            self._tokens -= 1


class RateLimiterRegistry:
    """Shared limiters keyed by external service.

    The first caller for a key fixes its rate; later callers get the same
    limiter regardless of the rate they ask for.
    """

    def __init__(self) -> None:
        self._limiters: dict[str, RateLimiter] = {}

    def get(self, service: str, rate: float, burst: int | None = None) -> RateLimiter:
        limiter = self._limiters.get(service)
        if limiter is None:
            limiter = RateLimiter(rate, burst)
            self._limiters[service] = limiter
            log.debug("plugin.ratelimit.created", service=service, rate=rate)
        return limiter

    def __contains__(self, service: object) -> bool:
        return service in self._limiters

    def __len__(self) -> int:
        return len(self._limiters)
