"""In-process rate limiters built on the ``limits`` library.

Each limiter owns a ``memory://`` storage so its counters can be cleared on
their own. Limiter keys come from the socket peer address; forwarded headers
are only trusted when uvicorn runs with ``--proxy-headers`` and a
``--forwarded-allow-ips`` list, which rewrites ``request.client`` itself.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Literal

from fastapi import Request
from limits import RateLimitItemPerSecond, strategies
from limits.storage import MemoryStorage
from slowapi.util import get_remote_address

from polihub.core.errors import RateLimited
from polihub.core.metrics import increment_counter
from polihub.core.utils import env_int

logger = logging.getLogger(__name__)

Scope = Literal["ip", "identity"]


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: int
    max_requests: int
    scope: Scope = "ip"


class FixedWindowRateLimiter:
    """Named fixed-window limit; a rejected hit raises RateLimited with Retry-After."""

    def __init__(self, name: str, config: RateLimitConfig, message: str = "Too many requests. Try again later."):
        if config.window_seconds <= 0 or config.max_requests <= 0:
            raise ValueError("Rate limit window and max must be positive")
        self.name = name
        self.config = config
        self.message = message
        self.item = RateLimitItemPerSecond(config.max_requests, config.window_seconds, namespace=name)
        self.storage = MemoryStorage()
        self._strategy = strategies.FixedWindowRateLimiter(self.storage)

    def hit(self, key: str) -> int:
        """Count one request for key; returns the remaining quota or raises RateLimited."""
        allowed = self._strategy.hit(self.item, key)
        stats = self._strategy.get_window_stats(self.item, key)
        if allowed:
            return int(stats.remaining)

        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        increment_counter("rate_limited_total", limiter=self.name)
        logger.warning("rate_limited limiter=%s key=%s retry_after=%s", self.name, key, retry_after)
        raise RateLimited(retry_after, self.message)

    def reset(self) -> None:
        self.storage.reset()


auth_limiter = FixedWindowRateLimiter(
    "auth",
    RateLimitConfig(
        window_seconds=env_int("AUTH_RATE_WINDOW_SECONDS", 900),
        max_requests=env_int("AUTH_RATE_LIMIT", 5),
        scope="ip",
    ),
    message="Too many authentication attempts, please try again later.",
)
api_limiter = FixedWindowRateLimiter(
    "api",
    RateLimitConfig(
        window_seconds=env_int("API_RATE_WINDOW_SECONDS", 900),
        max_requests=env_int("API_RATE_LIMIT", 100),
        scope="ip",
    ),
)
post_limiter = FixedWindowRateLimiter(
    "posts",
    RateLimitConfig(
        window_seconds=env_int("POST_RATE_WINDOW_SECONDS", 900),
        max_requests=env_int("POST_RATE_LIMIT", 20),
        scope="identity",
    ),
    message="Posting too fast, please slow down.",
)
throttled_post_limiter = FixedWindowRateLimiter(
    "posts_throttled",
    RateLimitConfig(
        window_seconds=env_int("POST_RATE_WINDOW_SECONDS", 900),
        max_requests=env_int("POST_RATE_LIMIT_THROTTLED", 3),
        scope="identity",
    ),
    message="Posting is limited for this account, please try again later.",
)

ALL_LIMITERS = (auth_limiter, api_limiter, post_limiter, throttled_post_limiter)


def request_key(request: Request) -> str:
    return get_remote_address(request)


def limit_by_ip(limiter: FixedWindowRateLimiter):
    def _dependency(request: Request) -> None:
        limiter.hit(request_key(request))

    return _dependency


def reset_rate_limiters() -> None:
    for limiter in ALL_LIMITERS:
        limiter.reset()
