from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

from vetintel.logging import get_logger
from vetintel.storage.models import RateLimitDecision

logger = get_logger(__name__)

DEFAULT_ENDPOINT = "vet-search"
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_REQUESTS = 10


class RateLimitStore(Protocol):
    async def hit(
        self,
        user_id: str,
        endpoint: str,
        *,
        now_ms: int,
        window_ms: int,
        capacity: int,
        ip_address: Optional[str] = None,
    ) -> RateLimitDecision:
        ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Per-user fixed-window limiter with a block period on overflow.

    States per (user, endpoint): no record, active window, blocked until the
    window's end. The store applies each hit atomically. If the store cannot
    be reached the limiter fails open and admits the request.
    """

    def __init__(
        self,
        store: RateLimitStore,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if window_seconds <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                endpoint=endpoint,
                window_seconds=window_seconds,
                message="Invalid rate limit window_seconds; defaulting to 60 seconds",
            )
            window_seconds = DEFAULT_WINDOW_SECONDS
        self.store = store
        self.endpoint = endpoint
        self.max_requests = max_requests
        self.window_ms = window_seconds * 1000
        self.clock = clock

    async def check(self, user_id: str, *, client_ip: Optional[str] = None) -> RateLimitDecision:
        now_ms = self.clock()
        if self.max_requests <= 0:
            return RateLimitDecision(True, self.max_requests, now_ms, self.max_requests)
        try:
            decision = await self.store.hit(
                user_id,
                self.endpoint,
                now_ms=now_ms,
                window_ms=self.window_ms,
                capacity=self.max_requests,
                ip_address=client_ip,
            )
        except Exception as exc:
            # Fail open
            logger.warning(
                "rate_limit_store_unavailable",
                user_id=user_id,
                endpoint=self.endpoint,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return RateLimitDecision(True, self.max_requests, now_ms, self.max_requests)

        if not decision.allowed:
            logger.info(
                "rate_limit_exceeded",
                user_id=user_id,
                endpoint=self.endpoint,
                reset_time_ms=decision.reset_time_ms,
            )
        return decision
