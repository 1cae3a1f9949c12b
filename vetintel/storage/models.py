from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: Optional[str] = None
    # Bearer token the identity was resolved from; used for per-user RPCs only
    access_token: Optional[str] = field(default=None, repr=False)


class UserRole(str, Enum):
    ADMIN = "admin"
    VETERINARIAN = "veterinarian"
    STUDENT = "student"
    UNVERIFIED = "unverified"


def can_access_vet_features(role: Optional[UserRole]) -> bool:
    """Only verified veterinarians and admins may use veterinary features."""
    return role in (UserRole.VETERINARIAN, UserRole.ADMIN)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time_ms: int
    limit: int


@dataclass
class RateLimitRecord:
    """Request accounting for one (user, endpoint) key.

    ``request_count`` only grows within a window; a new window is opened once
    ``window_start_ms + window_ms`` has passed and no block is active.
    """

    user_id: str
    endpoint: str
    window_start_ms: int
    request_count: int = 0
    blocked_until_ms: Optional[int] = None
    ip_address: Optional[str] = None

    def window_expired(self, now_ms: int, window_ms: int) -> bool:
        return self.window_start_ms + window_ms <= now_ms

    def is_blocked(self, now_ms: int) -> bool:
        return self.blocked_until_ms is not None and self.blocked_until_ms > now_ms

    @classmethod
    def open_window(
        cls, user_id: str, endpoint: str, now_ms: int, ip_address: Optional[str] = None
    ) -> "RateLimitRecord":
        return cls(
            user_id=user_id,
            endpoint=endpoint,
            window_start_ms=now_ms,
            request_count=1,
            ip_address=ip_address,
        )

    def register_hit(
        self,
        now_ms: int,
        window_ms: int,
        capacity: int,
        ip_address: Optional[str] = None,
    ) -> tuple["RateLimitRecord", RateLimitDecision]:
        """Apply one request to this record.

        Returns the record that should be stored for the key (``self`` or a
        freshly opened window) and the decision for the request. Callers must
        hold whatever per-key lock their store uses.
        """
        if self.is_blocked(now_ms):
            self.ip_address = ip_address or self.ip_address
            return self, RateLimitDecision(False, 0, self.blocked_until_ms, capacity)

        if self.window_expired(now_ms, window_ms):
            fresh = RateLimitRecord.open_window(self.user_id, self.endpoint, now_ms, ip_address)
            return fresh, RateLimitDecision(True, capacity - 1, now_ms + window_ms, capacity)

        reset_ms = self.window_start_ms + window_ms
        self.ip_address = ip_address or self.ip_address
        if self.request_count < capacity:
            self.request_count += 1
            return self, RateLimitDecision(
                True, capacity - self.request_count, reset_ms, capacity
            )

        self.blocked_until_ms = reset_ms
        return self, RateLimitDecision(False, 0, reset_ms, capacity)


@dataclass
class AuditEvent:
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Reference:
    number: int
    text: str


@dataclass
class FormattedAnswer:
    body: str
    citations: List[int] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    unresolved: List[int] = field(default_factory=list)
