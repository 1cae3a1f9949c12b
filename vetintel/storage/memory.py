from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from vetintel.logging import get_logger
from vetintel.storage.models import AuditEvent, RateLimitDecision, RateLimitRecord


class MemoryRateLimitStore:
    """In-process rate limit records for tests and single-process development.

    Records live in one dict guarded by a lock, so the read-increment-write of
    a hit is serialised within this process only. Multi-instance deployments
    must use ``RedisRateLimitStore``.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.records: Dict[Tuple[str, str], RateLimitRecord] = {}
        self._data_lock = threading.Lock()

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
        key = (user_id, endpoint)
        with self._data_lock:
            record = self.records.get(key)
            if record is None:
                record = RateLimitRecord.open_window(user_id, endpoint, now_ms, ip_address)
                self.records[key] = record
                return RateLimitDecision(True, capacity - 1, now_ms + window_ms, capacity)
            stored, decision = record.register_hit(now_ms, window_ms, capacity, ip_address)
            self.records[key] = stored
            return decision

    def get_record(self, user_id: str, endpoint: str) -> Optional[RateLimitRecord]:
        with self._data_lock:
            return self.records.get((user_id, endpoint))

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        return None


class MemoryAuditSink:
    """Append-only audit sink that keeps events in a list."""

    def __init__(self) -> None:
        self.events: List[AuditEvent] = []
        self._lock = threading.Lock()

    async def write(self, event: AuditEvent, *, access_token: Optional[str] = None) -> None:
        with self._lock:
            self.events.append(event)

    def actions(self) -> List[str]:
        with self._lock:
            return [event.action for event in self.events]

    async def close(self) -> None:
        return None
