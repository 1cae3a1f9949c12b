"""Query validation and content screening.

The denylist is a cheap substring heuristic layered in front of the upstream
model's own safety settings. It is not a security boundary: it misses
paraphrases and also rejects innocent words that contain a listed term
("description" contains "script").
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Tuple

from vetintel.logging import get_logger
from vetintel.service.audit import AuditLogger
from vetintel.service.errors import BadRequestError, ProhibitedContentError
from vetintel.storage.models import Identity

logger = get_logger(__name__)

MAX_QUERY_LENGTH = 500
BLOCKED_KEYWORDS: Tuple[str, ...] = ("hack", "exploit", "injection", "script")
# Only this much of a rejected query is written to the audit trail
AUDIT_QUERY_FRAGMENT = 100
AUDIT_RESOURCE_TYPE = "ai_search"


def find_blocked_keyword(query: str, keywords: Iterable[str] = BLOCKED_KEYWORDS) -> Optional[str]:
    """Return the first denylisted term contained in ``query`` (case-insensitive)."""
    lowered = query.lower()
    for keyword in keywords:
        if keyword in lowered:
            return keyword
    return None


class QueryValidator:
    def __init__(
        self,
        audit: AuditLogger,
        *,
        max_length: int = MAX_QUERY_LENGTH,
        blocked_keywords: Iterable[str] = BLOCKED_KEYWORDS,
    ) -> None:
        self.audit = audit
        self.max_length = max_length
        self.blocked_keywords = tuple(k.lower() for k in blocked_keywords)

    async def validate(
        self,
        payload: Any,
        *,
        identity: Optional[Identity] = None,
        client_ip: str = "unknown",
    ) -> str:
        """Return the query from a decoded request body or raise a 400 error.

        A denylist hit is recorded as a ``suspicious_query`` audit event
        before ``ProhibitedContentError`` is raised.
        """
        query = payload.get("query") if isinstance(payload, dict) else None
        if not query or not isinstance(query, str):
            raise BadRequestError("Query is required and must be a string")

        if len(query) > self.max_length:
            raise BadRequestError(
                f"Query too long. Maximum {self.max_length} characters allowed.",
                detail={"length": len(query)},
            )

        keyword = find_blocked_keyword(query, self.blocked_keywords)
        if keyword:
            logger.warning(
                "suspicious_query",
                user_id=identity.user_id if identity else None,
                keyword=keyword,
                client_ip=client_ip,
            )
            await self.audit.record(
                "suspicious_query",
                AUDIT_RESOURCE_TYPE,
                details={"query": query[:AUDIT_QUERY_FRAGMENT], "ip": client_ip},
                identity=identity,
            )
            raise ProhibitedContentError("Query contains prohibited content")

        return query
