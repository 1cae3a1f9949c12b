from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from vetintel.logging import get_logger
from vetintel.service.audit import AuditLogger
from vetintel.service.auth import CredentialVerifier
from vetintel.service.citations import extract_citations
from vetintel.service.errors import (
    BadRequestError,
    ConfigurationError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from vetintel.service.gemini import GeminiClient
from vetintel.service.prompts import compose_prompt
from vetintel.service.rate_limit import RateLimiter
from vetintel.service.validation import AUDIT_RESOURCE_TYPE, QueryValidator

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueryResult:
    response: str
    remaining: int
    reset_time_ms: int


class QueryGateway:
    """One authenticated, rate-limited question in, one answer out.

    Stages run in a fixed order and any of them may short-circuit with a
    ``ServiceError``: configuration, credentials, body validation, rate limit,
    prompt composition, upstream call. Audit events are written along the way
    and never fail the request.
    """

    def __init__(
        self,
        *,
        verifier: CredentialVerifier,
        validator: QueryValidator,
        limiter: RateLimiter,
        upstream: GeminiClient,
        audit: AuditLogger,
    ) -> None:
        self.verifier = verifier
        self.validator = validator
        self.limiter = limiter
        self.upstream = upstream
        self.audit = audit

    async def handle(
        self,
        authorization: Optional[str],
        body: bytes,
        *,
        client_ip: str = "unknown",
    ) -> QueryResult:
        if not self.upstream.is_configured:
            logger.error("gemini_api_key_missing")
            raise ConfigurationError("API configuration error")

        identity = await self.verifier.verify(authorization)

        try:
            payload = json.loads(body) if body else None
        except (ValueError, UnicodeDecodeError) as exc:
            raise BadRequestError("Invalid JSON body") from exc
        query = await self.validator.validate(payload, identity=identity, client_ip=client_ip)

        decision = await self.limiter.check(identity.user_id, client_ip=client_ip)
        if not decision.allowed:
            raise RateLimitedError(
                "Rate limit exceeded. Please wait before making another request.",
                reset_time_ms=decision.reset_time_ms,
                detail={"user_id": identity.user_id},
            )

        await self.audit.record(
            "ai_search_query",
            AUDIT_RESOURCE_TYPE,
            details={
                "queryLength": len(query),
                "userId": identity.user_id,
                "ip": client_ip,
            },
            identity=identity,
        )

        prompt = compose_prompt(query)
        try:
            answer = await self.upstream.generate(prompt)
        except UpstreamUnavailableError as exc:
            await self.audit.record(
                "ai_api_error",
                AUDIT_RESOURCE_TYPE,
                details={"error": exc.upstream_body, "status": exc.upstream_status},
                identity=identity,
            )
            raise

        await self.audit.record(
            "ai_search_success",
            AUDIT_RESOURCE_TYPE,
            details={
                "responseLength": len(answer),
                "queryLength": len(query),
                "citationCount": len(extract_citations(answer)),
            },
            identity=identity,
        )
        logger.info(
            "ai_query_answered",
            user_id=identity.user_id,
            remaining=decision.remaining,
            response_length=len(answer),
        )
        return QueryResult(
            response=answer,
            remaining=decision.remaining,
            reset_time_ms=decision.reset_time_ms,
        )
