from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from vetintel.config import get_settings, reset_settings_cache
from vetintel.logging import get_logger
from vetintel.service.audit import AuditLogger, SupabaseAuditSink
from vetintel.service.auth import CredentialVerifier
from vetintel.service.gateway import QueryGateway
from vetintel.service.gemini import GeminiClient
from vetintel.service.rate_limit import RateLimiter
from vetintel.service.validation import QueryValidator
from vetintel.storage.memory import MemoryAuditSink, MemoryRateLimitStore
from vetintel.storage.redis_cache import RedisRateLimitStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton collaborators for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        settings = self.settings
        logger.info(
            "runtime_init_started",
            use_memory_store=settings.use_memory_store,
            test_mode=settings.test_mode,
        )

        self.rate_limit_store = self._build_rate_limit_store()

        if settings.test_mode:
            self.audit_sink = MemoryAuditSink()
        else:
            self.audit_sink = SupabaseAuditSink(
                settings.supabase_url,
                settings.supabase_anon_key,
                timeout=settings.audit_timeout_seconds,
            )
        self.audit = AuditLogger(self.audit_sink, timeout=settings.audit_timeout_seconds)
        self.verifier = CredentialVerifier(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.identity_timeout_seconds,
        )
        self.validator = QueryValidator(self.audit, max_length=settings.max_query_length)
        self.limiter = RateLimiter(
            self.rate_limit_store,
            endpoint=settings.rate_limit_endpoint,
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        self.upstream = GeminiClient(
            settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.upstream_timeout_seconds,
        )
        if not self.upstream.is_configured:
            logger.error("gemini_api_key_missing", message="AI queries will fail with 500")
        self.gateway = QueryGateway(
            verifier=self.verifier,
            validator=self.validator,
            limiter=self.limiter,
            upstream=self.upstream,
            audit=self.audit,
        )

    def _build_rate_limit_store(self):
        settings = self.settings
        if settings.use_memory_store:
            logger.info("rate_limit_store_initialized", store_type="memory")
            return MemoryRateLimitStore()

        redis_error: Exception | None = None
        if settings.redis_url:
            try:
                store = RedisRateLimitStore(settings.redis_url)
                store.verify_connection()
                logger.info("rate_limit_store_initialized", store_type="redis")
                return store
            except Exception as exc:
                redis_error = exc

        if not settings.test_mode and not settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for rate limits; start Redis or set "
                "USE_MEMORY_STORE=true / ALLOW_REDIS_FALLBACK_DEV=true for a local fallback."
            ) from redis_error

        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message="Running without Redis; rate limits are per-process only.",
        )
        return MemoryRateLimitStore()

    async def close(self) -> None:
        for closer in (
            self.upstream.close,
            self.verifier.close,
            self.audit.close,
            self.rate_limit_store.close,
        ):
            try:
                await closer()
            except Exception as exc:
                logger.warning("runtime_close_failed", error_type=type(exc).__name__, error=str(exc))


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime singleton from a fresh environment read."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
