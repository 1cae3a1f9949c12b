from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vetintel.api.error_handling import register_exception_handlers
from vetintel.api.routes import router
from vetintel.config import Settings
from vetintel.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"
__build__ = _settings.build_sha

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    from vetintel.service.runtime import get_runtime

    try:
        get_runtime()
        logger.info("runtime_ready", version=__version__, build=__build__)
    except Exception as exc:
        logger.error("startup_failed", error_type=type(exc).__name__, error=str(exc))
        raise

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="VetIntel Query Gateway", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS", "GET"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    expose_headers=["X-RateLimit-Remaining", "X-RateLimit-Reset", "X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag every log line of a request with a correlation ID.

    Taken from ``X-Request-ID`` when the client sends one, otherwise
    generated, and echoed back in the response header.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report record-store connectivity and build info."""
    from vetintel.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    healthy = True

    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.rate_limit_store.verify_connection),
            HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        checks["rate_limit_store"] = {"status": "ok", "type": type(runtime.rate_limit_store).__name__}
    except Exception as exc:
        logger.error("health_check_rate_limit_store_failed", error_type=type(exc).__name__, error=str(exc))
        checks["rate_limit_store"] = {"status": "error"}
        healthy = False

    checks["upstream"] = {"status": "ok" if runtime.upstream.is_configured else "unconfigured"}
    if not runtime.upstream.is_configured:
        healthy = False

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "degraded",
            "version": __version__,
            "build": __build__,
            "checks": checks,
        },
    )
