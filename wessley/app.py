from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wessley.api.error_handling import register_exception_handlers
from wessley.api.routes import auth_router, router
from wessley.config import get_settings
from wessley.logging import get_logger, set_correlation_id
from wessley.service.services_client import check_all_services_health, probe_service

logger = get_logger(__name__)

_settings = get_settings()

__version__ = _settings.app_version

HEALTH_CHECK_TIMEOUT_SECONDS = 3
# Services that must be up for a "degraded" rather than "unhealthy" answer
CORE_SERVICES = ("database", "semantic", "ingestion")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release its pools on shutdown."""
    from wessley.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info(
        "app_started",
        version=__version__,
        app_env=runtime.settings.app_env.value,
    )

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Wessley API", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Local dev hosts; no wildcard while credentials are allowed
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        _settings.app_url,
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Request-ID",
        "stripe-signature",
    ],
    expose_headers=[
        "X-Request-ID",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag every log line of a request with the caller's X-Request-ID, or a fresh one."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.scheme == "https" and _settings.is_production:
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


register_exception_handlers(app)
app.include_router(router)
app.include_router(auth_router)


def overall_status(checks: Dict[str, Dict[str, Any]]) -> str:
    if all(entry.get("status") == "up" for entry in checks.values()):
        return "healthy"
    if all(checks.get(name, {}).get("status") == "up" for name in CORE_SERVICES):
        return "degraded"
    return "unhealthy"


async def _probe_database(store) -> Dict[str, Any]:
    started = time.perf_counter()
    error = None
    try:
        await asyncio.wait_for(
            asyncio.to_thread(store.verify_connection), HEALTH_CHECK_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        error = "timeout"
        logger.error("health_check_timeout", component="database")
    except Exception as exc:
        error = str(exc)
        logger.error("health_check_database_failed", error=error)
    entry: Dict[str, Any] = {
        "status": "down" if error else "up",
        "latency_ms": int((time.perf_counter() - started) * 1000),
    }
    if error:
        entry["error"] = error
    return entry


@app.get("/api/health")
async def health():
    """Probe the store, the service cluster and netlistify.

    ``healthy`` when everything answers, ``degraded`` when only optional
    services are down, otherwise ``unhealthy`` with a 503.
    """
    from wessley.service.runtime import get_runtime

    started = time.perf_counter()
    runtime = get_runtime()
    database, cluster, netlistify = await asyncio.gather(
        _probe_database(runtime.store),
        check_all_services_health(runtime.services),
        probe_service(runtime.netlistify),
    )
    checks = {"database": database, **cluster["services"], "netlistify": netlistify}
    status = overall_status(checks)
    if status != "healthy":
        logger.warning(
            "health_check_not_healthy",
            status=status,
            down=[name for name, entry in checks.items() if entry["status"] != "up"],
        )
    return JSONResponse(
        status_code=503 if status == "unhealthy" else 200,
        content={
            "status": status,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "version": __version__,
            "services": checks,
        },
        headers={
            "Cache-Control": "no-store, max-age=0",
            "X-Response-Time": f"{int((time.perf_counter() - started) * 1000)}ms",
        },
    )
