from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from storefront_auth.api.error_handling import register_exception_handlers
from storefront_auth.api.routes import router
from storefront_auth.config import Settings
from storefront_auth.logging import get_logger, set_correlation_id
from storefront_auth.service.guard import is_guarded_path

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    from storefront_auth.service.runtime import get_runtime

    try:
        get_runtime()
    except Exception as exc:
        logger.error("startup_runtime_failed", error=str(exc))
        raise

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Storefront Auth", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    # Session cookies must travel with cross-origin auth calls
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-CSRF-Token", "X-Request-ID"],
    expose_headers=[
        "X-Request-ID",
        "Retry-After",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
    ],
    max_age=3600,
)


@app.middleware("http")
async def guard_protected_routes(request: Request, call_next):
    """Redirect anonymous visitors away from account pages before they render."""
    path = request.url.path
    if not is_guarded_path(path):
        return await call_next(request)
    try:
        from storefront_auth.service.runtime import get_runtime

        runtime = get_runtime()
        decision = runtime.guard.decide(
            path, runtime.sessions.has_session_cookie(request)
        )
    except Exception as exc:
        # Never block page loads on a guard failure
        logger.error("route_guard_middleware_failed", path=path, error=str(exc))
        return await call_next(request)
    if not decision.allowed:
        logger.info("route_guard_redirect", path=path, route_class=decision.route_class.value)
        return RedirectResponse(decision.redirect_to, status_code=307)
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-XSS-Protection", "1; mode=block")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault(
        "Permissions-Policy", "camera=(), microphone=(), geolocation=()"
    )
    if request.url.path.startswith("/api/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate")
    if _settings.enable_hsts and (request.url.scheme == "https" or _settings.is_production):
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains; preload"
        )
    response.headers.setdefault(
        "Content-Security-Policy",
        "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
        f"img-src 'self' data: https: blob:; font-src 'self' data: https:; connect-src 'self' {_settings.commerce_api_url}; "
        "frame-ancestors 'none'; base-uri 'self'; form-action 'self'; object-src 'none'",
    )
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Bind a correlation id (``X-Request-ID`` or a fresh one) for the request."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Liveness plus a bounded Redis probe when Redis backs the rate limiter."""
    from storefront_auth.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    healthy = True
    if runtime.redis is not None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(runtime.redis.verify_connection),
                HEALTH_CHECK_TIMEOUT_SECONDS,
            )
            checks["redis"] = {"status": "healthy"}
        except Exception as exc:
            logger.error("health_check_redis_failed", error=str(exc))
            checks["redis"] = {"status": "unhealthy"}
            healthy = False
    else:
        checks["redis"] = {"status": "not_configured", "rate_limit_store": "memory"}
    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app() -> FastAPI:
    return app
