import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from tracksub.core.config import settings
from tracksub.core.limiter import limiter
from tracksub.routers import auth, billing, calendar, health, notifications, subscriptions
from tracksub.routers import settings as settings_router
from tracksub.services.errors import (
    AccountNotLinked,
    ExternalFeedError,
    InvalidCycle,
    PlanRequired,
    ReconciliationError,
    SyncLimitExceeded,
)

logging.basicConfig(
    level=getattr(logging, settings.api_log_level.upper()),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Security headers middleware ───────────────────────────────────────────────
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.environment != "development":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


# ─── Service errors → HTTP ─────────────────────────────────────────────────────
_ERROR_STATUS: dict[type[ReconciliationError], int] = {
    PlanRequired: 403,
    AccountNotLinked: 400,
    SyncLimitExceeded: 429,
    ExternalFeedError: 502,
    InvalidCycle: 422,
}


async def reconciliation_error_handler(request: Request, exc: ReconciliationError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    body: dict = {"detail": str(exc)}
    if isinstance(exc, ExternalFeedError):
        body["new_transactions"] = exc.processed
    if status_code >= 500:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=body)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Tracksub API",
        version="1.0.0",
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url=None,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ReconciliationError, reconciliation_error_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # ─── CORS ──────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=(
            ["http://localhost:3000", "http://localhost", f"http://{settings.domain}"]
            if settings.environment == "development"
            else [f"https://{settings.domain}"]
        ),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
    )

    # ─── Routers ──────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(subscriptions.router, prefix="/api/v1")
    app.include_router(settings_router.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")
    app.include_router(calendar.router, prefix="/api/v1")
    return app


app = create_app()
