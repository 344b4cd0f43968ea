"""
TestHub API application: wiring, middleware, error translation and background maintenance
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import admin as admin_api, auth as auth_api, groups as groups_api
from .auth import authenticate_request, clear_auth_cookie
from .config import Settings, get_settings
from .database import db_manager
from .errors import AppError, AuthError, ConflictError
from .schemas import HealthResponse
from .security import public_routes
from .services.jwt_service import JwtService
from .services.mail_service import MailService
from .services.maintenance_service import maintenance_service
from .services.pat_service import PersonalAccessTokenService
from .services.rate_limit_service import RateLimitService
from .utils import setup_logging

logger = logging.getLogger(__name__)


def _error_body(request: Request, status_code: int, error: str, message: str, **extra) -> dict:
    body = {
        "error": error,
        "message": message,
        "status_code": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": str(request.url),
    }
    body.update(extra)
    return body


def run_maintenance() -> dict:
    with db_manager.session_scope() as db:
        return maintenance_service.run_once(db)


async def maintenance_loop(interval_seconds: int):
    """Purge expired tokens and invitations on a fixed schedule"""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            result = await asyncio.to_thread(run_maintenance)
            logger.info(f"Maintenance run: {result}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Maintenance error: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events"""
    settings: Settings = app.state.settings
    logger.info("TestHub API starting up...")

    db_manager.initialize()

    task: Optional[asyncio.Task] = None
    interval = settings.maintenance.interval_seconds
    if interval > 0 and not settings.testing:
        task = asyncio.create_task(maintenance_loop(interval))
        logger.info(f"Maintenance loop started, every {interval}s")

    yield

    logger.info("TestHub API shutting down...")
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    db_manager.close()


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code}: {exc.message}")
        elif exc.status_code in (401, 403, 429):
            logger.warning(f"{exc.status_code} {exc.error_code} on {request.method} {request.url.path}")
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
        response = JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, exc.error_code, exc.message),
            headers=headers,
        )
        if getattr(request.state, "clear_auth_cookie", False):
            clear_auth_cookie(response, request)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=_error_body(request, 400, "VALIDATION_ERROR", "Request validation failed", details=details),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning(f"Integrity violation on {request.method} {request.url.path}: {exc.orig}")
        return await app_error_handler(request, ConflictError("Request conflicts with existing data"))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, "HTTP_ERROR", str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(request, 500, "INTERNAL_ERROR", "Internal server error"),
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application with its own limiter, mail service and token services"""
    settings = settings or get_settings()
    app_config = settings.app_config
    setup_logging(app_config['log_level'])

    for problem in settings.validate_configuration():
        logger.warning(f"Configuration: {problem}")
    if settings.environment == 'production' and settings.validate_configuration():
        raise SystemExit("Critical configuration errors in production environment")

    app = FastAPI(
        title="TestHub API",
        description="Authentication and group access for the test case manager",
        version=app_config['version'],
        docs_url=app_config['docs_url'],
        redoc_url=app_config['redoc_url'],
        lifespan=lifespan,
        dependencies=[Depends(authenticate_request)],
    )

    app.state.settings = settings
    app.state.public_routes = public_routes
    app.state.jwt_service = JwtService(
        settings.security.jwt_secret_key,
        settings.security.jwt_expiration_seconds,
    )
    app.state.pat_service = PersonalAccessTokenService(bcrypt_rounds=settings.security.bcrypt_rounds)
    app.state.rate_limiter = RateLimitService.from_config(settings.rate_limit)
    app.state.mail_service = MailService.from_config(settings.mail)

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit.global_limit],
        storage_uri=settings.rate_limit.storage_uri,
        enabled=settings.rate_limit.enabled,
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config['cors_origins'],
        allow_credentials='*' not in app_config['cors_origins'],
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers and log slow requests"""
        start_time = time.time()
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        if process_time > 1.0:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {process_time:.2f}s")
        return response

    register_exception_handlers(app)

    @app.get("/api/health", response_model=HealthResponse, tags=["system"])
    def health_check():
        healthy = db_manager.check_health()
        return HealthResponse(
            status="healthy" if healthy else "degraded",
            database="up" if healthy else "down",
            version=app_config['version'],
            timestamp=datetime.now(timezone.utc),
        )

    app.include_router(auth_api.router, prefix="/api")
    app.include_router(groups_api.router, prefix="/api")
    app.include_router(admin_api.router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    config = get_settings().app_config
    uvicorn.run(
        "testhub.main:app",
        host=config['host'],
        port=config['port'],
        log_level=config['log_level'].lower(),
    )
