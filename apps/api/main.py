"""
FastAPI application entry point.

This module sets up the sync server with middleware, routers, the tenant
registry and error handling.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import sync
from core.config import settings
from core.database import TenantRegistry
from core.exceptions import APIException
from core.logging import setup_logging
import logging
import time

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (production)
if settings.SENTRY_DSN:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[FastApiIntegration(transaction_style="endpoint")],
            # Sync keys are bearer secrets; keep them out of error reports
            send_default_pii=False,
        )
        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    except ImportError:
        logger.warning("sentry-sdk not installed, error tracking disabled")


def create_app(registry: TenantRegistry | None = None) -> FastAPI:
    """Build the API around a tenant registry (a fresh one from settings by default)."""
    app = FastAPI(
        title="Liftlog Sync API",
        description="Per-tenant last-write-wins synchronization for the Liftlog fitness log",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    if registry is None:
        registry = TenantRegistry(settings.DATA_DIR, journal_mode=settings.SQLITE_JOURNAL_MODE)
    app.state.tenant_registry = registry

    @app.on_event("shutdown")
    def close_tenant_storage():
        """Close and evict every open tenant handle."""
        app.state.tenant_registry.close_all()

    # CORS middleware
    # Production: set CORS_ORIGINS env var (comma-separated)
    # Development: DEBUG=True allows all origins
    if settings.DEBUG:
        allowed_origins = ["*"]
    elif settings.CORS_ORIGINS:
        allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    else:
        allowed_origins = [
            "http://localhost:5173",
            "http://localhost:4173",
            "http://127.0.0.1:5173",
        ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )

        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Render known errors in the sync envelope."""
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code}: {exc.detail} ({request.method} {request.url.path})")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail, "code": exc.error_code},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed request bodies, rendered in the sync envelope."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'Invalid request')}" if location else "Invalid request"
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"success": False, "error": message, "code": "VALIDATION_ERROR"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                }
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Internal server error"},
        )

    @app.get("/health")
    def health(request: Request):
        """
        Simple health check for load balancers and uptime monitors.

        Returns:
            - 200: Tenant storage usable
            - 503: Data directory unavailable
        """
        tenant_registry = request.app.state.tenant_registry
        if not tenant_registry.check_storage():
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "storage": "unavailable"},
            )
        return {
            "status": "healthy",
            "open_tenants": tenant_registry.open_count(),
            "timestamp": time.time(),
        }

    @app.get("/ping")
    async def ping():
        """
        Minimal ping endpoint for uptime monitors.
        No dependencies checked - just confirms the API is responding.
        """
        return {"pong": True}

    app.include_router(sync.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD,
    )
