"""
CaseTrack API - Main Application

Entry point of the QA dashboard backend: test cases, test run sessions and
interactive test execution.

Port: 7400
"""

import subprocess
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.config import get_settings
from core.logger import get_logger, setup_logging
from api.middleware.rate_limit import limiter, _rate_limit_exceeded_handler
from api.routes import test_cases, executions, sessions, projects

# Logging first so module-level loggers of the routers pick up the handlers
setup_logging()
logger = get_logger(__name__)

settings = get_settings()

PROJECT_ROOT = Path(__file__).resolve().parent.parent
MAX_REQUEST_SIZE = settings.MAX_REQUEST_SIZE_MB * 1024 * 1024

ROUTERS = (
    (projects.router, "/api/v1/projects", "Projects"),
    (test_cases.router, "/api/v1/test-cases", "Test Cases"),
    (executions.router, "/api/v1/executions", "Executions"),
    (sessions.router, "/api/v1/sessions", "Test Sessions"),
)


def init_sentry() -> None:
    """Report unhandled errors to Sentry when SENTRY_ENABLED and SENTRY_DSN are set."""
    if not (settings.SENTRY_ENABLED and settings.SENTRY_DSN):
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    except ImportError:
        logger.warning("SENTRY_ENABLED is set but sentry-sdk is not installed")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )
    logger.info("Sentry error tracking initialized")


def run_migrations() -> None:
    """Run `alembic upgrade head` from the project root. Failures are logged, not raised."""
    logger.info("Running database migrations...")
    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            capture_output=True,
            text=True,
            timeout=60,
            cwd=str(PROJECT_ROOT)
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Could not run migrations: {str(e)}")
        return

    if result.returncode != 0:
        logger.warning(f"Migrations exited with {result.returncode}: {result.stderr}")
    else:
        logger.info("Database migrations are up to date")


init_sentry()

# API docs only in debug mode
app = FastAPI(
    title=settings.APP_NAME,
    description="QA test case management and test execution tracking",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def limit_request_size(request: Request, call_next):
    """Reject bodies announced larger than MAX_REQUEST_SIZE_MB with 413."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > MAX_REQUEST_SIZE:
        logger.warning(
            f"Rejected {request.method} {request.url.path}: body of {declared} bytes "
            f"exceeds {settings.MAX_REQUEST_SIZE_MB}MB"
        )
        return JSONResponse(
            status_code=413,
            content={
                "detail": f"Request body too large. Maximum size is {settings.MAX_REQUEST_SIZE_MB}MB",
                "error_code": "payload_too_large"
            }
        )
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_URL}/docs" if settings.DEBUG else None,
        "health": f"{settings.API_URL}/health"
    }


for router, prefix, tag in ROUTERS:
    app.include_router(router, prefix=prefix, tags=[tag])


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log anything the routers did not translate and answer 500."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


@app.on_event("startup")
async def startup_event():
    # Fail fast on a debug build deployed to production
    if settings.is_production and settings.DEBUG:
        logger.critical("DEBUG=True in production environment")
        raise RuntimeError("DEBUG must be False in production. Check your environment variables.")

    logger.info(f"Starting {settings.APP_NAME} API v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

    if settings.AUTO_RUN_MIGRATIONS:
        run_migrations()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.APP_NAME} API")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=7400, reload=settings.DEBUG)
