"""
writedesk API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .database import STORE_UNAVAILABLE_ERRORS, engine, Base
from .deps import outbox
from .errors import WorkflowError
from .limiter import limiter
from .logging_config import api_logger, log_request
from .middleware import SecurityHeadersMiddleware
from .responses import api_exception_handler
from .routes import (
    content_router,
    reviews_router,
    magazines_router,
    notifications_router,
    events_router,
    health_router,
)

settings = get_settings()

# Create tables (in production, use Alembic migrations instead)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    # Startup
    outbox.start()
    api_logger.info("writedesk API started", environment=settings.environment)

    yield  # App is running

    # Shutdown
    outbox.stop()


app = FastAPI(
    title="writedesk API",
    description="Content review and publication workflow",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Typed workflow failures and HTTP errors share one error envelope
app.add_exception_handler(WorkflowError, api_exception_handler)
app.add_exception_handler(StarletteHTTPException, api_exception_handler)
app.add_exception_handler(RequestValidationError, api_exception_handler)
for store_error in STORE_UNAVAILABLE_ERRORS:
    app.add_exception_handler(store_error, api_exception_handler)
app.add_exception_handler(Exception, api_exception_handler)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware (only in debug mode)
if settings.debug:
    app.add_middleware(log_request(api_logger))

# CORS - Properly configured with specific methods
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Routes
app.include_router(content_router)
app.include_router(reviews_router)
app.include_router(magazines_router)
app.include_router(notifications_router)
app.include_router(events_router)
app.include_router(health_router)

# Rendered magazine issues
app.mount(
    settings.artifact_url_prefix,
    StaticFiles(directory=settings.artifact_dir, check_dir=False),
    name="artifacts",
)


@app.get("/")
def root():
    """Root endpoint points at the API docs."""
    return {
        "message": "writedesk API",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
