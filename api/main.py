"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from api.routes import health, projects, tasks, query
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import async_session_maker, registry
from core.exceptions import (
    ETLException,
    EntityNotFoundError,
    ExtractionError,
    RetryableError,
    TransformationError,
)
from core.logging import setup_logging
from schemas.api import ErrorResponse
from ingestion.scheduler import TaskScheduler
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Datamix Crawl Backend API",
    description="Multi-tenant crawl ingestion with versioned per-project storage",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(query.router)


def _error_response(request: Request, exc: ETLException, status_code: int) -> JSONResponse:
    body = ErrorResponse(
        **exc.to_dict(),
        request_id=getattr(request.state, "request_id", None)
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(ETLException)
async def etl_exception_handler(request: Request, exc: ETLException):
    """Map the exception hierarchy onto HTTP status codes."""
    if isinstance(exc, EntityNotFoundError):
        status_code = 404
    elif isinstance(exc, TransformationError):
        status_code = 400
    elif isinstance(exc, RetryableError):
        status_code = 503
    elif isinstance(exc, ExtractionError):
        status_code = 502
    else:
        status_code = 500

    if status_code >= 500:
        logger.error(f"[{getattr(request.state, 'request_id', '-')}] {exc}")
    return _error_response(request, exc, status_code)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Datamix Crawl Backend API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    scheduler = TaskScheduler(async_session_maker, registry)
    scheduler.start()
    app.state.scheduler = scheduler
    await scheduler.recover_pending()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Datamix Crawl Backend API")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()
    await registry.close_all()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Datamix Crawl Backend API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "projects": "/projects",
            "tasks": "/tasks",
            "query": "/query"
        }
    }
