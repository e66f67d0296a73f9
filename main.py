"""
Case Import Service — Main Application

FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
import structlog
from datetime import datetime, timezone

from config import settings, check_connection

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if settings.is_production
            else structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def expire_stalled_imports() -> None:
    """Scheduled job: fail analyses that exceeded the timeout."""
    from services.import_service import get_import_service
    get_import_service().expire_stalled_imports()


def init_scheduler() -> Optional[BackgroundScheduler]:
    """
    Start the stalled-analysis sweep.

    Disabled in debug mode so reloader processes don't each run a copy.
    """
    if settings.debug:
        logger.info("scheduler_disabled", reason="debug")
        return None

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        func=expire_stalled_imports,
        trigger="interval",
        seconds=settings.stall_sweep_interval_seconds,
        id="expire_stalled_imports",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()

    logger.info(
        "scheduler_started",
        interval_seconds=settings.stall_sweep_interval_seconds
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup: Check database connection, fail stalled analyses, start the sweep
    Shutdown: Stop the sweep
    """
    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug
    )

    scheduler = None
    db_status = check_connection()
    if db_status["status"] == "healthy":
        logger.info(
            "database_connected",
            imports=db_status["imports_count"],
            open_imports=db_status["open_imports_count"]
        )
        expire_stalled_imports()
        scheduler = init_scheduler()
    else:
        logger.error(
            "database_connection_failed",
            error=db_status.get("error")
        )

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info("application_shutting_down")


app = FastAPI(
    title="Case Import Service",
    description="Bulk import of debt-recovery cases from bank spreadsheets",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================
# ROUTES
# ===================

@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Service status and database connection state with import counts
    """
    db_status = check_connection()

    return {
        "status": "healthy" if db_status["status"] == "healthy" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "database": db_status
    }


@app.get("/")
async def root():
    """API information and available endpoints."""
    return {
        "name": "Case Import Service API",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "health": "/health",
        "endpoints": {
            "imports": "/api/imports",
        }
    }


# ===================
# ERROR HANDLERS
# ===================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.

    Anything a route did not turn into an AppError response ends up here.
    """
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.debug else None,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


# ===================
# INCLUDE ROUTERS
# ===================
from routes.imports import router as imports_router

app.include_router(imports_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
