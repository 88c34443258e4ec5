"""
Catalog Store API.

Wires the bulk import router, logging and error envelopes into one FastAPI
app. Run with `python main.py` or `uvicorn main:app`.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from config import settings, check_connection, reset_connection
from exceptions import AppError
from routes.bulk_import import router as bulk_import_router


def configure_logging() -> None:
    """JSON logs in production, coloured console output elsewhere."""
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the Supabase client on startup, drop it on shutdown."""
    status = check_connection()
    logger.info(
        "catalog_store_started",
        environment=settings.environment,
        database=status["status"],
        imports=status.get("imports_count"),
        error=status.get("error")
    )

    yield

    reset_connection()
    logger.info("catalog_store_stopped")


app = FastAPI(
    title="Catalog Store",
    description="Multi-tenant product catalog with bulk image import",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)

app.include_router(bulk_import_router)


# ===================
# ERROR ENVELOPES
# ===================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Anything that escaped a route becomes INTERNAL_ERROR."""
    logger.error(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": {"error": str(exc)} if settings.debug else {},
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


# ===================
# SERVICE ENDPOINTS
# ===================

@app.get("/health")
async def health():
    """Database reachability; `degraded` when Supabase is down."""
    database = check_connection()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "database": database,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/")
async def root():
    return {
        "name": "Catalog Store API",
        "version": app.version,
        "bulk_import": bulk_import_router.prefix,
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
