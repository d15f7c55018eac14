# Main application entry point

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from jobfeed.config.settings import get_settings
from jobfeed.api.routes import router
from jobfeed.catalog.database import check_database_connection, get_engine
from jobfeed.common.logging_config import setup_logging
from jobfeed.common.metrics import get_metrics, get_metrics_content_type

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    setup_logging(settings.log_level, json_format=settings.log_json)
    if not settings.import_token:
        logger.warning("IMPORT_TOKEN is not set; import endpoints will refuse requests")
    logger.info(f"Job feed importer started (target table: {settings.import_table})")

    yield

    get_engine().dispose()
    logger.info("Database connections released")


app = FastAPI(
    title="Job Feed Importer API",
    description="Streams CSV, TSV and NDJSON job feeds into the jobs table",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Job Feed Importer API",
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    """Health check endpoint (alias for /live)"""
    return {"status": "healthy"}


@app.get("/live")
async def liveness():
    """Liveness check endpoint"""
    return {"status": "alive"}


@app.get("/ready")
def readiness():
    """Readiness check endpoint"""
    db_healthy = check_database_connection()

    return {
        "status": "ready" if db_healthy else "not_ready",
        "database": "connected" if db_healthy else "disconnected"
    }


@app.get("/metrics")
def metrics():
    """Prometheus metrics endpoint"""
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


if __name__ == "__main__":
    uvicorn.run(
        "jobfeed.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug
    )
