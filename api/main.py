"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from api.routes import health, parcels
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.logging import setup_logging
from ingestion.registry import build_default_registry
import logging

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the source registry once; close shared clients on shutdown"""
    logger.info("Starting Parcel Ingestion API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    app.state.registry = build_default_registry()

    yield

    logger.info("Shutting down Parcel Ingestion API")
    await app.state.registry.close()


# Create FastAPI app
app = FastAPI(
    title="Parcel Ingestion API",
    description="Ingests property records from assessor and MLS sources into canonical parcels",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(parcels.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Parcel Ingestion API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "ingest": "/parcels/ingest",
            "sources": "/parcels/sources",
            "parcels": "/parcels/{parcel_id}",
            "runs": "/parcels/runs/{run_id}",
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
