"""
PointsMall - Points Redemption Order Service
FastAPI Application Entry Point
"""
import uvicorn
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from pointsmall import __version__
from pointsmall.core import settings, engine, Base
from pointsmall.core.logging import setup_logging
from pointsmall.api import api_router, register_exception_handlers
from pointsmall.jobs import start_scheduler, stop_scheduler
import pointsmall.models  # noqa: F401  (register tables)

logger = logging.getLogger(__name__)

# Lifespan for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    # Startup: Create tables if not exist
    Base.metadata.create_all(bind=engine)
    logger.info(f"{settings.APP_NAME} starting on port {settings.APP_PORT}")

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    stop_scheduler()
    logger.info(f"{settings.APP_NAME} shutting down")

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Points redemption orders, points ledger, stock and coupons",
    version=__version__,
    lifespan=lifespan
)

register_exception_handlers(app)

# Include routers
app.include_router(api_router, prefix="/api")

# Health check
@app.get("/health")
async def health_check():
    return {"status": "healthy", "app": settings.APP_NAME, "version": __version__}

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.APP_PORT,
        reload=settings.DEBUG
    )
