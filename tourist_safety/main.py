# tourist_safety/main.py
from fastapi import FastAPI, HTTPException, Depends, status
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import asyncio
import logging

from tourist_safety.core.config import settings
from tourist_safety.core.middleware import setup_all_middleware
from tourist_safety.api.v1.api import api_router
from tourist_safety.db.database import engine, get_db, init_db
from tourist_safety.services.alert_service import AlertLockRegistry
from tourist_safety.services.location_risk import LocationRiskAssessor
from tourist_safety.services.notification_service import NotificationChannels, NotificationDispatcher
from tourist_safety.services.risk_providers import build_risk_providers

# Configure logging based on settings
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# --- Lifespan Events ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events: startup and shutdown."""
    logger.info("Starting Tourist Safety Emergency API...")

    # Log the database URL being used (mask password)
    masked_url = settings.DATABASE_URL.replace(
        settings.DATABASE_URL.split("@")[0].split("//")[1] + "@",
        "***@"
    ) if "@" in settings.DATABASE_URL else settings.DATABASE_URL
    logger.info(f"Creating tables for database: {masked_url}")
    await init_db()

    # Channel clients, risk feeds and the dispatcher live for the whole process
    app.state.dispatcher = NotificationDispatcher(NotificationChannels.from_settings(settings))
    app.state.risk_assessor = LocationRiskAssessor(build_risk_providers(settings))
    app.state.alert_locks = AlertLockRegistry()

    logger.info("Application startup complete")
    yield
    logger.info("Shutting down Tourist Safety Emergency API...")
    try:
        await asyncio.wait_for(app.state.dispatcher.wait_idle(), timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Notification sends still running at shutdown")
    await engine.dispose()


# --- Create FastAPI App ---
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Emergency detection and response for tracked tourists",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

setup_all_middleware(app)

# --- Include API Routes ---
app.include_router(api_router, prefix=settings.API_V1_STR)


# --- Root Endpoint ---
@app.get("/")
async def root():
    """Root endpoint providing basic API information."""
    return {
        "message": "Tourist Safety Emergency API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "api_endpoints": f"{settings.API_V1_STR}/",
        "status": "running"
    }


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint that verifies database connectivity."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service unhealthy: Database connection failed - {str(e)}"
        )

    return {
        "status": "healthy",
        "database": "connected",
        "app_name": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "api_version": settings.API_V1_STR
    }


# --- Main Execution Block ---
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tourist_safety.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
