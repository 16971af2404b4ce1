"""
Task Review Bot - Main Application Entry Point

FastAPI application hosting the task core. Only operational probes are
exposed here; the chat adapter talks to the services through the container.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config.settings import settings
from .container import build_container
from .database import init_database, close_database, get_database
from .utils.datetime_utils import get_local_now

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting {settings.app_name}...")

    try:
        if await init_database():
            logger.info("PostgreSQL database initialized")
        else:
            logger.warning("PostgreSQL not configured or failed to initialize")
    except Exception as e:
        logger.warning(f"PostgreSQL init failed: {e}")

    app.state.container = build_container(get_database())

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await close_database()


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/")
async def root():
    """Root endpoint - liveness."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Readiness: database connectivity."""
    db_health = {"status": "not_configured"}
    try:
        db = get_database()
        if await db.is_available():
            db_health = await db.health_check()
    except Exception as e:
        db_health = {"status": "error", "error": str(e)}

    return {
        "status": "healthy" if db_health.get("status") == "healthy" else "degraded",
        "timestamp": get_local_now().isoformat(),
        "environment": settings.environment,
        "database": db_health,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
