"""
Support Desk Backend - Main Application

This is the entry point for the FastAPI application.
It handles:
- REST API endpoints (queries, messages, calls)
- WebSocket connections for real-time dashboard and donor notifications
- Background sweeping of expired and overrunning call sessions
"""
from contextlib import asynccontextmanager
import logging
from datetime import datetime, UTC

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from app.api import router as api_router
from app.api.websocket import router as ws_router
from app.config.redis import get_redis, close_redis
from app.config.settings import settings
from app.models.database import AsyncSessionLocal, engine, init_db
from app.services.container import build_services
from app.services.metrics import start_metrics_server

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def _connect_redis():
    """Redis only backs the sweeper lease; without it every worker sweeps."""
    try:
        redis = await get_redis()
        await redis.ping()
        logger.info("✅ Redis connected")
        return redis
    except RedisError as e:
        logger.warning(f"⚠️ Redis unavailable, sweeper runs without a lease: {e}")
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # === STARTUP ===
    logger.info("🚀 Starting Support Desk Backend...")

    await init_db()
    logger.info("✅ Database tables created")

    redis = await _connect_redis() if settings.SWEEPER_ENABLED else None

    services = build_services(AsyncSessionLocal, redis=redis, with_sweeper=settings.SWEEPER_ENABLED)
    app.state.services = services

    if services.sweeper:
        services.sweeper.start()
        logger.info("✅ Expiry sweeper started")

    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("🛑 Shutting down...")
    await services.aclose()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Support Desk Backend",
    description="Donor support queries with agent messaging and video/audio calls",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST API routes
app.include_router(api_router, prefix="/api")

# Include WebSocket routes
app.include_router(ws_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Support Desk",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    services = getattr(app.state, "services", None)
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "total_connections": services.connection_manager.get_total_connections() if services else 0,
    }
