"""
Event Ticketing API - Main Application Entry Point

Takes M-Pesa payments for event bookings and turns them into tickets:
- Provider callbacks acknowledged at once, reconciled in the background
- Row-locked, idempotent payment settlement and ticket issuance
- Single-use ticket redemption at the door
- Structured logging with request and payment correlation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ticketing.core.config import get_settings
from ticketing.core.logging import setup_logging, get_logger
from ticketing.core.metrics import metrics_endpoint
from ticketing.api.router import api_router, provider_router
from ticketing.api.middleware import RequestLoggingMiddleware
from ticketing.infrastructure.redis_client import get_redis, close_redis, redis_status
from ticketing.services.event_bus import event_bus, publish_to_redis

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        manual_confirmation=settings.ENABLE_MANUAL_CONFIRMATION,
    )

    redis_client = await get_redis()
    if redis_client:
        event_bus.subscribe(publish_to_redis)
        logger.info("redis_ready", channel=settings.DOMAIN_EVENTS_CHANNEL)
    else:
        logger.warning("redis_unavailable", message="Domain events stay in-process")

    yield

    event_bus.unsubscribe(publish_to_redis)
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="M-Pesa payment reconciliation, ticket issuance and door validation",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(provider_router)
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await redis_status(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
