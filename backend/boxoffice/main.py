"""
Box Office API - Main Application Entry Point

Order, inventory and ticket lifecycle for a ticket storefront:
- Oversell-safe checkout with lazily expiring inventory holds
- Idempotent payment webhooks with ticket issuance
- Exactly-once ticket redemption at the gate
- Background expiry sweep and payment reminders
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from boxoffice.core.config import get_settings
from boxoffice.core.logging import setup_logging, get_logger
from boxoffice.core.metrics import metrics_endpoint
from boxoffice.api.errors import register_exception_handlers
from boxoffice.api.router import api_router
from boxoffice.api.middleware import RequestLoggingMiddleware
from boxoffice.db.session import SessionLocal
from boxoffice.infrastructure.redis_client import get_redis, close_redis
from boxoffice.services.cache_service import get_cache_stats
from boxoffice.services.collaborator_factory import close_collaborators, get_notifier, get_payment_gateway
from boxoffice.services.sweep_service import run_sweeper

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
        payment_gateway=get_payment_gateway().name,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    sweeper = None
    if settings.SWEEP_ENABLED:
        sweeper = asyncio.create_task(
            run_sweeper(SessionLocal, get_notifier(), settings.SWEEP_INTERVAL_SECONDS)
        )

    yield

    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await close_collaborators()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket order lifecycle API: checkout, payments, tickets and redemption",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
