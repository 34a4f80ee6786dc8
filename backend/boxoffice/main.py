"""
Box Office API - Main Application Entry Point

Ticket reservation and purchase service demonstrating:
- Oversell-free reservation under a per-ticket-type inventory lock
- Idempotent purchase saga with payment compensation
- Redis caching and event publication as best-effort side channels
- Structured logging with request correlation
- PostgreSQL with proper indexing and connection pooling
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from boxoffice.core.config import get_settings
from boxoffice.core.logging import setup_logging, get_logger
from boxoffice.core.metrics import metrics_endpoint
from boxoffice.db.session import create_engine, create_session_factory
from boxoffice.infrastructure.redis_client import connect_redis, close_redis
from boxoffice.services.payment_service import create_payment_http_client
from boxoffice.bootstrap import build_services
from boxoffice.api.router import api_router
from boxoffice.api.middleware import RequestLoggingMiddleware
from boxoffice.api.errors import register_exception_handlers

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
        lock_backend=settings.INVENTORY_LOCK_BACKEND,
        payment_gateway=settings.PAYMENT_GATEWAY,
    )

    engine = create_engine(settings)
    redis_client = await connect_redis(settings)
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache and event publication")

    http_client = create_payment_http_client(settings) if settings.PAYMENT_GATEWAY == "http" else None

    services = build_services(
        settings,
        create_session_factory(engine),
        redis_client=redis_client,
        http_client=http_client,
    )
    app.state.engine = engine
    app.state.services = services

    if settings.MAINTENANCE_ENABLED:
        services.maintenance.start()

    yield

    # Cleanup
    await services.maintenance.stop()
    await services.orchestrator.drain()
    if http_client is not None:
        await http_client.aclose()
    await close_redis(redis_client)
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket purchase API with oversell-free reservations and idempotent payments",
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

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    services = getattr(app.state, "services", None)
    if services is None:
        return {"status": "starting", "version": settings.APP_VERSION}

    database = "ok"
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        database = f"error: {e}"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "lock_backend": services.inventory.lock_backend,
        "cache": await services.cache.stats(),
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
