"""
LeadFlow - partner webhook delivery service

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Import observability modules
from leadflow.config import settings
from leadflow.logging_config import configure_logging
from leadflow.sentry_config import configure_sentry
from leadflow.database import AsyncSessionLocal
from leadflow.middleware.logging import LoggingMiddleware
from leadflow.services.delivery_service import create_delivery_service

# Import route modules
from leadflow.routes.metrics import router as metrics_router
from leadflow.routes.health import router as health_router
from leadflow.routes.webhooks import router as webhooks_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Select the queue backend once and run it for the app's lifetime."""
    service = await create_delivery_service(AsyncSessionLocal)
    await service.start()
    app.state.delivery_service = service
    try:
        yield
    finally:
        await service.close()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Reliable delivery of lead events to partner webhooks",
    lifespan=lifespan,
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include health routes
app.include_router(health_router)

# Include webhook routes
app.include_router(webhooks_router)
