"""
Bumper Plate Storefront - outbound webhook service

FastAPI application entry point.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import observability modules
from storefront.config import settings
from storefront.logging_config import configure_logging
from storefront.sentry_config import configure_sentry
from storefront.middleware.logging import LoggingMiddleware
from storefront.routes.metrics import router as metrics_router

# Import route modules
from storefront.routes.webhooks import router as webhooks_admin_router
from storefront.routes.webhooks import public_router as webhooks_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Outbound webhooks for storefront order events",
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

# Admin UI runs on the frontend origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include webhook routes
app.include_router(webhooks_admin_router)
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected"
    }
