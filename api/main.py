"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, sync, tenants, webhooks
from core.config import settings
from core.logging import get_logger, setup_logging
from api.middleware import RequestContextMiddleware
from ingestion.coordinator import IngestionCoordinator

setup_logging()
logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Shopify Ingestion Backend API",
    description="Multi-tenant ingestion of customers, products and orders via pull imports and webhooks",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(tenants.router)
app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Shopify Ingestion Backend API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    # the scheduler needs the running loop, so the coordinator is built here
    coordinator = IngestionCoordinator()
    await coordinator.initialize()
    app.state.coordinator = coordinator


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Shopify Ingestion Backend API")
    coordinator = getattr(app.state, "coordinator", None)
    if coordinator is not None:
        await coordinator.shutdown()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Shopify Ingestion Backend API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "webhooks": settings.WEBHOOK_PATH,
            "tenants": "/tenants",
            "sync": "/sync/status",
        }
    }
