"""
FastAPI main application.

Handles:
- Application initialization
- Middleware configuration
- Route mounting
- CORS setup
- Startup/shutdown events (outbound client lifecycle)
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import logging

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.rate_limit import limiter, rate_limit_exception, rate_limit_handler
from app.api.routes import webhooks, subscriptions, usage, training, images
from app.services.notifications import LogNotifier
from app.services.providers import ImageProviderClient, PaymentProviderClient, TrainingProviderClient
from app.services.storage import LocalBlobStorage

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="AI image generation and model training with subscription billing",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(rate_limit_exception, rate_limit_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Create outbound clients and shared services."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")

    app.state.payment_client = PaymentProviderClient()
    app.state.training_client = TrainingProviderClient()
    app.state.image_client = ImageProviderClient()
    app.state.blob_storage = LocalBlobStorage()
    app.state.notifier = LogNotifier()

    if not settings.payment_webhook_secret:
        logger.warning("PAYMENT_WEBHOOK_SECRET is not set; payment webhooks will be rejected")
    if not settings.training_webhook_secret:
        logger.warning("TRAINING_WEBHOOK_SECRET is not set; training webhooks will be rejected")

    logger.info("Application startup complete")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Close outbound clients."""
    logger.info("Shutting down application")
    for name in ("payment_client", "training_client", "image_client"):
        client = getattr(app.state, name, None)
        if client is not None:
            await client.close()


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Documentation disabled in production",
        "health": "/health"
    }


# Mount API routes
app.include_router(
    webhooks.router,
    prefix="/webhook",
    tags=["webhooks"]
)

app.include_router(
    subscriptions.router,
    prefix=f"{settings.api_v1_prefix}/subscription",
    tags=["subscription"]
)

app.include_router(
    usage.router,
    prefix=f"{settings.api_v1_prefix}/usage",
    tags=["usage"]
)

app.include_router(
    training.router,
    prefix=f"{settings.api_v1_prefix}/training",
    tags=["training"]
)

app.include_router(
    images.router,
    prefix=f"{settings.api_v1_prefix}/images",
    tags=["images"]
)

# Stored blobs (training archives, archived images)
app.mount("/files", StaticFiles(directory=settings.blob_storage_path, check_dir=False), name="files")


# Exception handlers
@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    """Handle ValueError exceptions."""
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc)}
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc):
    """Handle lookups that found nothing."""
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc)}
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    logger.error(f"Uncaught exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
