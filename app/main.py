"""
FastAPI application entry point.
Initializes the FastAPI app, configures logging, and includes webhook routes.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.integrations.registry import provider_registry
from app.routers import auth, webhooks
from app.utils.logger import configure_logging

# Configure logging first
configure_logging()
logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title="Airtable Form Sync",
    description="Keeps locally mirrored form responses in sync with Airtable via webhooks",
    version="1.0.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks.router)  # Notification receiver + subscription registration
app.include_router(auth.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info("Airtable Form Sync started")

    loaded_providers = provider_registry.list_available()
    logger.info(
        "Webhook providers loaded",
        providers=loaded_providers,
        count=len(loaded_providers),
    )

    if not settings.public_base_url:
        logger.warning("public_base_url not set, webhook registration will fail")
    if not settings.airtable_verify_webhook_mac:
        logger.warning("Airtable notification MAC verification disabled")
    if not settings.token_encryption_key:
        logger.warning("token_encryption_key not set, Airtable tokens stored in plaintext")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event."""
    logger.info("Airtable Form Sync shutting down")


@app.get("/")
async def root():
    """Root endpoint - also serves as a simple health check."""
    return {
        "status": "healthy",
        "service": "Airtable Form Sync",
        "version": "1.0.0",
        "providers": provider_registry.list_available(),
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "providers": provider_registry.list_available(),
    }


@app.get("/healthz")
async def healthz():
    """Alternative health check endpoint (Kubernetes-style)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
