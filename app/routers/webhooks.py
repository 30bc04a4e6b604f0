"""
Webhook router for provider change notifications.
The notification endpoint always answers 200: providers disable webhooks whose
deliveries keep failing, so outcomes are only visible in logs.
"""

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.integrations.airtable.adapter import MissingCredentialError
from app.integrations.airtable.subscriptions import RegistrationError
from app.integrations.base import BaseWebhookProvider
from app.integrations.registry import provider_registry
from app.routers.auth import verify_token

logger = structlog.get_logger()

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _get_provider_or_404(provider_name: str) -> BaseWebhookProvider:
    provider = provider_registry.get_provider(provider_name)
    if not provider:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider '{provider_name}' not found. Available providers: {provider_registry.list_available()}",
        )
    return provider


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "available_providers": provider_registry.list_available(),
    }


@router.post("/{provider_name}")
async def receive_notification(
    provider_name: str,
    request: Request,
    background_tasks: BackgroundTasks,
):
    """
    Receive a change notification.

    Pings (no base/webhook id, or no cursor when one is required) are acknowledged
    without fetching. Real notifications are processed after the response is sent.

    Example:
        POST /api/webhooks/airtable
        {"base": {"id": "app..."}, "webhook": {"id": "ach..."}, "timestamp": "..."}
    """
    provider = _get_provider_or_404(provider_name)

    try:
        body_bytes = await request.body()
        notification = provider.parse_notification(body_bytes)

        if provider.is_ping(notification):
            logger.info(
                "Webhook ping or incomplete body, acknowledging",
                provider=provider_name,
            )
            return {"status": "ok", "ping": True}

        headers = dict(request.headers)
        background_tasks.add_task(
            provider.handle_notification, notification, body_bytes, headers
        )
        logger.info("Webhook notification accepted", provider=provider_name)
        return {"status": "accepted"}

    except Exception as e:
        logger.error(
            "Failed to dispatch webhook notification, acknowledging anyway",
            provider=provider_name,
            error=str(e),
        )
        return {"status": "ok"}


@router.post("/{provider_name}/register/{container_id}")
async def register_subscription(
    provider_name: str,
    container_id: str,
    user_data: dict = Depends(verify_token),
):
    """
    Register the single change subscription of a container (Airtable base)
    using the caller's stored credential.
    """
    provider = _get_provider_or_404(provider_name)
    user_id = user_data["user_id"]

    try:
        subscription = await provider.register_subscription(container_id, user_id)
    except MissingCredentialError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
    except RegistrationError as e:
        logger.error(
            "Webhook registration failed",
            provider=provider_name,
            container_id=container_id,
            user_id=user_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register webhook",
        ) from e

    return subscription
