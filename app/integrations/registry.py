"""
Provider registry for discovery and management of webhook providers.
"""

import structlog

from app.integrations.base import BaseWebhookProvider

logger = structlog.get_logger()


class ProviderRegistry:
    """Registry that manages and provides access to all webhook providers."""

    def __init__(self):
        """Initialize the provider registry."""
        self._providers: dict[str, BaseWebhookProvider] = {}
        self._load_providers()

    def _load_providers(self):
        """Load all available providers."""
        try:
            from app.integrations.airtable.adapter import AirtableWebhookProvider

            airtable_provider = AirtableWebhookProvider()
            self.register(airtable_provider)
            logger.info("Loaded Airtable provider", provider_name=airtable_provider.get_name())
        except ImportError as e:
            logger.warning("Could not load Airtable provider", error=str(e))

    def register(self, provider: BaseWebhookProvider):
        """
        Register a webhook provider.

        Args:
            provider: Provider instance
        """
        name = provider.get_name()
        if name in self._providers:
            logger.warning("Provider already registered, replacing", provider_name=name)
        self._providers[name] = provider
        logger.info("Registered provider", provider_name=name)

    def get_provider(self, provider_name: str) -> BaseWebhookProvider | None:
        """
        Get provider by name.

        Args:
            provider_name: Name of the provider (e.g., 'airtable')

        Returns:
            Provider instance, or None if not found
        """
        return self._providers.get(provider_name.lower())

    def list_available(self) -> list[str]:
        """
        List all available providers.

        Returns:
            List of provider names
        """
        return list(self._providers.keys())


# Global registry instance
provider_registry = ProviderRegistry()
