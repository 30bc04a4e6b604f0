"""
Base webhook provider interface.
Every tabular-data provider that pushes change notifications implements this interface.
"""

from abc import ABC, abstractmethod
from typing import Any


class BaseWebhookProvider(ABC):
    """Base class that all webhook providers must implement."""

    @abstractmethod
    def get_name(self) -> str:
        """
        Return provider name.

        Returns:
            Provider name used in the webhook route (e.g., 'airtable')
        """
        pass

    @abstractmethod
    def parse_notification(self, body: bytes) -> Any | None:
        """
        Parse the raw notification body.

        Args:
            body: Raw request body bytes

        Returns:
            Provider notification object, or None if the body is not understood
        """
        pass

    @abstractmethod
    def is_ping(self, notification: Any | None) -> bool:
        """
        Decide whether a notification carries nothing actionable.

        Args:
            notification: Result of parse_notification

        Returns:
            True if the notification should only be acknowledged
        """
        pass

    @abstractmethod
    async def handle_notification(
        self,
        notification: Any,
        raw_body: bytes,
        headers: dict[str, str],
    ) -> dict[str, Any]:
        """
        Fetch and apply the changes a notification announces.
        Must not raise: the provider would eventually disable the subscription.

        Args:
            notification: Parsed notification
            raw_body: Raw request body (for signature checks)
            headers: Request headers

        Returns:
            Outcome summary for logging
        """
        pass

    @abstractmethod
    async def register_subscription(self, container_id: str, owner_id: str) -> dict[str, Any]:
        """
        Register the single change subscription of a container for its owner.

        Args:
            container_id: Provider container id (an Airtable base id)
            owner_id: Application user whose credential manages the subscription

        Returns:
            Subscription descriptor
        """
        pass
