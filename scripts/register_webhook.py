"""
Re-register the Airtable webhook of a base.
For bases left without a webhook after a failed registration.

Usage: python scripts/register_webhook.py <base_id> [--owner-id USER_ID]
Without --owner-id the system credential (any credential with an access token) is used.
An expired credential is refreshed before the webhook is registered.
"""

import argparse
import asyncio
import sys

import structlog

from app.integrations.airtable.adapter import AirtableWebhookProvider
from app.integrations.airtable.subscriptions import RegistrationError
from app.utils.logger import configure_logging

configure_logging()
logger = structlog.get_logger()


async def main(base_id: str, owner_id: str | None) -> None:
    provider = AirtableWebhookProvider()
    credential_store = provider.credential_store
    if owner_id:
        credential = await asyncio.to_thread(credential_store.get_for_owner, owner_id)
    else:
        credential = await asyncio.to_thread(credential_store.get_system_credential)
    if not credential or not credential.access_token:
        logger.error("No Airtable credential found", owner_id=owner_id)
        sys.exit(1)

    try:
        handle = await provider.register_with_credential(base_id, credential)
    except RegistrationError as e:
        logger.error("Webhook registration failed", base_id=base_id, error=str(e))
        sys.exit(1)

    logger.info("Webhook registered", **handle)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Register the Airtable webhook of a base")
    parser.add_argument("base_id")
    parser.add_argument("--owner-id", default=None)
    args = parser.parse_args()
    asyncio.run(main(args.base_id, args.owner_id))
