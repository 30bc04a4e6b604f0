"""
Entry point for running the webhook refresh worker as a module.
Usage: python -m app.workers
"""
import asyncio
from app.utils.logger import configure_logging
from app.workers.webhook_refresh_scheduler import run_webhook_refresh_scheduler

if __name__ == "__main__":
    configure_logging()
    asyncio.run(run_webhook_refresh_scheduler())
