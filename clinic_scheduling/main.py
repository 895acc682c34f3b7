import asyncio
import logging
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from clinic_scheduling.core.config import settings
from clinic_scheduling.core.db import init_models
from clinic_scheduling.core.logging import setup_logging
from clinic_scheduling.jobs.reconcile import run_reconciliation_loop
from clinic_scheduling.modules.events.outbox import run_outbox_relay
from clinic_scheduling.platform.provider_registry import registry

logger = logging.getLogger(__name__)


async def main():
    setup_logging()
    await init_models()
    logger.info("%s workers starting (env=%s)", settings.APP_NAME, settings.ENV)
    tasks = [
        asyncio.create_task(run_outbox_relay(settings.OUTBOX_POLL_SECONDS)),
        asyncio.create_task(run_reconciliation_loop(settings.RECONCILE_INTERVAL_SECONDS)),
    ]
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await registry.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
