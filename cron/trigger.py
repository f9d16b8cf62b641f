"""
Cron job entry point: one summary pipeline run, then one digest pipeline run.

For platforms that prefer scheduled one-shot jobs over the in-process
scheduler (run the web service with SCHEDULER_ENABLED=false).
Pass "summary" or "digest" to run a single cycle.

IMPORTANT: This script must exit cleanly after completion.
Open DB connections will prevent the platform from marking the job as finished.
"""

from __future__ import annotations

import asyncio
import sys
import uuid

from newsdesk.core.config import get_settings
from newsdesk.core.errors import NewsdeskError
from newsdesk.core.logging import get_logger, log_context, setup_logging
from newsdesk.services.container import create_container

setup_logging()
logger = get_logger("cron")
settings = get_settings()

CYCLES = ("summary", "digest")


async def main(cycles: tuple[str, ...] = CYCLES) -> int:
    with log_context(run_id=str(uuid.uuid4()), trigger="cron"):
        logger.info("cron_triggered", cycles=list(cycles))
        try:
            container = await create_container(settings)
        except NewsdeskError as e:
            logger.error("cron_startup_failed", error=str(e))
            return 1

        try:
            if "summary" in cycles:
                await container.scheduler.run_summary_pipeline()
            if "digest" in cycles:
                if container.scheduler.digest_inactive():
                    logger.info("cron_digest_skipped", window=settings.digest_inactivity_hours)
                else:
                    await container.scheduler.run_digest_pipeline()
            logger.info("cron_completed")
            return 0
        except Exception as e:
            logger.error("cron_failed", error=str(e), exc_info=True)
            return 1
        finally:
            await container.aclose()


if __name__ == "__main__":
    requested = tuple(arg for arg in sys.argv[1:] if arg in CYCLES) or CYCLES
    sys.exit(asyncio.run(main(requested)))
