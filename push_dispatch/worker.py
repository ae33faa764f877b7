"""
Interval worker that drains due notifications without an external scheduler.

    python -m push_dispatch.worker
"""

import asyncio
import logging

from push_dispatch.config import Settings, load_settings
from push_dispatch.logging_config import configure_logging
from push_dispatch.services.pipeline import NotificationPipeline, PipelineResources

logger = logging.getLogger(__name__)


async def drain_forever(pipeline: NotificationPipeline, interval_seconds: int) -> None:
    while True:
        try:
            await pipeline.drain()
        except Exception as e:
            logger.error(f"Drain failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)


async def run(settings: Settings) -> None:
    resources = PipelineResources(settings)
    pipeline = await resources.start()
    logger.info(f"Worker started, draining every {settings.drain_interval_seconds}s")
    try:
        await drain_forever(pipeline, settings.drain_interval_seconds)
    finally:
        await resources.stop()


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, settings.service_name)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
