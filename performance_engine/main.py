"""
Performance engine process
Initializes storage and cache, then runs the scheduler until interrupted
"""

import asyncio
import logging

from performance_engine.config import settings
from performance_engine.core.logging import setup_logging
from performance_engine.infrastructure.db.database import close_db, init_db
from performance_engine.scheduler.scheduler import PerformanceScheduler
from performance_engine.services.consolidation_service import ConsolidationService
from performance_engine.services.correction_service import CorrectionService
from performance_engine.services.runtime import build_cache

logger = logging.getLogger(__name__)


async def main() -> None:
    setup_logging(settings.LOG_LEVEL)

    logger.info("=" * 60)
    logger.info(f"🚀 Starting Performance Engine ({settings.APP_ENV})")
    logger.info("=" * 60)

    logger.info("📊 Step 1/3: Initializing database...")
    await init_db()
    logger.info("✅ Database initialized")

    logger.info("🏗️  Step 2/3: Initializing infrastructure...")
    cache = build_cache()
    logger.info(f"✅ Infrastructure initialized (redis: {'enabled' if cache else 'disabled'})")

    logger.info("🔧 Step 3/3: Starting background services...")
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        logger.info("📅 Starting scheduler...")
        scheduler = PerformanceScheduler(
            service=ConsolidationService(),
            correction_service=CorrectionService(cache=cache, dry_run=settings.DRY_RUN),
        )
        scheduler.start()
    else:
        logger.info("⏰ Scheduler disabled")

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("🛑 Shutting down Performance Engine...")
        if scheduler is not None:
            scheduler.shutdown()
        if cache is not None:
            await cache.close()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
