"""
SCHEDULER BOOTSTRAP

Initializes and manages the APScheduler instance.
Scheduler is orchestration-only and contains no business logic.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import pytz

from performance_engine.config import settings
from performance_engine.scheduler.jobs import (
    run_consistency_check_job,
    run_monthly_consolidation_job,
    run_yearly_consolidation_job,
)
from performance_engine.services.consolidation_service import ConsolidationService
from performance_engine.services.correction_service import CorrectionService

_logger = logging.getLogger(__name__)


class PerformanceScheduler:
    """
    Performance scheduler (New York time)
    Month checkpoints on day 1, year checkpoints on January 1,
    consistency check every night
    """

    def __init__(
        self,
        service: Optional[ConsolidationService] = None,
        correction_service: Optional[CorrectionService] = None,
        timezone: str = settings.TIMEZONE,
    ):
        self.service = service or ConsolidationService()
        self.correction_service = correction_service or CorrectionService()
        self.scheduler = AsyncIOScheduler(timezone=pytz.timezone(timezone))

    def register_jobs(self) -> None:
        # ------------------------------------------------------------
        # MONTHLY CONSOLIDATION
        # Day 1 @ 00:30
        # ------------------------------------------------------------
        self.scheduler.add_job(
            run_monthly_consolidation_job,
            trigger=CronTrigger(day=1, hour=0, minute=30),
            args=[self.service],
            id="monthly_consolidation_job",
            replace_existing=True,
        )

        # ------------------------------------------------------------
        # YEARLY CONSOLIDATION
        # January 1 @ 01:00 (after the December month checkpoint)
        # ------------------------------------------------------------
        self.scheduler.add_job(
            run_yearly_consolidation_job,
            trigger=CronTrigger(month=1, day=1, hour=1, minute=0),
            args=[self.service],
            id="yearly_consolidation_job",
            replace_existing=True,
        )

        # ------------------------------------------------------------
        # CONSISTENCY CHECK
        # Daily @ 02:00 (DRY_RUN decides whether fixes are written)
        # ------------------------------------------------------------
        self.scheduler.add_job(
            run_consistency_check_job,
            trigger=CronTrigger(hour=2, minute=0),
            args=[self.correction_service],
            id="consistency_check_job",
            replace_existing=True,
        )

    def start(self) -> None:
        self.register_jobs()
        self.scheduler.start()
        _logger.info("✅ Scheduler started with all jobs registered")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            _logger.info("🛑 Scheduler shut down")
