"""
SCHEDULER JOB DEFINITIONS

Jobs are thin wrappers that:
- Log execution
- Work out which period is due
- Call the consolidation or correction service
- Log a summary

NO business logic is allowed here.
"""

import logging
from datetime import date
from typing import List, Optional

from performance_engine.domain.exceptions import MalformedRecordError
from performance_engine.domain.models import PeriodType
from performance_engine.domain.services.consistency_corrector import CorrectionReport
from performance_engine.services.consolidation_service import ConsolidationMetrics, ConsolidationService
from performance_engine.services.correction_service import CorrectionService
from performance_engine.utils.time import previous_month_key, today_ny

_logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# MONTHLY CONSOLIDATION JOB (day 1, previous month)
# -------------------------------------------------------------------

async def run_monthly_consolidation_job(
    service: ConsolidationService,
    today: Optional[date] = None,
) -> ConsolidationMetrics:
    """
    Consolidate the month that just closed, for every stored scope.
    """
    today = today or today_ny()
    month = previous_month_key(today)
    _logger.info(f"📅 Running monthly consolidation job for {month}")

    metrics = await service.consolidate_all(PeriodType.MONTH, month)
    _log_metrics(metrics)
    return metrics


# -------------------------------------------------------------------
# YEARLY CONSOLIDATION JOB (January 1, previous year)
# -------------------------------------------------------------------

async def run_yearly_consolidation_job(
    service: ConsolidationService,
    today: Optional[date] = None,
) -> ConsolidationMetrics:
    """
    Chain last year's month checkpoints into a year checkpoint.
    """
    today = today or today_ny()
    year = str(today.year - 1)
    _logger.info(f"📅 Running yearly consolidation job for {year}")

    metrics = await service.consolidate_all(PeriodType.YEAR, year)
    _log_metrics(metrics)
    return metrics


def _log_metrics(metrics: ConsolidationMetrics) -> None:
    if metrics.errors:
        _logger.warning(f"⚠️ Consolidation {metrics.summary()}")
        for error in metrics.errors:
            _logger.warning(f"  - {error}")
    else:
        _logger.info(f"✅ Consolidation {metrics.summary()}")


# -------------------------------------------------------------------
# NIGHTLY CONSISTENCY CHECK JOB
# -------------------------------------------------------------------

async def run_consistency_check_job(service: CorrectionService) -> List[CorrectionReport]:
    """
    Verify (and, outside dry-run, correct) every stored scope.

    A malformed record is logged; the job itself does not fail the scheduler.
    """
    mode = "dry-run" if service.dry_run else "fix"
    _logger.info(f"🔍 Running consistency check job ({mode})")

    try:
        reports = await service.correct_all()
    except MalformedRecordError as exc:
        _logger.error(f"❌ Consistency check stopped on malformed record: {exc}")
        return []

    corrected = sum(r.corrected for r in reports)
    _logger.info(f"✅ Consistency check: {len(reports)} scopes, {corrected} records to correct")
    return reports
