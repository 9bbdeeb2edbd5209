"""
SERVICE: PERIOD CONSOLIDATION

Daily records -> month checkpoints, month checkpoints -> year checkpoints.
Checkpoints are derived and idempotent: re-running overwrites them.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from performance_engine.config import settings
from performance_engine.domain.models import ConsolidatedPeriodRecord, EntityScope, PeriodType
from performance_engine.domain.services.period_consolidator import (
    consolidate_months_to_year,
    consolidate_period,
)
from performance_engine.infrastructure.db import database
from performance_engine.infrastructure.db.repositories.consolidated_period_repository import (
    ConsolidatedPeriodRepository,
)
from performance_engine.infrastructure.db.repositories.daily_performance_repository import (
    DailyPerformanceRepository,
)
from performance_engine.utils.concurrency import gather_bounded
from performance_engine.utils.time import (
    is_month_closed,
    is_year_closed,
    month_bounds,
    months_between,
    year_key,
)

logger = logging.getLogger(__name__)


@dataclass
class ConsolidationMetrics:
    """Summary of one consolidation run"""
    period_type: PeriodType
    period_key: str
    scopes_processed: int = 0
    records_written: int = 0
    empty_periods: int = 0
    errors: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.period_type.value} {self.period_key}: {self.scopes_processed} scopes, "
            f"{self.records_written} written, {self.empty_periods} empty, {len(self.errors)} errors"
        )


class ConsolidationService:
    """Builds and stores month/year checkpoints"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        concurrency: int = settings.SCOPE_CONCURRENCY,
    ):
        self.session_factory = session_factory or database.async_session_factory
        self.concurrency = concurrency

    async def consolidate_month(self, scope: EntityScope, month: str) -> Optional[ConsolidatedPeriodRecord]:
        """
        Consolidate and store one month of a scope

        Args:
            scope: Entity scope
            month: "YYYY-MM"

        Returns:
            Stored record, or None when the month has no valid day
        """
        start, end = month_bounds(month)
        async with self.session_factory() as session:
            daily = await DailyPerformanceRepository(session).list_for_scope(scope, start, end, strict=False)
            record = consolidate_period(daily, month, PeriodType.MONTH)
            if record is None:
                return None
            await ConsolidatedPeriodRepository(session).save(record)
            await session.commit()
        return record

    async def consolidate_year(self, scope: EntityScope, year: str) -> Optional[ConsolidatedPeriodRecord]:
        """
        Chain the stored month checkpoints of a year into a year checkpoint

        Args:
            scope: Entity scope
            year: "YYYY"

        Returns:
            Stored record, or None when no month of the year is consolidated
        """
        async with self.session_factory() as session:
            repository = ConsolidatedPeriodRepository(session)
            months = await repository.list_for_scope(scope, PeriodType.MONTH, f"{year}-01", f"{year}-12")
            record = consolidate_months_to_year(months, year)
            if record is None:
                return None
            await repository.save(record)
            await session.commit()
        return record

    async def _scope_keys(self, portfolio_id: Optional[str]) -> List[str]:
        async with self.session_factory() as session:
            return await DailyPerformanceRepository(session).list_scope_keys(portfolio_id)

    async def consolidate_all(
        self,
        period_type: PeriodType,
        period_key: str,
        portfolio_id: Optional[str] = None,
    ) -> ConsolidationMetrics:
        """
        Consolidate one period for every stored scope

        Per-scope failures are logged and counted; other scopes proceed.
        """
        metrics = ConsolidationMetrics(period_type=period_type, period_key=period_key)
        scopes = [EntityScope.from_key(key) for key in await self._scope_keys(portfolio_id)]

        def job(scope: EntityScope):
            if period_type == PeriodType.MONTH:
                return lambda: self.consolidate_month(scope, period_key)
            return lambda: self.consolidate_year(scope, period_key)

        outcomes = await gather_bounded([job(s) for s in scopes], self.concurrency, return_exceptions=True)
        for scope, outcome in zip(scopes, outcomes):
            metrics.scopes_processed += 1
            if isinstance(outcome, Exception):
                message = f"{scope.key} {period_type.value} {period_key}: {outcome}"
                logger.warning(f"Consolidation failed for {message}")
                metrics.errors.append(message)
            elif outcome is None:
                metrics.empty_periods += 1
            else:
                metrics.records_written += 1

        logger.info(f"Consolidation run {metrics.summary()}")
        return metrics

    async def backfill_scope(self, scope: EntityScope, start: date, end: date, now: date) -> int:
        """
        Consolidate every closed month and year between two dates

        Returns:
            Number of checkpoints written
        """
        written = 0
        months = [m for m in months_between(start, end) if is_month_closed(m, now)]
        for month in months:
            if await self.consolidate_month(scope, month) is not None:
                written += 1

        for year in sorted({m[:4] for m in months}):
            if is_year_closed(year, now) and await self.consolidate_year(scope, year) is not None:
                written += 1

        logger.info(f"{scope.key}: backfilled {written} checkpoints up to {year_key(end)}")
        return written
