"""
SERVICE: DAILY PERFORMANCE PIPELINE

ledger + snapshots -> daily records (reference currency) -> every tracked
currency -> persisted

• Dates of one scope strictly in order
• Scopes of one portfolio concurrently (one session each)
• Missing exchange rates skipped and reported per currency/date
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from performance_engine.config import settings
from performance_engine.domain.models import EntityScope, ScopeSnapshot, Transaction
from performance_engine.domain.services.consistency_corrector import assert_cash_flow_consistent
from performance_engine.domain.services.currency_converter import CurrencyConverter, SkippedConversion
from performance_engine.domain.services.daily_performance import DailyPerformanceCalculator, merge_snapshots
from performance_engine.infrastructure.db import database
from performance_engine.infrastructure.db.repositories.daily_performance_repository import (
    DailyPerformanceRepository,
)
from performance_engine.services.runtime import build_attributor
from performance_engine.utils.concurrency import gather_bounded

logger = logging.getLogger(__name__)


@dataclass
class ScopeRunResult:
    scope_key: str
    records_written: int = 0
    skipped: List[SkippedConversion] = field(default_factory=list)
    error: Optional[str] = None


class DailyPerformanceService:
    """Computes and stores daily performance records"""

    def __init__(
        self,
        converter: CurrencyConverter,
        session_factory: Optional[async_sessionmaker] = None,
        calculator: Optional[DailyPerformanceCalculator] = None,
        concurrency: int = settings.SCOPE_CONCURRENCY,
    ):
        self.converter = converter
        self.session_factory = session_factory or database.async_session_factory
        self.calculator = calculator or DailyPerformanceCalculator(build_attributor())
        self.concurrency = concurrency

    async def compute_scope(
        self,
        snapshots: Sequence[ScopeSnapshot],
        transactions: Sequence[Transaction],
    ) -> ScopeRunResult:
        """
        Compute, convert and store the records of one scope

        Args:
            snapshots: Snapshots of one scope, ascending by date
            transactions: Ledger covering the snapshot dates

        Returns:
            ScopeRunResult
        """
        if not snapshots:
            return ScopeRunResult(scope_key="")

        scope = snapshots[0].scope
        result = ScopeRunResult(scope_key=scope.key)

        async with self.session_factory() as session:
            repository = DailyPerformanceRepository(session)
            seed = await repository.get_latest_before(scope, snapshots[0].date)
            records = self.calculator.calculate_series(snapshots, transactions, seed=seed)

            converted = []
            for record in records:
                conversion = await self.converter.convert_record(record)
                result.skipped.extend(conversion.skipped)
                converted.append(conversion.record)

            tolerance = self.calculator.attributor.cash_flow_tolerance
            for record in converted:
                assert_cash_flow_consistent(record, tolerance)
            result.records_written = await self._store(session, repository, converted)

        logger.info(
            f"{scope.key}: stored {result.records_written} daily records "
            f"({snapshots[0].date} .. {snapshots[-1].date}), {len(result.skipped)} conversions skipped"
        )
        return result

    @staticmethod
    async def _store(session: AsyncSession, repository: DailyPerformanceRepository, records) -> int:
        try:
            written = await repository.save_many(records)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return written

    async def compute_portfolio(
        self,
        portfolio_id: str,
        account_snapshots: Dict[str, Sequence[ScopeSnapshot]],
        transactions: Sequence[Transaction],
    ) -> List[ScopeRunResult]:
        """
        Every account scope plus the overall scope of a portfolio

        Args:
            portfolio_id: Portfolio identifier
            account_snapshots: account_id -> ascending snapshots of that account
            transactions: Whole ledger of the portfolio (account_id set per entry)

        Returns:
            One ScopeRunResult per scope (accounts first, overall last)
        """
        overall_scope = EntityScope(portfolio_id=portfolio_id)

        by_date: Dict[date, List[ScopeSnapshot]] = defaultdict(list)
        for snapshots in account_snapshots.values():
            for snapshot in snapshots:
                by_date[snapshot.date].append(snapshot)
        overall_snapshots = [merge_snapshots(overall_scope, by_date[d]) for d in sorted(by_date)]

        series = [list(s) for s in account_snapshots.values() if s] + [overall_snapshots]
        jobs = [lambda s=s: self.compute_scope(s, transactions) for s in series if s]
        outcomes = await gather_bounded(jobs, self.concurrency, return_exceptions=True)

        results: List[ScopeRunResult] = []
        for snapshots, outcome in zip([s for s in series if s], outcomes):
            if isinstance(outcome, Exception):
                scope_key = snapshots[0].scope.key
                logger.error(f"{scope_key}: daily performance failed: {outcome}")
                results.append(ScopeRunResult(scope_key=scope_key, error=str(outcome)))
            else:
                results.append(outcome)
        return results
