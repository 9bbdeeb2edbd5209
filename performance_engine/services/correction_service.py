"""
SERVICE: CONSISTENCY VERIFICATION & CORRECTION

Independent pass over stored daily records.

• One session per scope, scopes concurrently
• dry_run decides whether batches are written; logic is identical
• Malformed record: that scope's current batch is aborted, others continue
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from performance_engine.config import settings
from performance_engine.domain.exceptions import MalformedRecordError
from performance_engine.domain.models import EntityScope, ScopeLevel
from performance_engine.domain.services.consistency_corrector import (
    ConsistencyCorrector,
    ConsistencyVerifier,
    CorrectionReport,
    Discrepancy,
)
from performance_engine.domain.services.currency_converter import CurrencyConverter
from performance_engine.infrastructure.cache.invalidation import CacheInvalidator
from performance_engine.infrastructure.cache.redis_cache import RedisCache
from performance_engine.infrastructure.db import database
from performance_engine.infrastructure.db.repositories.daily_performance_repository import (
    DailyPerformanceRepository,
)
from performance_engine.services.runtime import build_attributor
from performance_engine.utils.concurrency import gather_bounded

logger = logging.getLogger(__name__)


class CorrectionService:
    """Runs the verifier/corrector over stored scopes"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        verifier: Optional[ConsistencyVerifier] = None,
        cache: Optional[RedisCache] = None,
        batch_size: int = settings.CORRECTION_BATCH_SIZE,
        dry_run: bool = settings.DRY_RUN,
        concurrency: int = settings.SCOPE_CONCURRENCY,
    ):
        self.session_factory = session_factory or database.async_session_factory
        self.verifier = verifier or ConsistencyVerifier(
            field_threshold=settings.FIELD_DISCREPANCY_THRESHOLD,
            cross_level_threshold=settings.CROSS_LEVEL_DISCREPANCY_THRESHOLD,
            cash_flow_tolerance=settings.CASH_FLOW_TOLERANCE,
            attributor=build_attributor(),
        )
        self.cache = cache
        self.batch_size = batch_size
        self.dry_run = dry_run
        self.concurrency = concurrency

    async def correct_scope(self, scope: EntityScope, dry_run: Optional[bool] = None) -> CorrectionReport:
        """
        Verify one scope and apply corrections unless dry-run

        Args:
            scope: Entity scope
            dry_run: Override the service default

        Returns:
            CorrectionReport
        """
        dry_run = self.dry_run if dry_run is None else dry_run
        async with self.session_factory() as session:
            repository = DailyPerformanceRepository(session)
            records = await repository.list_for_scope(scope, strict=False)
            corrector = ConsistencyCorrector(
                repository=repository,
                verifier=self.verifier,
                invalidator=CacheInvalidator(session, self.cache),
                batch_size=self.batch_size,
                dry_run=dry_run,
            )
            return await corrector.run(records)

    async def _scope_keys(self, portfolio_id: Optional[str]) -> List[str]:
        async with self.session_factory() as session:
            return await DailyPerformanceRepository(session).list_scope_keys(portfolio_id)

    async def correct_all(
        self,
        portfolio_id: Optional[str] = None,
        dry_run: Optional[bool] = None,
    ) -> List[CorrectionReport]:
        """
        Every stored scope (optionally of one portfolio)

        Raises:
            MalformedRecordError: After all scopes ran, if any scope hit one
        """
        scopes = [EntityScope.from_key(key) for key in await self._scope_keys(portfolio_id)]
        outcomes = await gather_bounded(
            [lambda s=s: self.correct_scope(s, dry_run) for s in scopes],
            self.concurrency,
            return_exceptions=True,
        )

        reports: List[CorrectionReport] = []
        malformed: List[MalformedRecordError] = []
        for scope, outcome in zip(scopes, outcomes):
            if isinstance(outcome, MalformedRecordError):
                logger.error(f"{scope.key}: correction aborted: {outcome}")
                malformed.append(outcome)
            elif isinstance(outcome, Exception):
                raise outcome
            else:
                reports.append(outcome)

        corrected = sum(r.corrected for r in reports)
        unchanged = sum(r.unchanged for r in reports)
        logger.info(
            f"Correction run over {len(scopes)} scopes: {corrected} corrected, {unchanged} unchanged"
            f"{' (dry run)' if (self.dry_run if dry_run is None else dry_run) else ''}"
        )
        if malformed:
            raise malformed[0]
        return reports

    async def verify_cross_level(self, portfolio_id: str) -> List[Discrepancy]:
        """Overall records vs summed account records of one portfolio (report only)"""
        async with self.session_factory() as session:
            repository = DailyPerformanceRepository(session)
            keys = await repository.list_scope_keys(portfolio_id)
            scopes = [EntityScope.from_key(key) for key in keys]
            overall = await repository.list_for_scope(EntityScope(portfolio_id=portfolio_id))
            accounts = [
                await repository.list_for_scope(scope)
                for scope in scopes
                if scope.level == ScopeLevel.ACCOUNT
            ]
        return self.verifier.verify_cross_level(overall, accounts)

    async def repair_currencies(
        self,
        scope: EntityScope,
        converter: CurrencyConverter,
        dry_run: Optional[bool] = None,
    ) -> int:
        """
        Regenerate currency blocks whose value ratio is implausible

        Returns:
            Number of records repaired (or that would be, in dry-run)
        """
        dry_run = self.dry_run if dry_run is None else dry_run
        async with self.session_factory() as session:
            repository = DailyPerformanceRepository(session)
            records = await repository.list_for_scope(scope)
            corrupted = converter.find_corrupted(records)
            dates = sorted({c.date for c in corrupted})
            if not dates:
                return 0

            by_date = {record.date: record for record in records}
            repaired = []
            for record_date in dates:
                result = await converter.repair_record(by_date[record_date])
                repaired.append(result.record)

            logger.info(
                f"{'[DRY RUN] ' if dry_run else ''}{scope.key}: {len(repaired)} records with "
                f"implausible currency values"
            )
            if dry_run:
                return len(repaired)

            invalidator = CacheInvalidator(session, self.cache)
            for start in range(0, len(repaired), self.batch_size):
                batch = repaired[start:start + self.batch_size]
                await repository.replace_batch(batch)
                await invalidator.invalidate(scope, [r.date for r in batch])
        return len(repaired)
