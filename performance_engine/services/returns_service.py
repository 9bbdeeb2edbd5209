"""
SERVICE: ROLLING PERIOD RETURNS

Reads year/month checkpoints plus the daily records after the last checkpoint
and returns 1M..5Y TWR/MWR. Results are cached in Redis per scope until the
scope is invalidated.
"""

import logging
from dataclasses import asdict
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from performance_engine.domain.models import (
    REFERENCE_CURRENCY,
    ConsolidatedPeriodRecord,
    Currency,
    EntityScope,
    PeriodType,
)
from performance_engine.domain.services.period_returns import PeriodReturns, PeriodReturnsCalculator
from performance_engine.infrastructure.cache.invalidation import returns_cache_prefix
from performance_engine.infrastructure.cache.redis_cache import RedisCache
from performance_engine.infrastructure.db import database
from performance_engine.infrastructure.db.repositories.consolidated_period_repository import (
    ConsolidatedPeriodRepository,
)
from performance_engine.infrastructure.db.repositories.daily_performance_repository import (
    DailyPerformanceRepository,
)
from performance_engine.utils.time import month_key

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 6 * 3600


def period_returns_to_dict(returns: PeriodReturns) -> Dict[str, Any]:
    data = asdict(returns)
    data["as_of"] = returns.as_of.isoformat()
    return data


class PeriodReturnsService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        cache: Optional[RedisCache] = None,
    ):
        self.session_factory = session_factory or database.async_session_factory
        self.cache = cache

    @staticmethod
    def _cache_key(scope: EntityScope, currency: Currency, asset_key: Optional[str], as_of: date) -> str:
        return f"{returns_cache_prefix(scope)}{currency.value}:{asset_key or 'all'}:{as_of.isoformat()}"

    async def get_period_returns(
        self,
        scope: EntityScope,
        as_of: date,
        currency: Currency = REFERENCE_CURRENCY,
        asset_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Rolling returns of a scope (or one of its assets) as of a date

        Args:
            scope: Entity scope
            as_of: Reference date
            currency: Currency to read
            asset_key: Restrict to one asset ("<ticker>_<assetType>")

        Returns:
            Serializable dict of PeriodReturns
        """
        key = self._cache_key(scope, currency, asset_key, as_of)
        if self.cache is not None:
            cached = await self.cache.get_json(key)
            if cached is not None:
                return cached

        yearly, monthly, daily = await self._load(scope, as_of)
        returns = PeriodReturnsCalculator(currency=currency, asset_key=asset_key).calculate(
            yearly, monthly, daily, as_of
        )
        data = period_returns_to_dict(returns)

        if self.cache is not None:
            await self.cache.set_json(key, data, CACHE_TTL_SECONDS)
        return data

    async def _load(self, scope: EntityScope, as_of: date):
        current_year = str(as_of.year)
        current_month = month_key(as_of)

        async with self.session_factory() as session:
            periods = ConsolidatedPeriodRepository(session)
            yearly: List[ConsolidatedPeriodRecord] = [
                y for y in await periods.list_for_scope(scope, PeriodType.YEAR) if y.period_key < current_year
            ]
            covered_years = {y.period_key for y in yearly}
            monthly = [
                m
                for m in await periods.list_for_scope(scope, PeriodType.MONTH)
                if m.period_key < current_month and m.period_key[:4] not in covered_years
            ]

            checkpoints = yearly + monthly
            daily_start = max(c.end_date for c in checkpoints) + timedelta(days=1) if checkpoints else None
            daily = await DailyPerformanceRepository(session).list_for_scope(scope, daily_start, as_of)

        logger.debug(
            f"{scope.key}: returns as of {as_of} from {len(yearly)} years, "
            f"{len(monthly)} months, {len(daily)} days"
        )
        return yearly, monthly, daily
