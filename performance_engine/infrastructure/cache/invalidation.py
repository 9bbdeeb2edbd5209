"""
Cache invalidation after daily records change.

Consolidated months/years containing a corrected date are deleted (they are
regenerated by the next consolidation run), cached reporting keys for the
scope are dropped and a ``performance.invalidated`` event is published.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from performance_engine.domain.models import EntityScope, PeriodType
from performance_engine.infrastructure.cache.redis_cache import RedisCache
from performance_engine.infrastructure.db.repositories.consolidated_period_repository import (
    ConsolidatedPeriodRepository,
)
from performance_engine.utils.time import month_key, year_key

logger = logging.getLogger(__name__)

INVALIDATION_CHANNEL = "performance.invalidated"


def returns_cache_prefix(scope: EntityScope) -> str:
    return f"returns:{scope.key}:"


@dataclass
class InvalidationResult:
    scope_key: str
    months: List[str] = field(default_factory=list)
    years: List[str] = field(default_factory=list)
    deleted_periods: int = 0
    deleted_cache_keys: int = 0
    published: bool = False


class CacheInvalidator:
    """Drops derived aggregates of a scope after its daily records change"""

    def __init__(self, session: AsyncSession, cache: Optional[RedisCache] = None):
        self.session = session
        self.periods = ConsolidatedPeriodRepository(session)
        self.cache = cache

    async def invalidate(self, scope: EntityScope, dates: Sequence[date]) -> InvalidationResult:
        """
        Invalidate everything derived from the given dates of a scope

        Args:
            scope: Scope whose daily records changed
            dates: Changed dates

        Returns:
            InvalidationResult
        """
        months = sorted({month_key(d) for d in dates})
        years = sorted({year_key(d) for d in dates})
        result = InvalidationResult(scope_key=scope.key, months=months, years=years)
        if not dates:
            return result

        result.deleted_periods += await self.periods.delete_for_keys(scope, PeriodType.MONTH, months)
        result.deleted_periods += await self.periods.delete_for_keys(scope, PeriodType.YEAR, years)
        await self.session.commit()

        event = {"scope": scope.key, "months": months, "years": years}
        if self.cache is not None:
            result.deleted_cache_keys = await self.cache.delete_prefix(returns_cache_prefix(scope))
            result.published = await self.cache.publish(INVALIDATION_CHANNEL, event)

        logger.info(
            f"Invalidated {scope.key}: {result.deleted_periods} consolidated periods "
            f"({', '.join(months)}), {result.deleted_cache_keys} cache keys, "
            f"event {'published' if result.published else 'logged only'}"
        )
        return result
