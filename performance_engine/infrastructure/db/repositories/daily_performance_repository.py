"""
Daily Performance Repository
Read/write daily performance records per scope
"""

import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import date
from typing import List, Optional, Sequence

from performance_engine.infrastructure.db.models import DailyPerformanceModel
from performance_engine.infrastructure.db.serializers import daily_to_payload, payload_to_daily
from performance_engine.domain.models import DailyPerformanceRecord, EntityScope

logger = logging.getLogger(__name__)


class DailyPerformanceRepository:
    """Repository for DailyPerformanceRecord"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def _get_model(self, scope_key: str, record_date: date) -> Optional[DailyPerformanceModel]:
        result = await self.session.execute(
            select(DailyPerformanceModel).where(
                DailyPerformanceModel.scope_key == scope_key,
                DailyPerformanceModel.date == record_date,
            )
        )
        return result.scalar_one_or_none()

    async def save(self, record: DailyPerformanceRecord) -> None:
        """
        Insert or fully replace the record for (scope, date)

        Args:
            record: DailyPerformanceRecord to store
        """
        model = await self._get_model(record.scope.key, record.date)
        payload = daily_to_payload(record)
        if model is None:
            self.session.add(
                DailyPerformanceModel(scope_key=record.scope.key, date=record.date, payload=payload)
            )
        else:
            model.payload = payload
        await self.session.flush()

    async def save_many(self, records: Sequence[DailyPerformanceRecord]) -> int:
        for record in records:
            await self.save(record)
        return len(records)

    async def replace_batch(self, records: Sequence[DailyPerformanceRecord]) -> int:
        """
        Replace a batch of records in one transaction

        Args:
            records: Corrected records (full payload replace)

        Returns:
            Number of records written

        Raises:
            Exception: Anything raised while writing; the batch is rolled back
        """
        try:
            written = await self.save_many(records)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.error(f"Rolled back batch of {len(records)} daily records")
            raise
        return written

    async def get(self, scope: EntityScope, record_date: date) -> Optional[DailyPerformanceRecord]:
        """
        Get the record of a scope for a date

        Returns:
            DailyPerformanceRecord or None
        """
        model = await self._get_model(scope.key, record_date)
        return self._to_domain(model) if model else None

    async def get_latest_before(self, scope: EntityScope, before: date) -> Optional[DailyPerformanceRecord]:
        """Most recent stored record strictly before a date"""
        result = await self.session.execute(
            select(DailyPerformanceModel)
            .where(
                DailyPerformanceModel.scope_key == scope.key,
                DailyPerformanceModel.date < before,
            )
            .order_by(DailyPerformanceModel.date.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list_for_scope(
        self,
        scope: EntityScope,
        start: Optional[date] = None,
        end: Optional[date] = None,
        strict: bool = True,
    ) -> List[DailyPerformanceRecord]:
        """
        Records of a scope in ascending date order

        Args:
            scope: Entity scope
            start: First date (inclusive)
            end: Last date (inclusive)
            strict: Raise on malformed payloads (False leaves NaN for later validation)

        Returns:
            List of DailyPerformanceRecord
        """
        query = select(DailyPerformanceModel).where(DailyPerformanceModel.scope_key == scope.key)
        if start is not None:
            query = query.where(DailyPerformanceModel.date >= start)
        if end is not None:
            query = query.where(DailyPerformanceModel.date <= end)
        result = await self.session.execute(query.order_by(DailyPerformanceModel.date.asc()))

        return [self._to_domain(m, strict=strict) for m in result.scalars().all()]

    async def list_scope_keys(self, portfolio_id: Optional[str] = None) -> List[str]:
        """Distinct scope keys with stored records"""
        result = await self.session.execute(
            select(DailyPerformanceModel.scope_key).distinct().order_by(DailyPerformanceModel.scope_key)
        )
        keys = list(result.scalars().all())
        if portfolio_id is None:
            return keys
        return [key for key in keys if EntityScope.from_key(key).portfolio_id == portfolio_id]

    @staticmethod
    def _to_domain(model: DailyPerformanceModel, strict: bool = True) -> DailyPerformanceRecord:
        """Convert database model to domain entity"""
        return payload_to_daily(model.scope_key, model.date, model.payload, strict=strict)
