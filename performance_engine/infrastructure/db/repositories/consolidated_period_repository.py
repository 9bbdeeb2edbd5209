"""
Consolidated Period Repository
Month/year checkpoints; derived data, safe to delete and regenerate
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from typing import List, Optional, Sequence

from performance_engine.infrastructure.db.models import ConsolidatedPeriodModel
from performance_engine.infrastructure.db.serializers import payload_to_period, period_to_payload
from performance_engine.domain.models import ConsolidatedPeriodRecord, EntityScope, PeriodType


class ConsolidatedPeriodRepository:
    """Repository for ConsolidatedPeriodRecord"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def _get_model(
        self, scope_key: str, period_type: PeriodType, period_key: str
    ) -> Optional[ConsolidatedPeriodModel]:
        result = await self.session.execute(
            select(ConsolidatedPeriodModel).where(
                ConsolidatedPeriodModel.scope_key == scope_key,
                ConsolidatedPeriodModel.period_type == period_type.value,
                ConsolidatedPeriodModel.period_key == period_key,
            )
        )
        return result.scalar_one_or_none()

    async def save(self, record: ConsolidatedPeriodRecord) -> None:
        """
        Insert or replace the checkpoint for (scope, period type, period key)

        Args:
            record: ConsolidatedPeriodRecord to store
        """
        model = await self._get_model(record.scope.key, record.period_type, record.period_key)
        if model is None:
            model = ConsolidatedPeriodModel(
                scope_key=record.scope.key,
                period_type=record.period_type.value,
                period_key=record.period_key,
            )
            self.session.add(model)

        model.start_date = record.start_date
        model.end_date = record.end_date
        model.docs_count = record.docs_count
        model.version = record.version
        model.payload = period_to_payload(record)
        await self.session.flush()

    async def get(
        self, scope: EntityScope, period_type: PeriodType, period_key: str
    ) -> Optional[ConsolidatedPeriodRecord]:
        model = await self._get_model(scope.key, period_type, period_key)
        return self._to_domain(model) if model else None

    async def list_for_scope(
        self,
        scope: EntityScope,
        period_type: PeriodType,
        start_key: Optional[str] = None,
        end_key: Optional[str] = None,
    ) -> List[ConsolidatedPeriodRecord]:
        """
        Checkpoints of a scope in ascending period order

        Args:
            scope: Entity scope
            period_type: month or year
            start_key: First period key (inclusive)
            end_key: Last period key (inclusive)

        Returns:
            List of ConsolidatedPeriodRecord
        """
        query = select(ConsolidatedPeriodModel).where(
            ConsolidatedPeriodModel.scope_key == scope.key,
            ConsolidatedPeriodModel.period_type == period_type.value,
        )
        if start_key is not None:
            query = query.where(ConsolidatedPeriodModel.period_key >= start_key)
        if end_key is not None:
            query = query.where(ConsolidatedPeriodModel.period_key <= end_key)
        result = await self.session.execute(query.order_by(ConsolidatedPeriodModel.period_key.asc()))

        return [self._to_domain(m) for m in result.scalars().all()]

    async def delete_for_keys(
        self, scope: EntityScope, period_type: PeriodType, period_keys: Sequence[str]
    ) -> int:
        """
        Delete checkpoints of a scope

        Returns:
            Number of rows deleted
        """
        if not period_keys:
            return 0
        result = await self.session.execute(
            delete(ConsolidatedPeriodModel).where(
                ConsolidatedPeriodModel.scope_key == scope.key,
                ConsolidatedPeriodModel.period_type == period_type.value,
                ConsolidatedPeriodModel.period_key.in_(list(period_keys)),
            )
        )
        await self.session.flush()
        return result.rowcount or 0

    @staticmethod
    def _to_domain(model: ConsolidatedPeriodModel) -> ConsolidatedPeriodRecord:
        """Convert database model to domain entity"""
        return payload_to_period(
            scope_key=model.scope_key,
            period_type=model.period_type,
            period_key=model.period_key,
            start_date=model.start_date,
            end_date=model.end_date,
            docs_count=model.docs_count,
            version=model.version,
            payload=model.payload,
        )
