"""
Database Models (SQLAlchemy ORM)
Daily records are history (rewritten only by corrections);
consolidated periods are derived and may be deleted at any time
"""

from sqlalchemy import Column, Integer, String, Date, DateTime, JSON, Index, UniqueConstraint

from performance_engine.infrastructure.db.database import Base
from performance_engine.utils.time import now_ny_naive


class DailyPerformanceModel(Base):
    """One scope, one date; per-currency blocks in payload"""
    __tablename__ = "daily_performance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope_key = Column(String(200), nullable=False)
    date = Column(Date, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_ny_naive)
    updated_at = Column(DateTime, nullable=False, default=now_ny_naive, onupdate=now_ny_naive)

    __table_args__ = (
        UniqueConstraint("scope_key", "date", name="uq_daily_performance_scope_date"),
        Index("idx_daily_performance_scope_date", "scope_key", "date"),
    )


class ConsolidatedPeriodModel(Base):
    """Month/year checkpoint of one scope"""
    __tablename__ = "consolidated_period"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope_key = Column(String(200), nullable=False)
    period_type = Column(String(10), nullable=False)
    period_key = Column(String(7), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    docs_count = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=now_ny_naive, onupdate=now_ny_naive)

    __table_args__ = (
        UniqueConstraint("scope_key", "period_type", "period_key", name="uq_consolidated_period_key"),
        Index("idx_consolidated_period_scope_type", "scope_key", "period_type"),
    )
