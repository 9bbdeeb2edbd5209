"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Constants
    CONSOLIDATED_SCHEMA_VERSION,
    REFERENCE_CURRENCY,

    # Enums
    Currency,
    PeriodType,
    ScopeLevel,
    TransactionType,

    # Entities
    AssetPerformanceEntry,
    AssetSnapshot,
    ConsolidatedAssetPeriod,
    ConsolidatedCurrencyPeriod,
    ConsolidatedPeriodRecord,
    CurrencyPerformance,
    DailyPerformanceRecord,
    DailyReturn,
    EntityScope,
    ScopeSnapshot,
    Transaction,
)

__all__ = [
    # Constants
    "CONSOLIDATED_SCHEMA_VERSION",
    "REFERENCE_CURRENCY",

    # Enums
    "Currency",
    "PeriodType",
    "ScopeLevel",
    "TransactionType",

    # Entities
    "AssetPerformanceEntry",
    "AssetSnapshot",
    "ConsolidatedAssetPeriod",
    "ConsolidatedCurrencyPeriod",
    "ConsolidatedPeriodRecord",
    "CurrencyPerformance",
    "DailyPerformanceRecord",
    "DailyReturn",
    "EntityScope",
    "ScopeSnapshot",
    "Transaction",
]
