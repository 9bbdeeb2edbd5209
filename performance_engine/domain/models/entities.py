"""
Domain Models - Entities
Pure domain objects with no infrastructure dependencies
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional


CONSOLIDATED_SCHEMA_VERSION = 1


class Currency(str, Enum):
    """Tracked currencies; USD is the reference currency"""
    USD = "USD"
    COP = "COP"
    EUR = "EUR"
    MXN = "MXN"
    BRL = "BRL"
    GBP = "GBP"
    CAD = "CAD"


REFERENCE_CURRENCY = Currency.USD


class ScopeLevel(str, Enum):
    """Level an entity scope lives at"""
    OVERALL = "overall"
    ACCOUNT = "account"


class PeriodType(str, Enum):
    """Consolidated period granularity"""
    MONTH = "month"
    YEAR = "year"


class TransactionType(str, Enum):
    """Ledger transaction type"""
    BUY = "buy"
    SELL = "sell"
    CASH_INCOME = "cash_income"
    CASH_OUTCOME = "cash_outcome"


@dataclass(frozen=True)
class EntityScope:
    """A portfolio (overall) or one of its accounts - Immutable"""
    portfolio_id: str
    account_id: Optional[str] = None

    def __post_init__(self):
        if not self.portfolio_id:
            raise ValueError("portfolio_id cannot be empty")

    @property
    def level(self) -> ScopeLevel:
        return ScopeLevel.OVERALL if self.account_id is None else ScopeLevel.ACCOUNT

    @property
    def key(self) -> str:
        """Stable storage key"""
        if self.account_id is None:
            return f"overall:{self.portfolio_id}"
        return f"account:{self.portfolio_id}:{self.account_id}"

    @staticmethod
    def from_key(key: str) -> "EntityScope":
        parts = key.split(":")
        if parts[0] == "overall" and len(parts) == 2:
            return EntityScope(portfolio_id=parts[1])
        if parts[0] == "account" and len(parts) == 3:
            return EntityScope(portfolio_id=parts[1], account_id=parts[2])
        raise ValueError(f"Invalid scope key: {key}")


@dataclass(frozen=True)
class Transaction:
    """Ledger entry - Immutable"""
    date: date
    asset_key: str
    type: TransactionType
    amount: float
    price: float = 0.0
    account_id: Optional[str] = None


@dataclass(frozen=True)
class AssetSnapshot:
    """End-of-day position of one asset, in the reference currency"""
    asset_key: str
    units: float
    total_value: float
    total_investment: float
    done_profit_and_loss: float = 0.0


@dataclass(frozen=True)
class ScopeSnapshot:
    """End-of-day market snapshot for one scope, in the reference currency"""
    scope: EntityScope
    date: date
    assets: List[AssetSnapshot]

    @property
    def total_value(self) -> float:
        return sum(asset.total_value for asset in self.assets)

    @property
    def total_investment(self) -> float:
        return sum(asset.total_investment for asset in self.assets)


@dataclass(frozen=True)
class DailyReturn:
    """Raw and cash-flow-adjusted daily change, in percent"""
    raw: float
    adjusted: float


@dataclass(frozen=True)
class AssetPerformanceEntry:
    """Per-asset daily figures inside one currency block"""
    units: float
    total_value: float
    total_investment: float
    total_cash_flow: float
    raw_daily_change_percentage: float
    adjusted_daily_change_percentage: float
    unrealized_profit_and_loss: float
    done_profit_and_loss: float
    total_roi: float = 0.0
    implied_cash_flow: bool = False


@dataclass(frozen=True)
class CurrencyPerformance:
    """Per-currency sub-object of a daily record"""
    total_value: float
    total_investment: float
    total_cash_flow: float
    raw_daily_change_percentage: float
    adjusted_daily_change_percentage: float
    daily_return: float
    unrealized_pnl: float
    done_profit_and_loss: float
    total_roi: float = 0.0
    asset_performance: Dict[str, AssetPerformanceEntry] = field(default_factory=dict)

    @property
    def asset_cash_flow_sum(self) -> float:
        return sum(entry.total_cash_flow for entry in self.asset_performance.values())


@dataclass(frozen=True)
class DailyPerformanceRecord:
    """Performance of one scope on one date, per currency"""
    scope: EntityScope
    date: date
    currencies: Dict[Currency, CurrencyPerformance]

    def for_currency(self, currency: Currency) -> Optional[CurrencyPerformance]:
        return self.currencies.get(currency)


@dataclass(frozen=True)
class ConsolidatedAssetPeriod:
    """Chained factors of one asset over a consolidated period"""
    start_factor: float
    end_factor: float
    period_return: float
    start_total_value: float
    end_total_value: float


@dataclass(frozen=True)
class ConsolidatedCurrencyPeriod:
    """Per-currency block of a consolidated period"""
    start_total_value: float
    end_total_value: float
    start_total_investment: float
    end_total_investment: float
    start_factor: float
    end_factor: float
    period_return: float
    personal_return: Optional[float]
    total_cash_flow: float
    valid_docs_count: int
    asset_performance: Dict[str, ConsolidatedAssetPeriod] = field(default_factory=dict)


@dataclass(frozen=True)
class ConsolidatedPeriodRecord:
    """Month or year checkpoint derived from daily records"""
    scope: EntityScope
    period_type: PeriodType
    period_key: str
    start_date: date
    end_date: date
    docs_count: int
    currencies: Dict[Currency, ConsolidatedCurrencyPeriod]
    version: int = CONSOLIDATED_SCHEMA_VERSION

    def for_currency(self, currency: Currency) -> Optional[ConsolidatedCurrencyPeriod]:
        return self.currencies.get(currency)
