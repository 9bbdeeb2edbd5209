"""
PERIOD RETURNS CALCULATOR
Rolling-window TWR/MWR from year, month and daily checkpoints

RESPONSIBILITIES:
- 1M / 3M / 6M / YTD / 1Y / 2Y / 5Y returns as of a date
- Month-by-year return table and available years
- Whole entity or a single asset

RULES:
❌ No overlap: year checkpoints, then months no year covers, then days
   after the last checkpoint
✅ A checkpoint contributes to a window when it ends on or after the boundary
✅ Chaining reuses each checkpoint's end_factor / start_factor
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Union

from performance_engine.domain.models import (
    REFERENCE_CURRENCY,
    AssetPerformanceEntry,
    ConsolidatedAssetPeriod,
    ConsolidatedCurrencyPeriod,
    ConsolidatedPeriodRecord,
    Currency,
    CurrencyPerformance,
    DailyPerformanceRecord,
)
from performance_engine.domain.services.return_chainer import (
    DatedCashFlow,
    factor_to_return,
    weighted_modified_dietz,
)
from performance_engine.utils.time import month_key, shift_months

WINDOWS = ("one_month", "three_months", "six_months", "ytd", "one_year", "two_years", "five_years")


def period_boundaries(as_of: date) -> Dict[str, date]:
    """First date included in each rolling window"""
    return {
        "one_month": shift_months(as_of, -1),
        "three_months": shift_months(as_of, -3),
        "six_months": shift_months(as_of, -6),
        "ytd": date(as_of.year, 1, 1),
        "one_year": shift_months(as_of, -12),
        "two_years": shift_months(as_of, -24),
        "five_years": shift_months(as_of, -60),
    }


@dataclass
class WindowReturn:
    """TWR and MWR of one rolling window"""
    twr: float = 0.0
    mwr: Optional[float] = None
    has_data: bool = False
    docs_count: int = 0
    start_value: float = 0.0
    end_value: float = 0.0
    total_cash_flow: float = 0.0


@dataclass
class YearPerformance:
    months: Dict[str, float] = field(default_factory=dict)
    total: float = 0.0


@dataclass
class PeriodReturns:
    as_of: date
    windows: Dict[str, WindowReturn]
    performance_by_year: Dict[str, YearPerformance]
    available_years: List[str]


@dataclass
class _Checkpoint:
    start_date: date
    end_date: date
    growth: float
    start_value: float
    end_value: float
    cash_flow: float
    docs_count: int


@dataclass
class _WindowAccumulator:
    boundary: date
    factor: float = 1.0
    found: bool = False
    docs_count: int = 0
    start_value: float = 0.0
    end_value: float = 0.0
    total_cash_flow: float = 0.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    cash_flows: List[DatedCashFlow] = field(default_factory=list)

    def add(self, checkpoint: _Checkpoint) -> None:
        if checkpoint.end_date < self.boundary:
            return
        if not self.found:
            self.start_value = checkpoint.start_value
            self.start_date = checkpoint.start_date
            self.found = True
        self.factor *= checkpoint.growth
        self.end_value = checkpoint.end_value
        self.end_date = checkpoint.end_date
        self.total_cash_flow += checkpoint.cash_flow
        if checkpoint.cash_flow:
            # A checkpoint's net flow is dated at its midpoint
            midpoint = checkpoint.start_date + (checkpoint.end_date - checkpoint.start_date) / 2
            self.cash_flows.append(DatedCashFlow(midpoint, checkpoint.cash_flow))
        self.docs_count += checkpoint.docs_count

    def result(self) -> WindowReturn:
        if not self.found:
            return WindowReturn()
        return WindowReturn(
            twr=factor_to_return(self.factor),
            mwr=weighted_modified_dietz(
                self.start_value,
                self.end_value,
                self.cash_flows,
                self.start_date,
                self.end_date,
            ),
            has_data=True,
            docs_count=self.docs_count,
            start_value=self.start_value,
            end_value=self.end_value,
            total_cash_flow=self.total_cash_flow,
        )


class PeriodReturnsCalculator:
    """
    Period Returns Calculator

    Reads one currency of the entity, or one asset when asset_key is given.
    """

    def __init__(self, currency: Currency = REFERENCE_CURRENCY, asset_key: Optional[str] = None):
        self.currency = currency
        self.asset_key = asset_key

    def _consolidated_view(
        self, record: ConsolidatedPeriodRecord
    ) -> Optional[Union[ConsolidatedCurrencyPeriod, ConsolidatedAssetPeriod]]:
        block = record.for_currency(self.currency)
        if block is None:
            return None
        if self.asset_key is None:
            return block
        return block.asset_performance.get(self.asset_key)

    def _daily_view(
        self, record: DailyPerformanceRecord
    ) -> Optional[Union[CurrencyPerformance, AssetPerformanceEntry]]:
        block = record.for_currency(self.currency)
        if block is None:
            return None
        if self.asset_key is None:
            return block
        return block.asset_performance.get(self.asset_key)

    def _from_consolidated(self, record: ConsolidatedPeriodRecord) -> Optional[_Checkpoint]:
        view = self._consolidated_view(record)
        if view is None:
            return None
        growth = view.end_factor / view.start_factor if view.start_factor else 1.0
        return _Checkpoint(
            start_date=record.start_date,
            end_date=record.end_date,
            growth=growth,
            start_value=view.start_total_value,
            end_value=view.end_total_value,
            cash_flow=getattr(view, "total_cash_flow", 0.0),
            docs_count=record.docs_count,
        )

    def _from_daily(self, record: DailyPerformanceRecord) -> Optional[_Checkpoint]:
        view = self._daily_view(record)
        if view is None:
            return None
        return _Checkpoint(
            start_date=record.date,
            end_date=record.date,
            growth=1 + view.adjusted_daily_change_percentage / 100,
            start_value=view.total_value,
            end_value=view.total_value,
            cash_flow=view.total_cash_flow,
            docs_count=1,
        )

    def calculate(
        self,
        yearly: Sequence[ConsolidatedPeriodRecord],
        monthly: Sequence[ConsolidatedPeriodRecord],
        daily: Sequence[DailyPerformanceRecord],
        as_of: date,
    ) -> PeriodReturns:
        """
        Rolling returns as of a date

        Args:
            yearly: Year checkpoints of closed years, ascending
            monthly: Month checkpoints of closed months not covered by yearly, ascending
            daily: Daily records after the last checkpoint, ascending
            as_of: Reference date for the windows

        Returns:
            PeriodReturns with every window, the year table and available years
        """
        accumulators = {
            name: _WindowAccumulator(boundary=boundary)
            for name, boundary in period_boundaries(as_of).items()
        }
        monthly_returns: Dict[str, Dict[str, float]] = {}
        yearly_returns: Dict[str, float] = {}

        def feed(checkpoint: _Checkpoint) -> None:
            for accumulator in accumulators.values():
                accumulator.add(checkpoint)

        for record in yearly:
            checkpoint = self._from_consolidated(record)
            if checkpoint is None:
                continue
            feed(checkpoint)
            yearly_returns[record.period_key] = factor_to_return(checkpoint.growth)

        for record in monthly:
            checkpoint = self._from_consolidated(record)
            if checkpoint is None:
                continue
            feed(checkpoint)
            year, month = record.period_key.split("-")
            monthly_returns.setdefault(year, {})[str(int(month))] = factor_to_return(checkpoint.growth)

        open_month_growth: Dict[str, float] = {}
        for record in daily:
            checkpoint = self._from_daily(record)
            if checkpoint is None:
                continue
            feed(checkpoint)
            key = month_key(record.date)
            open_month_growth[key] = open_month_growth.get(key, 1.0) * checkpoint.growth

        for key, growth in open_month_growth.items():
            year, month = key.split("-")
            monthly_returns.setdefault(year, {})[str(int(month))] = factor_to_return(growth)

        performance_by_year = self._performance_by_year(monthly_returns, yearly_returns)
        return PeriodReturns(
            as_of=as_of,
            windows={name: accumulators[name].result() for name in WINDOWS},
            performance_by_year=performance_by_year,
            available_years=sorted(performance_by_year, reverse=True),
        )

    @staticmethod
    def _performance_by_year(
        monthly_returns: Dict[str, Dict[str, float]],
        yearly_returns: Dict[str, float],
    ) -> Dict[str, YearPerformance]:
        table: Dict[str, YearPerformance] = {}
        for year, months in monthly_returns.items():
            compound = 1.0
            for month in sorted(months, key=int):
                compound *= 1 + months[month] / 100
            filled = {str(month): months.get(str(month), 0.0) for month in range(1, 13)}
            table[year] = YearPerformance(months=filled, total=factor_to_return(compound))

        # Years known only from a year checkpoint keep their total, months unknown
        for year, total in yearly_returns.items():
            if year not in table:
                table[year] = YearPerformance(
                    months={str(month): 0.0 for month in range(1, 13)},
                    total=total,
                )
        return table
