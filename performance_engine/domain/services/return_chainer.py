"""
TIME-WEIGHTED RETURN CHAINER
Compounds adjusted daily returns, plus money-weighted (Modified Dietz) returns

RESPONSIBILITIES:
- Chain adjusted daily percentages into a factor
- Resume from any checkpoint factor
- Simple and day-weighted Modified Dietz

RULES:
❌ Zero-return days are never skipped (they are neutral)
❌ Undefined MWR is None, never 0
✅ factor *= (1 + adjusted / 100)
✅ Net deposits = -total cash flow
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from performance_engine.utils.time import days_between


class TimeWeightedReturnChainer:
    """
    Running TWR factor

    Example:
        chainer = TimeWeightedReturnChainer(start_factor=checkpoint.end_factor)
        chainer.extend(day.adjusted for day in month)
        chainer.period_return  # percent since start_factor
    """

    def __init__(self, start_factor: float = 1.0):
        self.start_factor = start_factor
        self.factor = start_factor
        self.days = 0

    def add(self, adjusted_percentage: float) -> float:
        """Compound one day and return the running factor"""
        self.factor *= 1 + adjusted_percentage / 100
        self.days += 1
        return self.factor

    def extend(self, adjusted_percentages: Iterable[float]) -> float:
        for adjusted in adjusted_percentages:
            self.add(adjusted)
        return self.factor

    @property
    def growth(self) -> float:
        """Growth since start_factor (1.0 = flat)"""
        if self.start_factor == 0:
            return 0.0
        return self.factor / self.start_factor

    @property
    def period_return(self) -> float:
        """Percent return accumulated since start_factor"""
        return (self.growth - 1) * 100


def chain_factor(adjusted_percentages: Iterable[float], start_factor: float = 1.0) -> float:
    chainer = TimeWeightedReturnChainer(start_factor)
    return chainer.extend(adjusted_percentages)


def factor_to_return(factor: float) -> float:
    return (factor - 1) * 100


def modified_dietz(start_value: float, end_value: float, total_cash_flow: float) -> Optional[float]:
    """
    Simple Modified Dietz money-weighted return

    "Opened from zero" is keyed on start_value: with no starting value (or no
    usable base) and net deposits, the return is measured against the deposits
    even when start_value + deposits / 2 is positive.

    Args:
        start_value: Value at the start of the period
        end_value: Value at the end of the period
        total_cash_flow: Net cash flow over the period (negative = deposits)

    Returns:
        MWR in percent, or None when no usable base exists
    """
    net_deposits = -total_cash_flow
    investment_base = start_value + net_deposits / 2

    # Position opened from zero: measure against what was put in
    if (start_value <= 0 or investment_base <= 0) and net_deposits > 0:
        return (end_value - net_deposits) / net_deposits * 100

    if investment_base <= 0:
        return None

    gain = end_value - start_value - net_deposits
    return gain / investment_base * 100


@dataclass(frozen=True)
class DatedCashFlow:
    date: date
    amount: float


def weighted_modified_dietz(
    start_value: float,
    end_value: float,
    cash_flows: Sequence[DatedCashFlow],
    start_date: date,
    end_date: date,
) -> Optional[float]:
    """
    Day-weighted Modified Dietz

    Each flow is weighted by the share of the period it stayed invested
    (days remaining / total days). Extreme results (beyond +/-100%) give way
    to the simple formula when that one is smaller in magnitude.

    Returns:
        MWR in percent, or None when no usable base exists
    """
    total_cash_flow = sum(cf.amount for cf in cash_flows)
    total_days = days_between(start_date, end_date)
    if total_days <= 0:
        return modified_dietz(start_value, end_value, total_cash_flow)

    weighted_cash_flow = sum(
        cf.amount * days_between(cf.date, end_date) / total_days for cf in cash_flows
    )
    net_deposits = -total_cash_flow
    weighted_net_deposits = -weighted_cash_flow

    if start_value <= 0:
        if net_deposits <= 0:
            return None
        base = weighted_net_deposits if weighted_net_deposits > 0 else net_deposits
        result = (end_value - net_deposits) / base * 100
        if abs(result) > 100:
            return (end_value - net_deposits) / net_deposits * 100
        return result

    denominator = start_value + weighted_net_deposits
    if denominator <= 0:
        return modified_dietz(start_value, end_value, total_cash_flow)

    result = (end_value - start_value - net_deposits) / denominator * 100
    if abs(result) > 100:
        simple = modified_dietz(start_value, end_value, total_cash_flow)
        if simple is not None and abs(simple) < abs(result):
            return simple
    return result
