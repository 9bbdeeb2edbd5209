"""
Daily return formulas shared by the pipeline, the attributor and the corrector.
"""

from typing import Optional

from performance_engine.domain.models import DailyReturn


def compute_daily_return(
    previous_value: Optional[float],
    current_value: float,
    cash_flow: float = 0.0,
) -> DailyReturn:
    """
    Daily change of an entity between two snapshots

    Args:
        previous_value: Yesterday's total value (None when absent)
        current_value: Today's total value
        cash_flow: Today's net cash flow (negative = deposit/buy)

    Returns:
        DailyReturn with raw and adjusted percentages
    """
    if previous_value is None or previous_value <= 0:
        return DailyReturn(raw=0.0, adjusted=0.0)

    raw = (current_value - previous_value) / previous_value * 100
    if cash_flow == 0:
        return DailyReturn(raw=raw, adjusted=raw)

    adjusted = (current_value - previous_value + cash_flow) / previous_value * 100
    return DailyReturn(raw=raw, adjusted=adjusted)


def total_roi(total_value: float, total_investment: float) -> float:
    if total_investment <= 0:
        return 0.0
    return (total_value - total_investment) / total_investment * 100
