"""
PERIOD CONSOLIDATOR
Daily records -> month checkpoints -> year checkpoints

RESPONSIBILITIES:
- Chain a month of adjusted daily returns into start/end factors
- Sum cash flows, track docs / valid docs (a day without a usable
  adjusted return counts as a doc, not as a valid doc)
- Chain month factors into a year without touching daily data
- Same treatment per asset

RULES:
❌ A period with no valid day yields no record (not a 0% record)
❌ No recomputation of a year from daily records
✅ year factor *= month end_factor / month start_factor
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from performance_engine.domain.models import (
    ConsolidatedAssetPeriod,
    ConsolidatedCurrencyPeriod,
    ConsolidatedPeriodRecord,
    Currency,
    DailyPerformanceRecord,
    PeriodType,
)
from performance_engine.domain.services.daily_performance import ensure_ascending
from performance_engine.domain.services.return_chainer import (
    TimeWeightedReturnChainer,
    modified_dietz,
)

logger = logging.getLogger(__name__)


@dataclass
class _AssetAccumulator:
    chainer: TimeWeightedReturnChainer
    start_total_value: float
    end_total_value: float = 0.0

    def to_period(self) -> ConsolidatedAssetPeriod:
        return ConsolidatedAssetPeriod(
            start_factor=self.chainer.start_factor,
            end_factor=self.chainer.factor,
            period_return=self.chainer.period_return,
            start_total_value=self.start_total_value,
            end_total_value=self.end_total_value,
        )


def _currencies_in(records: Sequence[DailyPerformanceRecord]) -> List[Currency]:
    seen: List[Currency] = []
    for record in records:
        for currency in record.currencies:
            if currency not in seen:
                seen.append(currency)
    return seen


def consolidate_currency(
    records: Sequence[DailyPerformanceRecord],
    currency: Currency,
    start_factor: float = 1.0,
) -> Optional[ConsolidatedCurrencyPeriod]:
    """
    Consolidate one currency over date-ordered daily records

    Args:
        records: Daily records of one scope, ascending by date
        currency: Currency block to consolidate
        start_factor: Checkpoint factor to resume from

    Returns:
        ConsolidatedCurrencyPeriod, or None when no valid day carries the currency
    """
    chainer = TimeWeightedReturnChainer(start_factor)
    assets: Dict[str, _AssetAccumulator] = {}
    first = None
    last = None
    total_cash_flow = 0.0

    for record in records:
        block = record.for_currency(currency)
        if block is None:
            continue
        if not math.isfinite(block.adjusted_daily_change_percentage):
            logger.warning(
                f"{record.scope.key} {record.date} {currency.value}: "
                f"no usable adjusted return, day not chained"
            )
            continue
        if first is None:
            first = block
        last = block

        chainer.add(block.adjusted_daily_change_percentage)
        if math.isfinite(block.total_cash_flow):
            total_cash_flow += block.total_cash_flow

        for asset_key, entry in block.asset_performance.items():
            if not math.isfinite(entry.adjusted_daily_change_percentage):
                continue
            accumulator = assets.get(asset_key)
            if accumulator is None:
                accumulator = _AssetAccumulator(
                    chainer=TimeWeightedReturnChainer(),
                    start_total_value=entry.total_value,
                )
                assets[asset_key] = accumulator
            accumulator.chainer.add(entry.adjusted_daily_change_percentage)
            accumulator.end_total_value = entry.total_value

    if first is None or last is None:
        return None

    return ConsolidatedCurrencyPeriod(
        start_total_value=first.total_value,
        end_total_value=last.total_value,
        start_total_investment=first.total_investment,
        end_total_investment=last.total_investment,
        start_factor=chainer.start_factor,
        end_factor=chainer.factor,
        period_return=chainer.period_return,
        personal_return=modified_dietz(first.total_value, last.total_value, total_cash_flow),
        total_cash_flow=total_cash_flow,
        valid_docs_count=chainer.days,
        asset_performance={key: acc.to_period() for key, acc in assets.items()},
    )


def consolidate_period(
    records: Sequence[DailyPerformanceRecord],
    period_key: str,
    period_type: PeriodType = PeriodType.MONTH,
    start_factors: Optional[Dict[Currency, float]] = None,
) -> Optional[ConsolidatedPeriodRecord]:
    """
    Consolidate daily records of one scope into a period record

    Args:
        records: Daily records of the period, ascending by date
        period_key: "YYYY-MM" or "YYYY"
        period_type: Granularity of the record
        start_factors: Per-currency checkpoint factor to resume from

    Returns:
        ConsolidatedPeriodRecord, or None when the period has no valid day

    Raises:
        ValueError: If records mix scopes or are not strictly ascending
    """
    if not records:
        return None

    scope = records[0].scope
    if any(record.scope != scope for record in records):
        raise ValueError("consolidate_period expects records of a single scope")
    ensure_ascending([record.date for record in records], scope.key)

    start_factors = start_factors or {}
    currencies: Dict[Currency, ConsolidatedCurrencyPeriod] = {}
    for currency in _currencies_in(records):
        block = consolidate_currency(records, currency, start_factors.get(currency, 1.0))
        if block is not None:
            currencies[currency] = block

    if not currencies:
        logger.info(f"{scope.key} {period_key}: no valid days, nothing consolidated")
        return None

    return ConsolidatedPeriodRecord(
        scope=scope,
        period_type=period_type,
        period_key=period_key,
        start_date=records[0].date,
        end_date=records[-1].date,
        docs_count=len(records),
        currencies=currencies,
    )


def _chain_asset_periods(
    blocks: Sequence[ConsolidatedCurrencyPeriod],
) -> Dict[str, ConsolidatedAssetPeriod]:
    chained: Dict[str, _AssetAccumulator] = {}
    for block in blocks:
        for asset_key, asset in block.asset_performance.items():
            accumulator = chained.get(asset_key)
            if accumulator is None:
                accumulator = _AssetAccumulator(
                    chainer=TimeWeightedReturnChainer(),
                    start_total_value=asset.start_total_value,
                )
                chained[asset_key] = accumulator
            if asset.start_factor:
                accumulator.chainer.factor *= asset.end_factor / asset.start_factor
            accumulator.end_total_value = asset.end_total_value
    return {key: acc.to_period() for key, acc in chained.items()}


def consolidate_months_to_year(
    monthly: Sequence[ConsolidatedPeriodRecord],
    year_key: str,
) -> Optional[ConsolidatedPeriodRecord]:
    """
    Chain month checkpoints of one scope into a year checkpoint

    Args:
        monthly: Month records of the year, ascending by period key
        year_key: "YYYY"

    Returns:
        ConsolidatedPeriodRecord for the year, or None without valid months
    """
    months = [m for m in monthly if m.period_type == PeriodType.MONTH and m.period_key.startswith(year_key)]
    if not months:
        return None

    scope = months[0].scope
    if any(month.scope != scope for month in months):
        raise ValueError("consolidate_months_to_year expects months of a single scope")
    months = sorted(months, key=lambda m: m.period_key)

    currencies: Dict[Currency, ConsolidatedCurrencyPeriod] = {}
    for currency in Currency:
        blocks = [m.for_currency(currency) for m in months]
        blocks = [b for b in blocks if b is not None and b.valid_docs_count > 0]
        if not blocks:
            continue

        chainer = TimeWeightedReturnChainer()
        for block in blocks:
            if block.start_factor:
                chainer.factor *= block.end_factor / block.start_factor
        total_cash_flow = sum(block.total_cash_flow for block in blocks)

        currencies[currency] = ConsolidatedCurrencyPeriod(
            start_total_value=blocks[0].start_total_value,
            end_total_value=blocks[-1].end_total_value,
            start_total_investment=blocks[0].start_total_investment,
            end_total_investment=blocks[-1].end_total_investment,
            start_factor=chainer.start_factor,
            end_factor=chainer.factor,
            period_return=chainer.period_return,
            personal_return=modified_dietz(
                blocks[0].start_total_value,
                blocks[-1].end_total_value,
                total_cash_flow,
            ),
            total_cash_flow=total_cash_flow,
            valid_docs_count=sum(block.valid_docs_count for block in blocks),
            asset_performance=_chain_asset_periods(blocks),
        )

    if not currencies:
        return None

    return ConsolidatedPeriodRecord(
        scope=scope,
        period_type=PeriodType.YEAR,
        period_key=year_key,
        start_date=months[0].start_date,
        end_date=months[-1].end_date,
        docs_count=sum(month.docs_count for month in months),
        currencies=currencies,
    )
