"""
JSON payload <-> domain conversion for the performance tables.

Payload keys are camelCase, one object per currency code.
"""

import math
from datetime import date
from typing import Any, Dict, Optional

from performance_engine.domain.exceptions import MalformedRecordError
from performance_engine.domain.models import (
    AssetPerformanceEntry,
    ConsolidatedAssetPeriod,
    ConsolidatedCurrencyPeriod,
    ConsolidatedPeriodRecord,
    Currency,
    CurrencyPerformance,
    DailyPerformanceRecord,
    EntityScope,
    PeriodType,
)

CURRENCY_FIELDS = (
    ("total_value", "totalValue"),
    ("total_investment", "totalInvestment"),
    ("total_cash_flow", "totalCashFlow"),
    ("raw_daily_change_percentage", "rawDailyChangePercentage"),
    ("adjusted_daily_change_percentage", "adjustedDailyChangePercentage"),
    ("daily_return", "dailyReturn"),
    ("unrealized_pnl", "unrealizedPnL"),
    ("done_profit_and_loss", "doneProfitAndLoss"),
    ("total_roi", "totalROI"),
)

ASSET_FIELDS = (
    ("units", "units"),
    ("total_value", "totalValue"),
    ("total_investment", "totalInvestment"),
    ("total_cash_flow", "totalCashFlow"),
    ("raw_daily_change_percentage", "rawDailyChangePercentage"),
    ("adjusted_daily_change_percentage", "adjustedDailyChangePercentage"),
    ("unrealized_profit_and_loss", "unrealizedProfitAndLoss"),
    ("done_profit_and_loss", "doneProfitAndLoss"),
    ("total_roi", "totalROI"),
)

PERIOD_FIELDS = (
    ("start_total_value", "startTotalValue"),
    ("end_total_value", "endTotalValue"),
    ("start_total_investment", "startTotalInvestment"),
    ("end_total_investment", "endTotalInvestment"),
    ("start_factor", "startFactor"),
    ("end_factor", "endFactor"),
    ("period_return", "periodReturn"),
    ("total_cash_flow", "totalCashFlow"),
)

ASSET_PERIOD_FIELDS = (
    ("start_factor", "startFactor"),
    ("end_factor", "endFactor"),
    ("period_return", "periodReturn"),
    ("start_total_value", "startTotalValue"),
    ("end_total_value", "endTotalValue"),
)

# Optional in stored payloads (absent in older documents)
DEFAULTED = {"totalROI", "doneProfitAndLoss"}


def _number(
    raw: Dict[str, Any],
    json_name: str,
    scope_key: str,
    record_date: Optional[date],
    path: str,
    strict: bool,
) -> float:
    value = raw.get(json_name)
    if value is None and json_name in DEFAULTED:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        if strict:
            raise MalformedRecordError(scope_key, record_date, f"{path}.{json_name}", f"got {value!r}")
        # Left for the corrector's in-batch validation
        return float("nan")
    return float(value)


# ======================
# Daily records
# ======================

def daily_to_payload(record: DailyPerformanceRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for currency, block in record.currencies.items():
        data = {json_name: getattr(block, name) for name, json_name in CURRENCY_FIELDS}
        data["assetPerformance"] = {
            asset_key: {
                **{json_name: getattr(entry, name) for name, json_name in ASSET_FIELDS},
                "impliedCashFlow": entry.implied_cash_flow,
            }
            for asset_key, entry in block.asset_performance.items()
        }
        payload[currency.value] = data
    return payload


def payload_to_daily(
    scope_key: str,
    record_date: date,
    payload: Dict[str, Any],
    strict: bool = True,
) -> DailyPerformanceRecord:
    """
    Raises:
        MalformedRecordError: strict mode, on a missing or non-numeric field
    """
    currencies: Dict[Currency, CurrencyPerformance] = {}
    for code, raw in (payload or {}).items():
        try:
            currency = Currency(code)
        except ValueError:
            continue
        if not isinstance(raw, dict):
            raise MalformedRecordError(scope_key, record_date, code, "currency block is not an object")

        assets = {}
        for asset_key, raw_asset in (raw.get("assetPerformance") or {}).items():
            path = f"{code}.assetPerformance.{asset_key}"
            values = {
                name: _number(raw_asset, json_name, scope_key, record_date, path, strict)
                for name, json_name in ASSET_FIELDS
            }
            assets[asset_key] = AssetPerformanceEntry(
                **values,
                implied_cash_flow=bool(raw_asset.get("impliedCashFlow", False)),
            )

        values = {
            name: _number(raw, json_name, scope_key, record_date, code, strict)
            for name, json_name in CURRENCY_FIELDS
        }
        currencies[currency] = CurrencyPerformance(**values, asset_performance=assets)

    return DailyPerformanceRecord(
        scope=EntityScope.from_key(scope_key),
        date=record_date,
        currencies=currencies,
    )


# ======================
# Consolidated periods
# ======================

def period_to_payload(record: ConsolidatedPeriodRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for currency, block in record.currencies.items():
        data = {json_name: getattr(block, name) for name, json_name in PERIOD_FIELDS}
        data["personalReturn"] = block.personal_return
        data["validDocsCount"] = block.valid_docs_count
        data["assetPerformance"] = {
            asset_key: {json_name: getattr(asset, name) for name, json_name in ASSET_PERIOD_FIELDS}
            for asset_key, asset in block.asset_performance.items()
        }
        payload[currency.value] = data
    return payload


def payload_to_period(
    scope_key: str,
    period_type: str,
    period_key: str,
    start_date: date,
    end_date: date,
    docs_count: int,
    version: int,
    payload: Dict[str, Any],
) -> ConsolidatedPeriodRecord:
    currencies: Dict[Currency, ConsolidatedCurrencyPeriod] = {}
    for code, raw in (payload or {}).items():
        try:
            currency = Currency(code)
        except ValueError:
            continue

        assets = {
            asset_key: ConsolidatedAssetPeriod(
                **{
                    name: _number(raw_asset, json_name, scope_key, end_date, f"{code}.{asset_key}", True)
                    for name, json_name in ASSET_PERIOD_FIELDS
                }
            )
            for asset_key, raw_asset in (raw.get("assetPerformance") or {}).items()
        }
        values = {
            name: _number(raw, json_name, scope_key, end_date, code, True)
            for name, json_name in PERIOD_FIELDS
        }
        personal = raw.get("personalReturn")
        currencies[currency] = ConsolidatedCurrencyPeriod(
            **values,
            personal_return=float(personal) if personal is not None else None,
            valid_docs_count=int(raw.get("validDocsCount", 0)),
            asset_performance=assets,
        )

    return ConsolidatedPeriodRecord(
        scope=EntityScope.from_key(scope_key),
        period_type=PeriodType(period_type),
        period_key=period_key,
        start_date=start_date,
        end_date=end_date,
        docs_count=docs_count,
        currencies=currencies,
        version=version,
    )
