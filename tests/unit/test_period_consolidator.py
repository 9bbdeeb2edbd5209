"""
Unit Tests for the period consolidator

✅ Month factors from daily adjusted returns
✅ Year factors from month factors only
✅ Empty periods produce no record
"""

import pytest
from datetime import date, timedelta

from performance_engine.domain.models import (
    AssetPerformanceEntry,
    Currency,
    CurrencyPerformance,
    DailyPerformanceRecord,
    EntityScope,
    PeriodType,
)
from performance_engine.domain.services.period_consolidator import (
    consolidate_months_to_year,
    consolidate_period,
)
from performance_engine.domain.services.return_chainer import chain_factor
from performance_engine.utils.time import month_key


SCOPE = EntityScope(portfolio_id="pf-1", account_id="acc-1")


def block(value, adjusted, cash_flow=0.0, asset_adjusted=None):
    assets = {}
    if asset_adjusted is not None:
        assets["AAPL_stock"] = AssetPerformanceEntry(
            units=10,
            total_value=value,
            total_investment=value,
            total_cash_flow=cash_flow,
            raw_daily_change_percentage=asset_adjusted,
            adjusted_daily_change_percentage=asset_adjusted,
            unrealized_profit_and_loss=0.0,
            done_profit_and_loss=0.0,
        )
    return CurrencyPerformance(
        total_value=value,
        total_investment=value,
        total_cash_flow=cash_flow,
        raw_daily_change_percentage=adjusted,
        adjusted_daily_change_percentage=adjusted,
        daily_return=adjusted / 100,
        unrealized_pnl=0.0,
        done_profit_and_loss=0.0,
        asset_performance=assets,
    )


def daily(day, value, adjusted, cash_flow=0.0, scope=SCOPE, asset_adjusted=None):
    return DailyPerformanceRecord(
        scope=scope,
        date=day,
        currencies={Currency.USD: block(value, adjusted, cash_flow, asset_adjusted)},
    )


def year_of_daily_records(year=2025):
    """One record every 3 days, small alternating returns"""
    records = []
    day = date(year, 1, 1)
    index = 0
    while day.year == year:
        adjusted = 0.4 if index % 2 == 0 else -0.15
        records.append(daily(day, 1000 + index, adjusted, asset_adjusted=adjusted / 2))
        day += timedelta(days=3)
        index += 1
    return records


class TestConsolidatePeriod:
    def test_month_chains_adjusted_returns(self):
        records = [
            daily(date(2026, 3, 2), 1000, 1.0),
            daily(date(2026, 3, 3), 1010, 2.0),
            daily(date(2026, 3, 4), 1500, -0.5, cash_flow=-500),
        ]

        period = consolidate_period(records, "2026-03")

        usd = period.for_currency(Currency.USD)
        assert period.period_type == PeriodType.MONTH
        assert period.start_date == date(2026, 3, 2)
        assert period.end_date == date(2026, 3, 4)
        assert period.docs_count == 3
        assert usd.start_factor == 1.0
        assert usd.end_factor == pytest.approx(1.025449)
        assert usd.period_return == pytest.approx(2.5449)
        assert usd.valid_docs_count == 3
        assert usd.total_cash_flow == -500
        assert usd.start_total_value == 1000
        assert usd.end_total_value == 1500

    def test_resume_from_start_factor(self):
        records = [daily(date(2026, 3, 2), 1000, 1.0), daily(date(2026, 3, 3), 1010, 2.0)]

        period = consolidate_period(records, "2026-03", start_factors={Currency.USD: 1.2})

        usd = period.for_currency(Currency.USD)
        assert usd.start_factor == 1.2
        assert usd.end_factor == pytest.approx(1.2 * 1.01 * 1.02)
        assert usd.period_return == pytest.approx((1.01 * 1.02 - 1) * 100)

    def test_asset_factors(self):
        records = [
            daily(date(2026, 3, 2), 1000, 1.0, asset_adjusted=3.0),
            daily(date(2026, 3, 3), 1010, 2.0, asset_adjusted=-1.0),
        ]

        asset = consolidate_period(records, "2026-03").for_currency(Currency.USD).asset_performance["AAPL_stock"]

        assert asset.end_factor == pytest.approx(1.03 * 0.99)
        assert asset.start_total_value == 1000
        assert asset.end_total_value == 1010

    def test_day_without_adjusted_return_counts_as_incomplete(self):
        records = [
            daily(date(2026, 3, 2), 1000, 1.0, asset_adjusted=1.0),
            daily(date(2026, 3, 3), 1010, float("nan"), cash_flow=-20, asset_adjusted=float("nan")),
            daily(date(2026, 3, 4), 1030, 2.0, asset_adjusted=2.0),
        ]

        period = consolidate_period(records, "2026-03")

        usd = period.for_currency(Currency.USD)
        assert period.docs_count == 3
        assert usd.valid_docs_count == 2
        assert usd.end_factor == pytest.approx(1.01 * 1.02)
        assert usd.total_cash_flow == 0
        assert usd.end_total_value == 1030
        assert usd.asset_performance["AAPL_stock"].end_factor == pytest.approx(1.01 * 1.02)

    def test_month_of_unusable_days_is_none(self):
        records = [daily(date(2026, 3, 2), 1000, float("nan")), daily(date(2026, 3, 3), 1010, float("nan"))]

        assert consolidate_period(records, "2026-03") is None

    def test_empty_month_is_none(self):
        assert consolidate_period([], "2026-03") is None

    def test_mixed_scopes_rejected(self):
        other = EntityScope(portfolio_id="pf-1")
        with pytest.raises(ValueError):
            consolidate_period(
                [daily(date(2026, 3, 2), 1, 0), daily(date(2026, 3, 3), 1, 0, scope=other)],
                "2026-03",
            )

    def test_unordered_days_rejected(self):
        with pytest.raises(ValueError):
            consolidate_period(
                [daily(date(2026, 3, 3), 1, 0), daily(date(2026, 3, 2), 1, 0)],
                "2026-03",
            )


class TestConsolidateMonthsToYear:
    def _months(self, records):
        by_month = {}
        for record in records:
            by_month.setdefault(month_key(record.date), []).append(record)
        return [consolidate_period(days, key) for key, days in sorted(by_month.items())]

    def test_year_equals_chain_of_every_day(self):
        records = year_of_daily_records(2025)
        months = self._months(records)

        year = consolidate_months_to_year(months, "2025")

        usd = year.for_currency(Currency.USD)
        expected = chain_factor(r.for_currency(Currency.USD).adjusted_daily_change_percentage for r in records)
        assert len(months) == 12
        assert usd.end_factor == pytest.approx(expected)
        assert usd.valid_docs_count == len(records)
        assert year.docs_count == len(records)
        assert year.period_type == PeriodType.YEAR
        assert year.start_date == records[0].date
        assert year.end_date == records[-1].date

    def test_asset_factors_chain_across_months(self):
        records = year_of_daily_records(2025)
        year = consolidate_months_to_year(self._months(records), "2025")

        asset = year.for_currency(Currency.USD).asset_performance["AAPL_stock"]
        expected = chain_factor(
            r.for_currency(Currency.USD).asset_performance["AAPL_stock"].adjusted_daily_change_percentage
            for r in records
        )
        assert asset.end_factor == pytest.approx(expected)

    def test_other_years_are_ignored(self):
        months = self._months(year_of_daily_records(2025)) + self._months(year_of_daily_records(2026))[:2]

        year = consolidate_months_to_year(months, "2025")

        assert year.end_date.year == 2025

    def test_no_months_is_none(self):
        assert consolidate_months_to_year([], "2025") is None
