"""
Unit Tests for CurrencyConverter / ExchangeRateLookup

✅ Absolute fields converted, percentages untouched
✅ Rate lookup walks back to earlier days
✅ Exhausted lookups are skipped and reported
✅ Implausible stored blocks are found and repaired
"""

import pytest
from dataclasses import replace
from datetime import date

from performance_engine.domain.exceptions import RateLookupExhaustedError
from performance_engine.domain.models import (
    AssetPerformanceEntry,
    Currency,
    CurrencyPerformance,
    DailyPerformanceRecord,
    EntityScope,
)
from performance_engine.domain.services.currency_converter import (
    CurrencyConverter,
    ExchangeRateLookup,
    convert_currency_performance,
    is_plausible_rate,
)


SCOPE = EntityScope(portfolio_id="pf-1")
FRIDAY = date(2026, 5, 8)
SUNDAY = date(2026, 5, 10)


class MockRateSource:
    """Rates keyed by (currency, date); records every call"""

    def __init__(self, rates=None, failing_dates=()):
        self.rates = rates or {}
        self.failing_dates = set(failing_dates)
        self.calls = []

    async def get_rate(self, currency, target_date):
        self.calls.append((currency, target_date))
        if target_date in self.failing_dates:
            raise ConnectionError("provider down")
        return self.rates.get((currency, target_date))


def usd_block(value=1000.0, cash_flow=-100.0, adjusted=2.5):
    asset = AssetPerformanceEntry(
        units=10,
        total_value=value,
        total_investment=900.0,
        total_cash_flow=cash_flow,
        raw_daily_change_percentage=12.5,
        adjusted_daily_change_percentage=adjusted,
        unrealized_profit_and_loss=value - 900.0,
        done_profit_and_loss=5.0,
    )
    return CurrencyPerformance(
        total_value=value,
        total_investment=900.0,
        total_cash_flow=cash_flow,
        raw_daily_change_percentage=12.5,
        adjusted_daily_change_percentage=adjusted,
        daily_return=adjusted / 100,
        unrealized_pnl=value - 900.0,
        done_profit_and_loss=5.0,
        total_roi=11.11,
        asset_performance={"AAPL_stock": asset},
    )


def record(day=FRIDAY, currencies=None):
    return DailyPerformanceRecord(scope=SCOPE, date=day, currencies=currencies or {Currency.USD: usd_block()})


def test_convert_currency_performance_scales_absolute_fields_only():
    converted = convert_currency_performance(usd_block(), 4000.0)

    assert converted.total_value == pytest.approx(4_000_000)
    assert converted.total_cash_flow == pytest.approx(-400_000)
    assert converted.unrealized_pnl == pytest.approx(400_000)
    assert converted.adjusted_daily_change_percentage == 2.5
    assert converted.raw_daily_change_percentage == 12.5
    assert converted.total_roi == 11.11

    asset = converted.asset_performance["AAPL_stock"]
    assert asset.units == 10
    assert asset.total_value == pytest.approx(4_000_000)
    assert asset.adjusted_daily_change_percentage == 2.5


@pytest.mark.parametrize("rate", [4000.0, 0.92, 17.1, 5.05, 0.79, 1.36, 1.0])
def test_conversion_and_reciprocal_restore_the_reference_block(rate):
    original = usd_block(value=1234.56, cash_flow=-78.9)

    restored = convert_currency_performance(convert_currency_performance(original, rate), 1 / rate)

    for name in ("total_value", "total_investment", "total_cash_flow", "unrealized_pnl", "done_profit_and_loss"):
        assert getattr(restored, name) == pytest.approx(getattr(original, name))
    assert restored.adjusted_daily_change_percentage == original.adjusted_daily_change_percentage

    asset = restored.asset_performance["AAPL_stock"]
    original_asset = original.asset_performance["AAPL_stock"]
    for name in (
        "total_value",
        "total_investment",
        "total_cash_flow",
        "unrealized_profit_and_loss",
        "done_profit_and_loss",
    ):
        assert getattr(asset, name) == pytest.approx(getattr(original_asset, name))
    assert asset.units == original_asset.units


def test_plausible_rate_bands():
    assert is_plausible_rate(Currency.COP, 4100)
    assert not is_plausible_rate(Currency.COP, 1.0)
    assert is_plausible_rate(Currency.EUR, 0.92)
    assert not is_plausible_rate(Currency.EUR, None)


class TestExchangeRateLookup:
    @pytest.mark.asyncio
    async def test_walks_back_to_last_business_day(self):
        source = MockRateSource({(Currency.EUR, FRIDAY): 0.92})
        lookup = ExchangeRateLookup(source, max_attempts=5, base_delay=0)

        rate = await lookup.get_rate(Currency.EUR, SUNDAY)

        assert rate == 0.92
        assert [d for _, d in source.calls] == [SUNDAY, date(2026, 5, 9), FRIDAY]

    @pytest.mark.asyncio
    async def test_hits_are_cached(self):
        source = MockRateSource({(Currency.EUR, FRIDAY): 0.92})
        lookup = ExchangeRateLookup(source, base_delay=0)

        await lookup.get_rate(Currency.EUR, FRIDAY)
        await lookup.get_rate(Currency.EUR, FRIDAY)

        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_reference_currency_never_hits_source(self):
        source = MockRateSource()
        assert await ExchangeRateLookup(source).get_rate(Currency.USD, FRIDAY) == 1.0
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_implausible_and_failing_days_are_skipped(self):
        source = MockRateSource(
            {(Currency.COP, SUNDAY): 1.0, (Currency.COP, FRIDAY): 3950.0},
            failing_dates=[date(2026, 5, 9)],
        )
        lookup = ExchangeRateLookup(source, base_delay=0)

        assert await lookup.get_rate(Currency.COP, SUNDAY) == 3950.0

    @pytest.mark.asyncio
    async def test_exhaustion_raises(self):
        lookup = ExchangeRateLookup(MockRateSource(), max_attempts=3, base_delay=0)

        with pytest.raises(RateLookupExhaustedError) as exc_info:
            await lookup.get_rate(Currency.BRL, FRIDAY)

        assert exc_info.value.attempts == 3
        assert exc_info.value.currency == "BRL"


class TestCurrencyConverter:
    @pytest.mark.asyncio
    async def test_missing_rate_is_skipped_not_zeroed(self):
        source = MockRateSource({(Currency.COP, FRIDAY): 4000.0})
        converter = CurrencyConverter(
            ExchangeRateLookup(source, max_attempts=2, base_delay=0),
            currencies=[Currency.USD, Currency.COP, Currency.EUR],
        )

        result = await converter.convert_record(record())

        assert set(result.record.currencies) == {Currency.USD, Currency.COP}
        assert result.record.for_currency(Currency.COP).total_value == pytest.approx(4_000_000)
        assert len(result.skipped) == 1
        assert result.skipped[0].currency == Currency.EUR
        assert result.skipped[0].scope_key == SCOPE.key

    @pytest.mark.asyncio
    async def test_record_without_reference_block(self):
        converter = CurrencyConverter(ExchangeRateLookup(MockRateSource(), base_delay=0))
        with pytest.raises(ValueError):
            await converter.convert_record(record(currencies={Currency.EUR: usd_block()}))

    @pytest.mark.asyncio
    async def test_corrupted_block_is_found_and_repaired(self):
        source = MockRateSource({(Currency.COP, FRIDAY): 4000.0, (Currency.EUR, FRIDAY): 0.9})
        converter = CurrencyConverter(
            ExchangeRateLookup(source, max_attempts=1, base_delay=0),
            currencies=[Currency.USD, Currency.COP, Currency.EUR],
        )
        good_eur = convert_currency_performance(usd_block(), 0.9)
        # Same value in COP as in USD
        stored = record(currencies={
            Currency.USD: usd_block(),
            Currency.COP: usd_block(),
            Currency.EUR: good_eur,
        })

        corrupted = converter.find_corrupted([stored])
        assert [c.currency for c in corrupted] == [Currency.COP]
        assert corrupted[0].ratio == pytest.approx(1.0)

        repaired = await converter.repair_record(stored)
        assert repaired.record.for_currency(Currency.COP).total_value == pytest.approx(4_000_000)
        assert converter.find_corrupted([repaired.record]) == []

    @pytest.mark.asyncio
    async def test_repair_keeps_blocks_it_cannot_regenerate(self):
        source = MockRateSource({(Currency.COP, FRIDAY): 4000.0})
        converter = CurrencyConverter(
            ExchangeRateLookup(source, max_attempts=1, base_delay=0),
            currencies=[Currency.USD, Currency.COP, Currency.EUR],
        )
        stored_eur = replace(convert_currency_performance(usd_block(), 0.9), total_roi=1.0)
        stored = record(currencies={Currency.USD: usd_block(), Currency.EUR: stored_eur})

        repaired = await converter.repair_record(stored)

        assert repaired.record.for_currency(Currency.EUR) == stored_eur
        assert [s.currency for s in repaired.skipped] == [Currency.EUR]
