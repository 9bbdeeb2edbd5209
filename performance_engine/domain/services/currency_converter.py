"""
CURRENCY CONVERTER
Same-day figures in every tracked currency, from the reference-currency record

RESPONSIBILITIES:
- Multiply absolute fields by the day's rate
- Copy percentage fields unchanged
- Look up rates walking back to earlier days, with backoff
- Reject implausible rates and repair records carrying them

RULES:
❌ No silent zeroing when a rate is missing (skip + report)
❌ No partial currency blocks (whole sub-object per currency)
✅ Percentages are currency-invariant
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from performance_engine.domain.exceptions import RateLookupExhaustedError
from performance_engine.domain.models import (
    REFERENCE_CURRENCY,
    AssetPerformanceEntry,
    Currency,
    CurrencyPerformance,
    DailyPerformanceRecord,
)

logger = logging.getLogger(__name__)


# Units of the currency per one unit of the reference currency
PLAUSIBLE_RATE_BANDS: Dict[Currency, Tuple[float, float]] = {
    Currency.USD: (1.0, 1.0),
    Currency.COP: (1000.0, 10000.0),
    Currency.EUR: (0.5, 1.5),
    Currency.MXN: (5.0, 40.0),
    Currency.BRL: (1.5, 10.0),
    Currency.GBP: (0.4, 1.2),
    Currency.CAD: (0.9, 2.0),
}

ABSOLUTE_FIELDS = (
    "total_value",
    "total_investment",
    "total_cash_flow",
    "unrealized_pnl",
    "done_profit_and_loss",
)

ASSET_ABSOLUTE_FIELDS = (
    "total_value",
    "total_investment",
    "total_cash_flow",
    "unrealized_profit_and_loss",
    "done_profit_and_loss",
)


def is_plausible_rate(currency: Currency, rate: Optional[float]) -> bool:
    """Whether a rate falls inside the plausible band for the currency"""
    if rate is None or rate <= 0:
        return False
    low, high = PLAUSIBLE_RATE_BANDS[currency]
    return low <= rate <= high


def convert_asset_entry(entry: AssetPerformanceEntry, rate: float) -> AssetPerformanceEntry:
    # Units and percentages are currency-invariant
    return replace(entry, **{name: getattr(entry, name) * rate for name in ASSET_ABSOLUTE_FIELDS})


def convert_currency_performance(reference: CurrencyPerformance, rate: float) -> CurrencyPerformance:
    """
    Convert a reference-currency block with one rate

    Args:
        reference: Block in the reference currency
        rate: Units of the target currency per reference unit

    Returns:
        New CurrencyPerformance in the target currency
    """
    converted = {name: getattr(reference, name) * rate for name in ABSOLUTE_FIELDS}
    converted["asset_performance"] = {
        asset_key: convert_asset_entry(entry, rate)
        for asset_key, entry in reference.asset_performance.items()
    }
    return replace(reference, **converted)


class RateSource(Protocol):
    """Exchange rate provider as seen by the converter"""
    async def get_rate(self, currency: Currency, target_date: date) -> Optional[float]:
        ...


@dataclass(frozen=True)
class SkippedConversion:
    """A currency/date that could not be converted"""
    scope_key: str
    date: date
    currency: Currency
    reason: str


@dataclass(frozen=True)
class ConversionResult:
    record: DailyPerformanceRecord
    skipped: List[SkippedConversion] = field(default_factory=list)


@dataclass(frozen=True)
class CorruptedCurrency:
    """A stored currency block whose value ratio is outside its plausible band"""
    scope_key: str
    date: date
    currency: Currency
    ratio: Optional[float]


class ExchangeRateLookup:
    """
    Rate lookup with fallback to prior days

    Each attempt moves one day earlier (covers weekends and holidays). Waits
    base_delay * 2**attempt between attempts.
    """

    def __init__(
        self,
        source: RateSource,
        max_attempts: int = 5,
        base_delay: float = 0.05,
    ):
        self.source = source
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._cache: Dict[Tuple[Currency, date], float] = {}

    async def get_rate(self, currency: Currency, target_date: date) -> float:
        """
        Rate for a currency on a date (or the closest earlier day)

        Raises:
            RateLookupExhaustedError: If no plausible rate was found
        """
        if currency == REFERENCE_CURRENCY:
            return 1.0

        cached = self._cache.get((currency, target_date))
        if cached is not None:
            return cached

        for attempt in range(self.max_attempts):
            lookup_date = target_date - timedelta(days=attempt)
            try:
                rate = await self.source.get_rate(currency, lookup_date)
            except Exception as e:
                logger.warning(f"Rate lookup failed for {currency.value} on {lookup_date}: {e}")
                rate = None

            if rate is not None and is_plausible_rate(currency, rate):
                self._cache[(currency, target_date)] = rate
                return rate

            if rate is not None:
                logger.warning(f"Rejected implausible {currency.value} rate {rate} on {lookup_date}")

            if attempt + 1 < self.max_attempts:
                await asyncio.sleep(self.base_delay * (2 ** attempt))

        raise RateLookupExhaustedError(currency.value, target_date, self.max_attempts)


class CurrencyConverter:
    """
    Currency Converter
    Expands a reference-only record into every tracked currency
    """

    def __init__(
        self,
        rate_lookup: ExchangeRateLookup,
        currencies: Sequence[Currency] = tuple(Currency),
    ):
        self.rate_lookup = rate_lookup
        self.currencies = list(currencies)

    async def convert_record(self, record: DailyPerformanceRecord) -> ConversionResult:
        """
        Fill every tracked currency from the reference block

        Args:
            record: Record holding at least the reference currency

        Returns:
            ConversionResult with the converted record and skipped currencies
        """
        reference = record.for_currency(REFERENCE_CURRENCY)
        if reference is None:
            raise ValueError(f"{record.scope.key} {record.date}: no {REFERENCE_CURRENCY.value} block")

        currencies: Dict[Currency, CurrencyPerformance] = {REFERENCE_CURRENCY: reference}
        skipped: List[SkippedConversion] = []

        for currency in self.currencies:
            if currency == REFERENCE_CURRENCY:
                continue
            try:
                rate = await self.rate_lookup.get_rate(currency, record.date)
            except RateLookupExhaustedError as e:
                logger.warning(f"{record.scope.key} {record.date} {currency.value}: skipped ({e})")
                skipped.append(SkippedConversion(record.scope.key, record.date, currency, str(e)))
                continue
            currencies[currency] = convert_currency_performance(reference, rate)

        return ConversionResult(record=replace(record, currencies=currencies), skipped=skipped)

    def find_corrupted(self, records: Iterable[DailyPerformanceRecord]) -> List[CorruptedCurrency]:
        """
        Stored currency blocks whose value ratio to the reference is implausible

        Catches the "same value in every currency" corruption (ratio 1.0 for COP etc.).
        """
        corrupted: List[CorruptedCurrency] = []
        for record in records:
            reference = record.for_currency(REFERENCE_CURRENCY)
            if reference is None or reference.total_value <= 0:
                continue
            for currency, block in record.currencies.items():
                if currency == REFERENCE_CURRENCY:
                    continue
                ratio = block.total_value / reference.total_value
                if not is_plausible_rate(currency, ratio):
                    corrupted.append(CorruptedCurrency(record.scope.key, record.date, currency, ratio))
        return corrupted

    async def repair_record(self, record: DailyPerformanceRecord) -> ConversionResult:
        """Regenerate every non-reference block from the reference block"""
        reference = record.for_currency(REFERENCE_CURRENCY)
        if reference is None:
            raise ValueError(f"{record.scope.key} {record.date}: no {REFERENCE_CURRENCY.value} block")

        result = await self.convert_record(record)

        # Keep stored blocks we could not regenerate rather than dropping them
        currencies = dict(result.record.currencies)
        for skip in result.skipped:
            stored = record.for_currency(skip.currency)
            if stored is not None:
                currencies[skip.currency] = stored
        return ConversionResult(record=replace(record, currencies=currencies), skipped=result.skipped)
