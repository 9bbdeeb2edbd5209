"""
Exchange rate provider protocol for type hints.
"""

from __future__ import annotations

from typing import Protocol, Optional
from datetime import date

from performance_engine.domain.models import Currency


class ExchangeRateProvider(Protocol):
    async def get_rate(self, currency: Currency, target_date: date) -> Optional[float]:
        """Units of currency per USD on target_date, None if that day has no quote"""
        ...


# Yahoo symbol and whether the quote must be inverted to get XXX per USD
YAHOO_FX_SYMBOLS = {
    Currency.COP: ("COP=X", False),
    Currency.EUR: ("EURUSD=X", True),
    Currency.MXN: ("MXN=X", False),
    Currency.BRL: ("BRL=X", False),
    Currency.GBP: ("GBPUSD=X", True),
    Currency.CAD: ("CAD=X", False),
}


def normalize_quote(currency: Currency, close: Optional[float]) -> Optional[float]:
    if close is None or close <= 0:
        return None
    _, invert = YAHOO_FX_SYMBOLS[currency]
    return 1 / close if invert else close
