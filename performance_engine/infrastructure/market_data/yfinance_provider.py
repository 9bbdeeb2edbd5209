"""
YFinance Exchange Rate Provider
Daily FX closes from Yahoo Finance, async-safe via thread offloading
"""

import asyncio
import random
import time
import yfinance as yf
from datetime import date, timedelta
from typing import Dict, Optional, Tuple
import logging

from performance_engine.domain.models import Currency
from performance_engine.infrastructure.market_data.types import YAHOO_FX_SYMBOLS, normalize_quote

logger = logging.getLogger(__name__)


class YFinanceRateProvider:
    """
    Yahoo Finance FX provider
    Returns units of currency per USD for a single trading day
    """

    def __init__(self, cache_ttl_seconds: int = 3600, retries: int = 2):
        self.cache_ttl_seconds = cache_ttl_seconds
        self.retries = retries
        self._cache: Dict[Tuple[Currency, date], Tuple[float, Optional[float]]] = {}

    async def _history(self, ticker: yf.Ticker, **kwargs):
        return await asyncio.to_thread(ticker.history, **kwargs)

    async def _history_with_retry(self, ticker: yf.Ticker, **kwargs):
        """
        Retry wrapper around history() to handle transient failures.
        """
        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                return await self._history(ticker, **kwargs)
            except Exception as exc:
                last_exc = exc
                await asyncio.sleep(0.4 * (2 ** attempt) + random.random() * 0.2)
        if last_exc:
            raise last_exc
        return await self._history(ticker, **kwargs)

    def _cache_get(self, key: Tuple[Currency, date]) -> Tuple[bool, Optional[float]]:
        cached = self._cache.get(key)
        if not cached:
            return False, None
        ts, value = cached
        if time.time() - ts > self.cache_ttl_seconds:
            return False, None
        return True, value

    def _cache_set(self, key: Tuple[Currency, date], value: Optional[float]) -> None:
        self._cache[key] = (time.time(), value)

    async def get_rate(self, currency: Currency, target_date: date) -> Optional[float]:
        """
        Close for target_date only (no fallback to earlier days here)

        Args:
            currency: Tracked currency (USD returns 1.0)
            target_date: Trading day

        Returns:
            Units of currency per USD, or None
        """
        if currency == Currency.USD:
            return 1.0

        hit, cached = self._cache_get((currency, target_date))
        if hit:
            return cached

        symbol, _ = YAHOO_FX_SYMBOLS[currency]
        ticker = yf.Ticker(symbol)
        hist = await self._history_with_retry(
            ticker,
            start=target_date.isoformat(),
            end=(target_date + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=False,
        )

        rate: Optional[float] = None
        if not hist.empty and "Close" in hist:
            closes = hist["Close"].dropna()
            for index, close in closes.items():
                if index.date() == target_date:
                    rate = normalize_quote(currency, float(close))
                    break

        if rate is None:
            logger.debug(f"No {symbol} close on {target_date}")
        self._cache_set((currency, target_date), rate)
        return rate
