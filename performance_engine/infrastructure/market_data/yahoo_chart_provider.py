"""
Yahoo chart API exchange rate provider (plain HTTP, no yfinance)
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import httpx

from performance_engine.config import settings
from performance_engine.domain.models import Currency
from performance_engine.infrastructure.market_data.types import YAHOO_FX_SYMBOLS, normalize_quote

logger = logging.getLogger(__name__)


class YahooChartRateProvider:
    def __init__(
        self,
        base_url: str = settings.YAHOO_CHART_URL,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"User-Agent": "Mozilla/5.0"},
        )

    async def get_rate(self, currency: Currency, target_date: date) -> Optional[float]:
        if currency == Currency.USD:
            return 1.0

        symbol, _ = YAHOO_FX_SYMBOLS[currency]
        start = datetime.combine(target_date, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        response = await self._client.get(
            f"{self.base_url}/{symbol}",
            params={
                "period1": int(start.timestamp()),
                "period2": int(end.timestamp()),
                "interval": "1d",
            },
        )
        response.raise_for_status()
        return self._parse(currency, response.json())

    @staticmethod
    def _parse(currency: Currency, data: dict) -> Optional[float]:
        result = (data.get("chart") or {}).get("result") or []
        if not result:
            return None
        quotes = ((result[0].get("indicators") or {}).get("quote") or [{}])[0]
        closes = [c for c in (quotes.get("close") or []) if c is not None]
        if not closes:
            return None
        return normalize_quote(currency, float(closes[0]))

    async def close(self) -> None:
        await self._client.aclose()
