"""
Provider chain - try primary, then fallbacks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from performance_engine.domain.models import Currency
from performance_engine.infrastructure.market_data.types import ExchangeRateProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NamedProvider:
    name: str
    provider: ExchangeRateProvider


class ChainedRateProvider:
    def __init__(self, providers: List[NamedProvider]):
        self.providers = providers
        self.last_sources: Dict[Tuple[str, date], str] = {}

    def get_last_sources(self) -> Dict[Tuple[str, date], str]:
        return dict(self.last_sources)

    async def get_rate(self, currency: Currency, target_date: date) -> Optional[float]:
        for named in self.providers:
            try:
                value = await named.provider.get_rate(currency, target_date)
            except Exception as exc:
                logger.debug(f"{named.name} failed for {currency.value} {target_date}: {exc}")
                continue
            if value is not None:
                self.last_sources[(currency.value, target_date)] = named.name
                return value
        return None

