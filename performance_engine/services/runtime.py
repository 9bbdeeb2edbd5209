"""
Runtime wiring for the performance engine.

Builds the settings-driven collaborators shared by the services and the
scheduler: rate lookup, currency converter, cash flow attributor, cache.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from performance_engine.config import settings
from performance_engine.domain.models import Currency
from performance_engine.domain.services.cash_flow_attributor import CashFlowAttributor
from performance_engine.domain.services.currency_converter import CurrencyConverter, ExchangeRateLookup
from performance_engine.infrastructure.cache.redis_cache import RedisCache
from performance_engine.infrastructure.market_data.provider_factory import get_rate_provider
from performance_engine.infrastructure.market_data.types import ExchangeRateProvider

logger = logging.getLogger(__name__)


def build_attributor() -> CashFlowAttributor:
    return CashFlowAttributor(
        cash_flow_tolerance=settings.CASH_FLOW_TOLERANCE,
        units_epsilon=settings.UNITS_EPSILON,
    )


def build_converter(
    provider: Optional[ExchangeRateProvider] = None,
    config_file: Optional[Path] = None,
) -> CurrencyConverter:
    """
    Currency converter over the configured provider chain

    Args:
        provider: Rate provider; defaults to the chain from config/app.yml
        config_file: Alternative market data config

    Returns:
        CurrencyConverter covering TRACKED_CURRENCIES
    """
    lookup = ExchangeRateLookup(
        provider or get_rate_provider(config_file),
        max_attempts=settings.RATE_LOOKUP_MAX_ATTEMPTS,
        base_delay=settings.RATE_LOOKUP_BASE_DELAY_SECONDS,
    )
    currencies = [Currency(code) for code in settings.TRACKED_CURRENCIES]
    return CurrencyConverter(lookup, currencies=currencies)


def build_cache() -> Optional[RedisCache]:
    if not settings.REDIS_ENABLED:
        logger.info("Redis cache disabled (REDIS_ENABLED=false)")
        return None
    return RedisCache(url=settings.REDIS_URL, prefix="perf:", enabled=True)
