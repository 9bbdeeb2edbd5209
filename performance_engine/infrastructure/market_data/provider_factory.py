"""
Exchange rate provider factory (config-driven).
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional
import logging
import yaml

from performance_engine.infrastructure.market_data.provider_chain import (
    ChainedRateProvider,
    NamedProvider,
)
from performance_engine.infrastructure.market_data.types import ExchangeRateProvider
from performance_engine.infrastructure.market_data.yahoo_chart_provider import YahooChartRateProvider
from performance_engine.infrastructure.market_data.yfinance_provider import YFinanceRateProvider

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).resolve().parents[3] / "config" / "app.yml"


def _load_app_config(config_file: Optional[Path] = None) -> Dict:
    path = config_file or DEFAULT_CONFIG_FILE
    if not path.exists():
        logger.info(f"No market data config at {path}, using defaults")
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return data.get("market_data", {})


def _build_provider(name: str, app_config: Dict) -> ExchangeRateProvider:
    name = (name or "").lower()
    if name == "yahoo_chart":
        return YahooChartRateProvider(timeout_seconds=float(app_config.get("timeout_seconds", 10)))
    if name == "yfinance":
        return YFinanceRateProvider(cache_ttl_seconds=int(app_config.get("cache_ttl", 3600)))
    raise ValueError(f"Unknown exchange rate provider: {name}")


def get_rate_provider(config_file: Optional[Path] = None) -> ChainedRateProvider:
    app_config = _load_app_config(config_file)
    provider_name = app_config.get("provider", "yfinance")
    fallback_names = app_config.get("fallback_providers", ["yahoo_chart"])

    providers: List[NamedProvider] = [
        NamedProvider(provider_name.lower(), _build_provider(provider_name, app_config))
    ]
    for fallback in fallback_names:
        if fallback and fallback.lower() != provider_name.lower():
            try:
                providers.append(NamedProvider(fallback.lower(), _build_provider(fallback, app_config)))
            except ValueError as exc:
                logger.warning(f"Skipping fallback provider: {exc}")
                continue

    return ChainedRateProvider(providers)
