"""
CoinGecko client: current and historical USD prices for the asset universe.

Source: https://api.coingecko.com/api/v3 (public, rate limited)
"""

import logging
from typing import Dict, List, Optional, Tuple

import requests

from battle_arena.config.arena_config_schema import PriceSourceSettings

logger = logging.getLogger(__name__)


class PriceFetchError(Exception):
    """Upstream price request failed or returned unusable data"""
    pass


class CoinGeckoClient:
    """
    Thin wrapper over the CoinGecko simple-price and market-chart endpoints.

    Raises PriceFetchError on any failure; caching and fallback are the
    caller's job (see PriceSource).
    """

    def __init__(self, settings: Optional[PriceSourceSettings] = None, session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            settings: Price source settings (endpoint URLs, asset ids, currency)
            session: Optional requests session (shared connection pool, tests)
        """
        self.settings = settings or PriceSourceSettings()
        self.session = session or requests.Session()
        self._symbol_by_id = {asset_id: symbol for symbol, asset_id in self.settings.asset_ids.items()}

    def fetch_prices(self, timeout: Optional[float] = None) -> Dict[str, float]:
        """
        Fetch current prices for every configured symbol.

        Args:
            timeout: Request timeout in seconds (defaults to settings)

        Returns:
            Dict mapping symbol to positive price

        Raises:
            PriceFetchError: On HTTP errors, timeouts, or incomplete payloads
        """
        timeout = timeout or self.settings.request_timeout_seconds
        params = {
            'ids': ','.join(self.settings.asset_ids.values()),
            'vs_currencies': self.settings.vs_currency,
        }

        try:
            response = self.session.get(self.settings.provider_url, params=params, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise PriceFetchError(f"Price request failed: {e}") from e

        if not isinstance(data, dict):
            raise PriceFetchError(f"Unexpected price payload: {type(data).__name__}")

        prices = {}
        for asset_id, symbol in self._symbol_by_id.items():
            quote = data.get(asset_id)
            price = quote.get(self.settings.vs_currency) if isinstance(quote, dict) else None
            if not isinstance(price, (int, float)) or isinstance(price, bool) or price <= 0:
                raise PriceFetchError(f"Missing or invalid price for {symbol}: {price!r}")
            prices[symbol] = float(price)

        logger.debug(f"Fetched prices for {len(prices)} symbols")
        return prices

    def fetch_history(self, symbol: str, days: int = 1, timeout: Optional[float] = None) -> List[Tuple[float, float]]:
        """
        Fetch (timestamp_ms, price) pairs for one symbol.

        Raises:
            PriceFetchError: On unknown symbol, HTTP errors, or malformed payloads
        """
        asset_id = self.settings.asset_ids.get(symbol)
        if asset_id is None:
            raise PriceFetchError(f"Unknown symbol: {symbol}")

        url = self.settings.history_url.format(asset_id=asset_id)
        params = {'vs_currency': self.settings.vs_currency, 'days': days}

        try:
            response = self.session.get(url, params=params, timeout=timeout or self.settings.request_timeout_seconds)
            response.raise_for_status()
            points = response.json().get('prices')
        except (requests.RequestException, ValueError, AttributeError) as e:
            raise PriceFetchError(f"History request failed for {symbol}: {e}") from e

        if not isinstance(points, list):
            raise PriceFetchError(f"Malformed history payload for {symbol}")

        try:
            return [(float(ts), float(price)) for ts, price in points]
        except (TypeError, ValueError) as e:
            raise PriceFetchError(f"Malformed history point for {symbol}: {e}") from e
