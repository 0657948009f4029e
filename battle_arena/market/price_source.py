"""
Price Source: cached market prices shared by every running battle.

Shields battles from upstream rate limits and outages:
- One cached snapshot, served unchanged within the validity window
- Live refresh on expiry, bounded by the upstream request timeout
- Previous snapshot served (even expired) when the upstream call fails
- Built-in fallback snapshot on a cold-start failure
- Thread-safe; concurrent expiries trigger a single upstream call
"""

import logging
import random
import time
from threading import Lock
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from battle_arena.battle.models import MarketSnapshot
from battle_arena.config.arena_config_schema import PriceSourceSettings

logger = logging.getLogger(__name__)


class PriceProvider(Protocol):
    """Upstream price provider (CoinGeckoClient in production)"""

    def fetch_prices(self, timeout: Optional[float] = None) -> Dict[str, float]:
        ...

    def fetch_history(self, symbol: str, days: int = 1, timeout: Optional[float] = None) -> List[Tuple[float, float]]:
        ...


class PriceSource:
    """
    Fetches and caches current prices for the fixed asset universe.

    fetch() never raises: staleness is preferred over failing a round, since
    simulated trades must always be able to proceed.
    """

    def __init__(
        self,
        provider: PriceProvider,
        settings: Optional[PriceSourceSettings] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize price source.

        Args:
            provider: Upstream price provider
            settings: Cache window, timeout, fallback prices, volatility range
            clock: Time source in seconds
            rng: Random source for the volatility hint
        """
        self.provider = provider
        self.settings = settings or PriceSourceSettings()
        self.clock = clock
        self.rng = rng or random.Random()

        # Guards the cached snapshot and counters
        self._cache_lock = Lock()
        # Held for the duration of an upstream refresh (single flight)
        self._refresh_lock = Lock()

        self._snapshot: Optional[MarketSnapshot] = None
        self._valid_until: Optional[float] = None
        self._refresh_count = 0
        self._failure_count = 0
        # Bumped after every upstream attempt, successful or not
        self._attempts = 0
        self._last_result: Optional[MarketSnapshot] = None

        logger.info(
            f"PriceSource initialized: {len(self.settings.asset_ids)} assets, "
            f"cache {self.settings.cache_ttl_seconds}s, timeout {self.settings.request_timeout_seconds}s"
        )

    def fetch(self) -> MarketSnapshot:
        """
        Return the current market snapshot.

        Returns:
            Cached snapshot if still valid, a fresh one after a successful
            refresh, otherwise the previous or the fallback snapshot
        """
        cached, attempts_seen = self._get_valid_snapshot()
        if cached is not None:
            return cached

        with self._refresh_lock:
            cached, attempts = self._get_valid_snapshot()
            if cached is not None:
                return cached
            # A refresh finished while we waited; share its result even if it failed
            if attempts != attempts_seen:
                return self._last_result

            return self._refresh()

    def _get_valid_snapshot(self) -> Tuple[Optional[MarketSnapshot], int]:
        """Valid cached snapshot (or None) and the upstream attempt count"""
        with self._cache_lock:
            attempts = self._attempts
            if self._snapshot is not None and self._valid_until is not None and self.clock() < self._valid_until:
                return self._snapshot, attempts
            return None, attempts

    def _refresh(self) -> MarketSnapshot:
        """Refresh from upstream; caller holds the refresh lock"""
        try:
            prices = self.provider.fetch_prices(timeout=self.settings.request_timeout_seconds)
            missing = sorted(set(self.settings.asset_ids) - set(prices))
            if missing:
                raise ValueError(f"upstream omitted prices for: {', '.join(missing)}")

            low, high = self.settings.volatility_range
            now = self.clock()
            snapshot = MarketSnapshot(
                timestamp=now,
                prices=dict(prices),
                volatility_hint=self.rng.uniform(low, high),
                source="live"
            )
        except Exception as e:
            return self._on_refresh_failure(e)

        with self._cache_lock:
            self._snapshot = snapshot
            self._valid_until = now + self.settings.cache_ttl_seconds
            self._refresh_count += 1
            self._attempts += 1
            self._last_result = snapshot

        logger.info(f"Prices refreshed: {', '.join(f'{s}={p:g}' for s, p in snapshot.prices.items())}")
        return snapshot

    def _on_refresh_failure(self, error: Exception) -> MarketSnapshot:
        with self._cache_lock:
            self._failure_count += 1
            self._attempts += 1

            if self._snapshot is not None:
                logger.warning(f"Price refresh failed, serving previous snapshot: {error}")
            else:
                logger.error(f"Price refresh failed on cold start, serving fallback prices: {error}")
                # Kept as the previous snapshot but never marked valid, so the
                # next call tries upstream again
                self._snapshot = self.fallback_snapshot()

            self._last_result = self._snapshot
            return self._snapshot

    def fallback_snapshot(self) -> MarketSnapshot:
        """Built-in prices used when nothing better is available"""
        return MarketSnapshot(
            timestamp=self.clock(),
            prices=dict(self.settings.fallback_prices),
            volatility_hint=self.settings.fallback_volatility,
            source="fallback"
        )

    def latest(self) -> MarketSnapshot:
        """
        Most recent snapshot without touching upstream.

        Used when a battle is aborted and must finalize on whatever is at hand.
        """
        with self._cache_lock:
            if self._snapshot is not None:
                return self._snapshot
        return self.fetch()

    def fetch_history(self, symbol: str, days: int = 1) -> List[Tuple[float, float]]:
        """
        Historical (timestamp_ms, price) pairs; empty list on failure.
        """
        try:
            return self.provider.fetch_history(symbol, days=days, timeout=self.settings.request_timeout_seconds)
        except Exception as e:
            logger.error(f"Failed to fetch price history for {symbol}: {e}")
            return []

    def invalidate_cache(self):
        """Force the next fetch() to try upstream"""
        with self._cache_lock:
            self._valid_until = None
            logger.info("Price cache invalidated")

    def get_cache_status(self) -> Dict:
        """
        Get cache status information.

        Returns:
            Dict with cache metadata
        """
        with self._cache_lock:
            now = self.clock()
            if self._snapshot is None:
                return {
                    'cached': False,
                    'source': None,
                    'age_seconds': None,
                    'is_stale': True,
                    'refreshes': self._refresh_count,
                    'failures': self._failure_count,
                }
            return {
                'cached': True,
                'source': self._snapshot.source,
                'age_seconds': now - self._snapshot.timestamp,
                'is_stale': self._valid_until is None or now >= self._valid_until,
                'refreshes': self._refresh_count,
                'failures': self._failure_count,
            }
