"""
Offline price provider: a seeded random walk around the fallback prices.

Used by `battle-arena simulate --offline` and anywhere the network is not
wanted.
"""

import logging
import math
import random
import time
from threading import Lock
from typing import Dict, List, Optional, Tuple

from battle_arena.config.arena_config_schema import PriceSourceSettings

logger = logging.getLogger(__name__)

# Per-step standard deviation of log returns
DEFAULT_STEP_VOLATILITY = {
    "BTC": 0.004,
    "ETH": 0.006,
    "DOGE": 0.015,
    "PEPE": 0.025,
}


class RandomWalkPriceProvider:
    """Each fetch_prices() call advances every symbol by one log-normal step"""

    def __init__(
        self,
        settings: Optional[PriceSourceSettings] = None,
        seed: Optional[int] = None,
        step_volatility: Optional[Dict[str, float]] = None
    ):
        self.settings = settings or PriceSourceSettings()
        self.rng = random.Random(seed)
        self.step_volatility = step_volatility or DEFAULT_STEP_VOLATILITY
        self._prices: Dict[str, float] = dict(self.settings.fallback_prices)
        self._history: Dict[str, List[Tuple[float, float]]] = {s: [] for s in self._prices}
        self._lock = Lock()

    def fetch_prices(self, timeout: Optional[float] = None) -> Dict[str, float]:
        with self._lock:
            now_ms = time.time() * 1000
            for symbol, price in self._prices.items():
                sigma = self.step_volatility.get(symbol, 0.01)
                self._prices[symbol] = price * math.exp(self.rng.gauss(0.0, sigma))
                self._history[symbol].append((now_ms, self._prices[symbol]))
            return dict(self._prices)

    def fetch_history(self, symbol: str, days: int = 1, timeout: Optional[float] = None) -> List[Tuple[float, float]]:
        with self._lock:
            if symbol not in self._history:
                raise KeyError(f"Unknown symbol: {symbol}")
            return list(self._history[symbol])
