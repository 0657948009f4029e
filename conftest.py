"""
Shared fakes for the battle arena test suite.

Nothing here touches the network or depends on wall-clock sleeps.
"""

import threading
from typing import Dict, List, Optional

import pytest

from battle_arena.battle.models import MarketSnapshot, StrategyConfig
from battle_arena.config.arena_config_schema import BattleSettings, PriceSourceSettings


BASE_PRICES = {"BTC": 100.0, "ETH": 50.0, "DOGE": 1.0, "PEPE": 0.001}


class FakeClock:
    """Manually advanced clock, callable like time.time"""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.reads = 0
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            self.reads += 1
            return self.now

    def advance(self, seconds: float):
        with self._lock:
            self.now += seconds


class SequenceRandom:
    """
    Random source returning scripted values, then a default.

    Also offers uniform() so it can stand in for the price source's rng.
    """

    def __init__(self, values: Optional[List[float]] = None, default: float = 0.99):
        self.values = list(values or [])
        self.default = default
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.values:
            return self.values.pop(0)
        return self.default

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.random()

    def push(self, *values: float):
        self.values.extend(values)


class ScriptedPriceProvider:
    """Upstream stand-in: returns queued price maps, or raises when failing"""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or BASE_PRICES)
        self.queued: List[Dict[str, float]] = []
        self.failing = False
        self.calls = 0
        self.history_calls = 0
        # Set by tests that need a slow upstream
        self.gate: Optional[threading.Event] = None

    def fetch_prices(self, timeout=None) -> Dict[str, float]:
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.failing:
            raise ConnectionError("upstream down")
        if self.queued:
            self.prices = self.queued.pop(0)
        return dict(self.prices)

    def fetch_history(self, symbol, days=1, timeout=None):
        self.history_calls += 1
        if self.failing:
            raise ConnectionError("upstream down")
        return [(0.0, self.prices[symbol]), (60_000.0, self.prices[symbol])]

    def set_prices(self, **prices: float):
        self.prices = {**self.prices, **prices}


class StaticPriceSource:
    """Price source for orchestrator tests: every fetch returns a fresh snapshot of current prices"""

    def __init__(self, clock: FakeClock, prices: Optional[Dict[str, float]] = None):
        self.clock = clock
        self.prices = dict(prices or BASE_PRICES)
        self.fetches = 0

    def fetch(self):
        self.fetches += 1
        return MarketSnapshot(timestamp=self.clock(), prices=dict(self.prices), volatility_hint=0.5)

    def latest(self):
        return self.fetch()

    def get_cache_status(self):
        return {"cached": self.fetches > 0, "source": "live", "refreshes": self.fetches, "failures": 0}

    def set_prices(self, **prices: float):
        self.prices = {**self.prices, **prices}


class RecordingBroadcaster:
    def __init__(self):
        self.messages: List[dict] = []

    def publish(self, message):
        self.messages.append(message)

    def of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.messages if m.get('type') == message_type]


class RecordingLedger:
    """Outcome reporter that records calls and can be told to fail"""

    def __init__(self):
        self.reports = []
        self.failing = False

    def report_outcome(self, battle_id, winner_id, winning_pnl_basis_points):
        if self.failing:
            raise ConnectionError("ledger unreachable")
        self.reports.append((battle_id, winner_id, winning_pnl_basis_points))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def battle_settings():
    """Tick interval long enough that the scheduler never fires during a test"""
    return BattleSettings(tick_interval_seconds=3600, default_duration_seconds=90, worker_join_timeout_seconds=2)


@pytest.fixture
def price_settings():
    return PriceSourceSettings(
        fallback_prices={"BTC": 95000.0, "ETH": 3500.0, "DOGE": 0.35, "PEPE": 0.000015}
    )


@pytest.fixture
def aggressive_config():
    return StrategyConfig(risk_level=100, trade_frequency=100, asset_focus="MidVol")


@pytest.fixture
def passive_config():
    return StrategyConfig(risk_level=50, trade_frequency=1, asset_focus="MidVol")
