"""
Battle data model.

Configuration and market types are immutable pydantic models; per-participant
and per-battle state are plain dataclasses owned by a single orchestrator.
Read models (ranking, leaderboard, info, outcome) are frozen snapshots handed
out to readers.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AssetFocus(str, Enum):
    """Volatility bucket a participant trades in"""
    LOW_VOL = "LowVol"
    MID_VOL = "MidVol"
    HIGH_VOL = "HighVol"

    @property
    def candidate_assets(self) -> Tuple[str, ...]:
        return ASSET_CANDIDATES[self]

    @classmethod
    def parse(cls, value) -> "AssetFocus":
        """
        Accept an AssetFocus, its value or name, a ledger index (0-2),
        or one of the legacy names (BlueChip, Layer2, Memecoin).
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid asset focus: {value!r}")
        if isinstance(value, int):
            if not 0 <= value < len(LEDGER_FOCUS_ORDER):
                raise ValueError(f"Asset focus index out of range: {value}")
            return LEDGER_FOCUS_ORDER[value]
        if isinstance(value, str):
            text = value.strip()
            for focus in cls:
                if text == focus.value or text.upper() == focus.name:
                    return focus
            if text in LEGACY_FOCUS_NAMES:
                return LEGACY_FOCUS_NAMES[text]
            if text.isdigit():
                return cls.parse(int(text))
        raise ValueError(f"Invalid asset focus: {value!r}")


ASSET_CANDIDATES: Dict[AssetFocus, Tuple[str, ...]] = {
    AssetFocus.LOW_VOL: ("BTC", "ETH"),
    AssetFocus.MID_VOL: ("ETH",),
    AssetFocus.HIGH_VOL: ("DOGE", "PEPE"),
}

# Order the ledger encodes focus as an integer
LEDGER_FOCUS_ORDER: Tuple[AssetFocus, ...] = (
    AssetFocus.LOW_VOL,
    AssetFocus.MID_VOL,
    AssetFocus.HIGH_VOL,
)

LEGACY_FOCUS_NAMES: Dict[str, AssetFocus] = {
    "BlueChip": AssetFocus.LOW_VOL,
    "Layer2": AssetFocus.MID_VOL,
    "Memecoin": AssetFocus.HIGH_VOL,
}

ASSET_UNIVERSE: Tuple[str, ...] = ("BTC", "ETH", "DOGE", "PEPE")


def clamp_percent(value) -> int:
    """Coerce to an integer and clamp into [1, 100]"""
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, str):
        value = float(value.strip())
    if isinstance(value, float):
        if math.isnan(value):
            raise ValueError("NaN is not a valid percentage")
        if math.isinf(value):
            return 100 if value > 0 else 1
        value = int(round(value))
    if not isinstance(value, int):
        raise ValueError(f"Expected a number, got {value!r}")
    return max(1, min(100, value))


class StrategyConfig(BaseModel):
    """
    Participant strategy, fixed at registration.

    risk_level and trade_frequency are clamped into [1, 100] on construction,
    so every consumer sees effective values only.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    risk_level: int = Field(..., alias="riskLevel")
    trade_frequency: int = Field(..., alias="tradeFrequency")
    asset_focus: AssetFocus = Field(..., alias="assetFocus")

    @field_validator('risk_level', 'trade_frequency', mode='before')
    @classmethod
    def clamp_to_range(cls, v):
        return clamp_percent(v)

    @field_validator('asset_focus', mode='before')
    @classmethod
    def parse_focus(cls, v):
        return AssetFocus.parse(v)


class MarketSnapshot(BaseModel):
    """Prices for the asset universe at one capture time"""
    model_config = ConfigDict(frozen=True)

    timestamp: float
    prices: Dict[str, float]
    volatility_hint: float = Field(ge=0.0, le=1.0)
    source: str = "live"

    @field_validator('prices')
    @classmethod
    def validate_prices(cls, v: Dict[str, float]) -> Dict[str, float]:
        for symbol, price in v.items():
            if not price > 0:
                raise ValueError(f"Price for {symbol} must be positive, got {price}")
        return v

    def price_of(self, symbol: str) -> float:
        try:
            return self.prices[symbol]
        except KeyError:
            raise KeyError(f"No price for {symbol} in snapshot") from None


@dataclass(frozen=True)
class Position:
    """The single open position a participant may hold"""
    asset: str
    entry_price: float
    size_fraction: float
    opened_at: float

    def __post_init__(self):
        if not self.entry_price > 0:
            raise ValueError(f"entry_price must be positive, got {self.entry_price}")
        if not 0 < self.size_fraction <= 1:
            raise ValueError(f"size_fraction must be in (0, 1], got {self.size_fraction}")

    def price_change(self, current_price: float) -> float:
        return (current_price - self.entry_price) / self.entry_price

    def unrealized_pnl(self, current_price: float) -> float:
        return self.price_change(current_price) * 100 * self.size_fraction


class TradeAction(str, Enum):
    """Decision produced by an agent each round"""
    HOLD = "HOLD"
    BUY = "BUY"
    SELL = "SELL"


class TradeEvent(BaseModel):
    """Append-only audit record of one BUY or SELL"""
    model_config = ConfigDict(frozen=True)

    action: TradeAction
    asset: str
    price: float
    timestamp: float
    size_fraction: Optional[float] = None
    realized_profit_pct: Optional[float] = None


@dataclass
class ParticipantState:
    """Mutable per-participant state, owned by one orchestrator"""
    participant_id: str
    config: StrategyConfig
    join_index: int
    realized_pnl: float = 0.0
    position: Optional[Position] = None
    trade_log: List[TradeEvent] = field(default_factory=list)


class BattlePhase(str, Enum):
    """Battle lifecycle; transitions only move forward"""
    PENDING = "pending"
    RUNNING = "running"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)

    def can_transition_to(self, target: "BattlePhase") -> bool:
        return target.order == self.order + 1


_PHASE_ORDER = [
    BattlePhase.PENDING,
    BattlePhase.RUNNING,
    BattlePhase.FINALIZING,
    BattlePhase.FINALIZED,
]


@dataclass
class BattleState:
    """Mutable battle state; the orchestrator's worker is its only writer"""
    battle_id: int
    roster: Dict[str, ParticipantState] = field(default_factory=dict)
    deadline: Optional[float] = None
    phase: BattlePhase = BattlePhase.PENDING
    tick_count: int = 0
    started_at: Optional[float] = None
    finalized_at: Optional[float] = None


# Read models

class RankingEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: str
    pnl: float


class RankingSnapshot(BaseModel):
    """Ordered standings published after a round or on finalize"""
    model_config = ConfigDict(frozen=True)

    battle_id: int
    ranking: List[RankingEntry]
    timestamp: float
    tick: int
    final: bool = False

    def to_message(self) -> Dict:
        return {
            "type": "leaderboard_update",
            "battle_id": self.battle_id,
            "ranking": [entry.model_dump() for entry in self.ranking],
            "timestamp": self.timestamp,
            "tick": self.tick,
            "final": self.final,
        }


class PositionView(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset: str
    entry_price: float
    size_fraction: float
    opened_at: float
    current_price: Optional[float] = None
    unrealized_pnl: Optional[float] = None


class LeaderboardEntry(BaseModel):
    """Single row of the leaderboard"""
    model_config = ConfigDict(frozen=True)

    rank: int = Field(ge=1)
    participant_id: str
    pnl: float
    realized_pnl: float
    trade_count: int = Field(ge=0)
    open_position: Optional[PositionView] = None
    config: StrategyConfig


class BattleOutcome(BaseModel):
    """Fixed result of a finalized battle"""
    model_config = ConfigDict(frozen=True)

    battle_id: int
    winner_id: str
    winning_pnl: float
    winning_pnl_basis_points: int
    ranking: List[RankingEntry]
    reported: bool = False
    report_error: Optional[str] = None


class BattleInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    battle_id: int
    phase: BattlePhase
    participant_count: int
    participants: List[str]
    tick_count: int
    started_at: Optional[float] = None
    deadline: Optional[float] = None
    seconds_remaining: Optional[float] = None
    winner_id: Optional[str] = None
    winning_pnl: Optional[float] = None
    outcome_reported: Optional[bool] = None


def to_basis_points(pnl_percent: float) -> int:
    """Percent PnL to integer basis points, rounding half away from zero"""
    scaled = pnl_percent * 100
    return int(math.floor(scaled + 0.5)) if scaled >= 0 else -int(math.floor(-scaled + 0.5))
