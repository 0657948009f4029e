"""
Arena configuration schema using Pydantic for validation.

Defines the settings for the price cache, the battle clock and trading
thresholds, the HTTP/WebSocket server, and logging.
"""

from typing import Dict, List, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_ASSET_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "DOGE": "dogecoin",
    "PEPE": "pepe",
}

DEFAULT_FALLBACK_PRICES = {
    "BTC": 95000.0,
    "ETH": 3500.0,
    "DOGE": 0.35,
    "PEPE": 0.000015,
}


class PriceSourceSettings(BaseModel):
    """Upstream price provider and cache settings"""
    provider_url: str = Field(
        default="https://api.coingecko.com/api/v3/simple/price",
        description="Simple-price endpoint of the upstream provider"
    )
    history_url: str = Field(
        default="https://api.coingecko.com/api/v3/coins/{asset_id}/market_chart",
        description="Market-chart endpoint; {asset_id} is substituted"
    )
    vs_currency: str = Field(default="usd", min_length=1)
    cache_ttl_seconds: float = Field(default=60.0, gt=0, description="Cache validity window")
    request_timeout_seconds: float = Field(default=8.0, gt=0, description="Upstream request timeout")
    asset_ids: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ASSET_IDS))
    fallback_prices: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_FALLBACK_PRICES))
    fallback_volatility: float = Field(default=0.5, ge=0, le=1)
    volatility_range: Tuple[float, float] = Field(default=(0.3, 0.8))

    @field_validator('fallback_prices')
    @classmethod
    def validate_fallback_prices(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Fallback prices must be usable as entry prices"""
        for symbol, price in v.items():
            if price <= 0:
                raise ValueError(f"fallback price for {symbol} must be positive, got: {price}")
        return v

    @field_validator('volatility_range')
    @classmethod
    def validate_volatility_range(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        low, high = v
        if not (0 <= low <= high <= 1):
            raise ValueError(f"volatility_range must satisfy 0 <= low <= high <= 1, got: {v}")
        return v

    @model_validator(mode='after')
    def validate_universe(self) -> 'PriceSourceSettings':
        """Every tracked asset needs a fallback price"""
        missing = sorted(set(self.asset_ids) - set(self.fallback_prices))
        if missing:
            raise ValueError(f"fallback_prices missing for: {', '.join(missing)}")
        return self


class BattleSettings(BaseModel):
    """Battle clock and trading thresholds"""
    tick_interval_seconds: float = Field(default=30.0, gt=0, description="Seconds between rounds")
    default_duration_seconds: float = Field(default=1800.0, gt=0, description="Battle length when not given")
    min_participants: int = Field(default=2, ge=2)
    take_profit_pct: float = Field(default=0.05, gt=0, description="Close when gain exceeds this")
    stop_loss_pct: float = Field(default=0.03, gt=0, description="Close when loss exceeds this")
    max_position_fraction: float = Field(default=0.5, gt=0, le=1, description="Exposure at risk level 100")
    worker_join_timeout_seconds: float = Field(default=5.0, gt=0)


class ServerSettings(BaseModel):
    """HTTP and WebSocket server"""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, gt=0, lt=65536)
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    broadcast_on_join: bool = Field(default=True, description="Announce participant joins to observers")


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    format: str = Field(default='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


class ArenaConfig(BaseModel):
    """
    Top-level arena configuration.

    All sections have defaults, so an empty file (or no file) yields a working
    configuration.
    """
    model_config = ConfigDict(extra='forbid', validate_assignment=True)

    price_source: PriceSourceSettings = Field(default_factory=PriceSourceSettings)
    battle: BattleSettings = Field(default_factory=BattleSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode='after')
    def validate_thresholds(self) -> 'ArenaConfig':
        """Stop-loss beyond 100% could never trigger"""
        if self.battle.stop_loss_pct >= 1:
            raise ValueError(f"battle.stop_loss_pct must be < 1, got: {self.battle.stop_loss_pct}")
        return self
