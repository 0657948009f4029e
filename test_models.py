"""
Unit tests for the battle data model.

Tests:
- StrategyConfig clamping and asset focus parsing
- MarketSnapshot validation
- Position PnL arithmetic
- Phase transitions
- Basis point conversion
"""

import pytest
from pydantic import ValidationError

from battle_arena.battle.models import (
    AssetFocus,
    BattlePhase,
    MarketSnapshot,
    Position,
    RankingEntry,
    RankingSnapshot,
    StrategyConfig,
    to_basis_points,
)


class TestStrategyConfig:
    """Config values are clamped at construction"""

    @pytest.mark.parametrize("raw,expected", [
        (0, 1),
        (-50, 1),
        (1, 1),
        (55, 55),
        (100, 100),
        (250, 100),
        (42.6, 43),
        ("77", 77),
    ])
    def test_risk_level_clamped(self, raw, expected):
        config = StrategyConfig(risk_level=raw, trade_frequency=50, asset_focus="LowVol")
        assert config.risk_level == expected

    def test_trade_frequency_clamped(self):
        config = StrategyConfig(risk_level=50, trade_frequency=1000, asset_focus="LowVol")
        assert config.trade_frequency == 100

        config = StrategyConfig(risk_level=50, trade_frequency=0, asset_focus="LowVol")
        assert config.trade_frequency == 1

    def test_camel_case_aliases(self):
        config = StrategyConfig.model_validate({"riskLevel": 80, "tradeFrequency": 20, "assetFocus": "HighVol"})
        assert config.risk_level == 80
        assert config.trade_frequency == 20
        assert config.asset_focus == AssetFocus.HIGH_VOL

    def test_nan_rejected(self):
        with pytest.raises(ValidationError):
            StrategyConfig(risk_level=float('nan'), trade_frequency=50, asset_focus="LowVol")

    def test_config_is_frozen(self):
        config = StrategyConfig(risk_level=50, trade_frequency=50, asset_focus="LowVol")
        with pytest.raises(ValidationError):
            config.risk_level = 90

    @pytest.mark.parametrize("raw,expected", [
        ("LowVol", AssetFocus.LOW_VOL),
        ("MID_VOL", AssetFocus.MID_VOL),
        (2, AssetFocus.HIGH_VOL),
        ("0", AssetFocus.LOW_VOL),
        ("BlueChip", AssetFocus.LOW_VOL),
        ("Layer2", AssetFocus.MID_VOL),
        ("Memecoin", AssetFocus.HIGH_VOL),
        (AssetFocus.MID_VOL, AssetFocus.MID_VOL),
    ])
    def test_asset_focus_parsing(self, raw, expected):
        config = StrategyConfig(risk_level=50, trade_frequency=50, asset_focus=raw)
        assert config.asset_focus == expected

    @pytest.mark.parametrize("raw", ["ExtremeVol", 3, -1, -3, True, None])
    def test_invalid_asset_focus_rejected(self, raw):
        with pytest.raises(ValidationError):
            StrategyConfig(risk_level=50, trade_frequency=50, asset_focus=raw)

    @pytest.mark.parametrize("index", [-1, -2, -3])
    def test_negative_ledger_index_rejected(self, index):
        with pytest.raises(ValueError, match="out of range"):
            AssetFocus.parse(index)

    def test_candidate_assets(self):
        assert AssetFocus.LOW_VOL.candidate_assets == ("BTC", "ETH")
        assert AssetFocus.MID_VOL.candidate_assets == ("ETH",)
        assert AssetFocus.HIGH_VOL.candidate_assets == ("DOGE", "PEPE")


class TestMarketSnapshot:

    def test_valid_snapshot(self):
        snapshot = MarketSnapshot(timestamp=1.0, prices={"BTC": 100.0}, volatility_hint=0.4)
        assert snapshot.price_of("BTC") == 100.0
        assert snapshot.source == "live"

    def test_unknown_symbol_raises_key_error(self):
        snapshot = MarketSnapshot(timestamp=1.0, prices={"BTC": 100.0}, volatility_hint=0.4)
        with pytest.raises(KeyError):
            snapshot.price_of("DOGE")

    @pytest.mark.parametrize("price", [0.0, -1.0])
    def test_non_positive_price_rejected(self, price):
        with pytest.raises(ValidationError):
            MarketSnapshot(timestamp=1.0, prices={"BTC": price}, volatility_hint=0.4)

    def test_volatility_hint_bounds(self):
        with pytest.raises(ValidationError):
            MarketSnapshot(timestamp=1.0, prices={"BTC": 1.0}, volatility_hint=1.5)


class TestPosition:

    def test_pnl_scaled_by_size(self):
        position = Position(asset="ETH", entry_price=100.0, size_fraction=0.5, opened_at=0.0)
        assert position.price_change(110.0) == pytest.approx(0.10)
        assert position.unrealized_pnl(110.0) == pytest.approx(5.0)
        assert position.unrealized_pnl(90.0) == pytest.approx(-5.0)

    def test_invalid_position_rejected(self):
        with pytest.raises(ValueError):
            Position(asset="ETH", entry_price=0.0, size_fraction=0.5, opened_at=0.0)
        with pytest.raises(ValueError):
            Position(asset="ETH", entry_price=10.0, size_fraction=1.5, opened_at=0.0)


class TestBattlePhase:

    def test_forward_steps_only(self):
        assert BattlePhase.PENDING.can_transition_to(BattlePhase.RUNNING)
        assert BattlePhase.RUNNING.can_transition_to(BattlePhase.FINALIZING)
        assert BattlePhase.FINALIZING.can_transition_to(BattlePhase.FINALIZED)

    def test_no_skips_or_reversals(self):
        assert not BattlePhase.PENDING.can_transition_to(BattlePhase.FINALIZED)
        assert not BattlePhase.RUNNING.can_transition_to(BattlePhase.PENDING)
        assert not BattlePhase.FINALIZED.can_transition_to(BattlePhase.RUNNING)
        assert not BattlePhase.FINALIZED.can_transition_to(BattlePhase.FINALIZED)


class TestBasisPoints:

    @pytest.mark.parametrize("pnl,expected", [
        (0.0, 0),
        (3.0, 300),
        (0.125, 13),
        (-0.125, -13),
        (-2.5, -250),
        (0.004, 0),
    ])
    def test_conversion(self, pnl, expected):
        assert to_basis_points(pnl) == expected


def test_ranking_snapshot_message():
    snapshot = RankingSnapshot(
        battle_id=7,
        ranking=[RankingEntry(participant_id="A", pnl=1.5), RankingEntry(participant_id="B", pnl=-0.5)],
        timestamp=123.0,
        tick=3
    )
    message = snapshot.to_message()
    assert message["type"] == "leaderboard_update"
    assert message["battle_id"] == 7
    assert message["ranking"] == [{"participant_id": "A", "pnl": 1.5}, {"participant_id": "B", "pnl": -0.5}]
    assert message["tick"] == 3
    assert message["final"] is False
