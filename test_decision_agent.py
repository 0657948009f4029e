"""
Unit tests for DecisionAgent.

Tests:
- Frequency gate and momentum entry
- Take-profit / stop-loss exits
- Position sizing and realized PnL accounting
- At most one open position
- Asset selection per focus
"""

import pytest

from battle_arena.battle.decision_agent import DecisionAgent
from battle_arena.battle.models import MarketSnapshot, ParticipantState, StrategyConfig, TradeAction
from battle_arena.config.arena_config_schema import BattleSettings
from conftest import SequenceRandom


def snapshot(eth=50.0, btc=100.0, doge=1.0, pepe=0.001, timestamp=1.0):
    return MarketSnapshot(
        timestamp=timestamp,
        prices={"BTC": btc, "ETH": eth, "DOGE": doge, "PEPE": pepe},
        volatility_hint=0.5
    )


def make_agent(risk=100, frequency=100, focus="MidVol", values=None):
    state = ParticipantState(
        participant_id="0xA",
        config=StrategyConfig(risk_level=risk, trade_frequency=frequency, asset_focus=focus),
        join_index=0
    )
    rng = SequenceRandom(values)
    return DecisionAgent(state, rng=rng, settings=BattleSettings()), rng


class TestDecide:

    def test_frequency_gate_holds(self):
        agent, _ = make_agent(frequency=10, values=[0.5])
        assert agent.decide(snapshot()) == TradeAction.HOLD

    def test_positive_momentum_buys(self):
        agent, _ = make_agent(values=[0.0, 0.9])
        assert agent.decide(snapshot()) == TradeAction.BUY

    def test_negative_momentum_holds(self):
        agent, _ = make_agent(values=[0.0, 0.2])
        assert agent.decide(snapshot()) == TradeAction.HOLD

    def test_zero_momentum_holds(self):
        agent, _ = make_agent(values=[0.0, 0.5])
        assert agent.decide(snapshot()) == TradeAction.HOLD

    def test_decide_does_not_mutate(self):
        agent, _ = make_agent(values=[0.0, 0.9])
        agent.decide(snapshot())
        assert agent.state.position is None
        assert agent.state.trade_log == []
        assert agent.state.realized_pnl == 0.0

    def test_take_profit_sells(self):
        agent, rng = make_agent(values=[0.0, 0.9])
        agent.apply(agent.decide(snapshot(eth=50.0)), snapshot(eth=50.0))

        rng.push(0.0)
        assert agent.decide(snapshot(eth=52.6)) == TradeAction.SELL

    def test_stop_loss_sells(self):
        agent, rng = make_agent(values=[0.0, 0.9])
        agent.apply(agent.decide(snapshot(eth=50.0)), snapshot(eth=50.0))

        rng.push(0.0)
        assert agent.decide(snapshot(eth=48.4)) == TradeAction.SELL

    def test_within_band_holds(self):
        agent, rng = make_agent(values=[0.0, 0.9])
        agent.apply(agent.decide(snapshot(eth=50.0)), snapshot(eth=50.0))

        rng.push(0.0)
        assert agent.decide(snapshot(eth=51.0)) == TradeAction.HOLD

    def test_missing_price_for_open_position_raises(self):
        agent, rng = make_agent(values=[0.0, 0.9])
        agent.apply(agent.decide(snapshot()), snapshot())

        rng.push(0.0)
        partial = MarketSnapshot(timestamp=2.0, prices={"BTC": 100.0}, volatility_hint=0.5)
        with pytest.raises(KeyError):
            agent.decide(partial)


class TestApply:

    def test_buy_opens_sized_position(self):
        agent, _ = make_agent(risk=40, values=[0.0, 0.9])
        event = agent.apply(TradeAction.BUY, snapshot(eth=50.0, timestamp=5.0))

        position = agent.state.position
        assert position.asset == "ETH"
        assert position.entry_price == 50.0
        assert position.size_fraction == pytest.approx(0.2)
        assert position.opened_at == 5.0
        assert event.action == TradeAction.BUY
        assert event.size_fraction == pytest.approx(0.2)
        assert agent.trade_count == 1

    def test_buy_with_open_position_is_refused(self):
        agent, _ = make_agent()
        agent.apply(TradeAction.BUY, snapshot(eth=50.0))
        first = agent.state.position

        assert agent.apply(TradeAction.BUY, snapshot(eth=60.0)) is None
        assert agent.state.position is first
        assert agent.trade_count == 1

    def test_sell_realizes_pnl(self):
        agent, _ = make_agent(risk=100)
        agent.apply(TradeAction.BUY, snapshot(eth=50.0))
        event = agent.apply(TradeAction.SELL, snapshot(eth=55.0))

        # 10% move on a 0.5 position
        assert agent.state.realized_pnl == pytest.approx(5.0)
        assert agent.state.position is None
        assert event.action == TradeAction.SELL
        assert event.realized_profit_pct == pytest.approx(10.0)

    def test_sell_without_position_is_noop(self):
        agent, _ = make_agent()
        assert agent.apply(TradeAction.SELL, snapshot()) is None
        assert agent.state.realized_pnl == 0.0
        assert agent.trade_count == 0

    def test_hold_is_noop(self):
        agent, _ = make_agent()
        assert agent.apply(TradeAction.HOLD, snapshot()) is None
        assert agent.state.position is None

    def test_realized_pnl_changes_only_on_sell(self):
        agent, rng = make_agent(values=[0.0, 0.9])
        prices = [50.0, 51.0, 49.0, 50.5, 53.0, 53.0, 40.0]
        realized_before = agent.state.realized_pnl

        for eth in prices:
            market = snapshot(eth=eth)
            rng.push(0.0, 0.9)
            action = agent.decide(market)
            # Drop the unused momentum draw when a position was open
            if agent.state.position is not None:
                rng.values.clear()
            agent.apply(action, market)

            if action != TradeAction.SELL:
                assert agent.state.realized_pnl == realized_before
            realized_before = agent.state.realized_pnl

            assert (agent.state.position is None) or agent.state.position.asset == "ETH"

    def test_unrealized_plus_realized(self):
        agent, _ = make_agent(risk=100)
        agent.apply(TradeAction.BUY, snapshot(eth=50.0))
        agent.apply(TradeAction.SELL, snapshot(eth=55.0))
        agent.apply(TradeAction.BUY, snapshot(eth=100.0))

        total = agent.unrealized_plus_realized_pnl(snapshot(eth=90.0))
        assert total == pytest.approx(5.0 - 5.0)
        assert agent.state.position is not None


class TestSelectAsset:

    def test_mid_vol_always_eth(self):
        agent, rng = make_agent(focus="MidVol")
        assert agent.select_asset() == "ETH"
        assert rng.calls == 0

    @pytest.mark.parametrize("draw,expected", [(0.0, "DOGE"), (0.49, "DOGE"), (0.5, "PEPE"), (0.99, "PEPE")])
    def test_high_vol_uniform_choice(self, draw, expected):
        agent, _ = make_agent(focus="HighVol", values=[draw])
        assert agent.select_asset() == expected

    @pytest.mark.parametrize("draw,expected", [(0.1, "BTC"), (0.7, "ETH")])
    def test_low_vol_uniform_choice(self, draw, expected):
        agent, _ = make_agent(focus="LowVol", values=[draw])
        assert agent.select_asset() == expected
