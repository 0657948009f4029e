"""
Decision Agent: rule-based trading for one participant.

Each round the agent:
1. Rolls against its trade frequency (HOLD if the roll misses)
2. Without a position: draws a momentum signal, BUY when positive
3. With a position: SELL on take-profit or stop-loss, otherwise HOLD

All randomness comes from one injected source so tests can script outcomes.
"""

import logging
import random
from typing import Optional, Protocol

from battle_arena.battle.models import (
    MarketSnapshot,
    ParticipantState,
    Position,
    TradeAction,
    TradeEvent,
)
from battle_arena.config.arena_config_schema import BattleSettings

logger = logging.getLogger(__name__)


class RandomSource(Protocol):
    """Anything with random() -> float in [0, 1)"""

    def random(self) -> float:
        ...


class DecisionAgent:
    """
    Trades a single participant's simulated portfolio.

    The agent mutates only the ParticipantState it was given. PnL is measured
    in percent of portfolio: a 10% move on a 0.5 position is 5.0.
    """

    def __init__(
        self,
        state: ParticipantState,
        rng: Optional[RandomSource] = None,
        settings: Optional[BattleSettings] = None
    ):
        self.state = state
        self.rng = rng or random.Random()
        self.settings = settings or BattleSettings()

    @property
    def participant_id(self) -> str:
        return self.state.participant_id

    @property
    def trade_count(self) -> int:
        return len(self.state.trade_log)

    def decide(self, market: MarketSnapshot) -> TradeAction:
        """
        Produce this round's decision without changing any state.

        Raises:
            KeyError: If the open position's asset has no price in the snapshot
        """
        config = self.state.config

        # Higher frequency trades more often
        if self.rng.random() > config.trade_frequency / 100:
            return TradeAction.HOLD

        position = self.state.position
        if position is None:
            momentum = self.rng.random() - 0.5
            return TradeAction.BUY if momentum > 0 else TradeAction.HOLD

        price_change = position.price_change(market.price_of(position.asset))
        if price_change > self.settings.take_profit_pct or price_change < -self.settings.stop_loss_pct:
            return TradeAction.SELL
        return TradeAction.HOLD

    def apply(self, action: TradeAction, market: MarketSnapshot) -> Optional[TradeEvent]:
        """
        Execute a decision against the participant's portfolio.

        Returns:
            The TradeEvent appended to the trade log, or None if nothing traded
        """
        if action == TradeAction.BUY:
            return self._open_position(market)
        if action == TradeAction.SELL:
            return self._close_position(market)
        return None

    def _open_position(self, market: MarketSnapshot) -> Optional[TradeEvent]:
        if self.state.position is not None:
            logger.warning(
                f"[{self.participant_id}] BUY ignored: position in {self.state.position.asset} already open"
            )
            return None

        asset = self.select_asset()
        price = market.price_of(asset)
        size = self.state.config.risk_level / 100 * self.settings.max_position_fraction

        self.state.position = Position(
            asset=asset,
            entry_price=price,
            size_fraction=size,
            opened_at=market.timestamp
        )
        event = TradeEvent(
            action=TradeAction.BUY,
            asset=asset,
            price=price,
            timestamp=market.timestamp,
            size_fraction=size
        )
        self.state.trade_log.append(event)

        logger.info(f"[{self.participant_id}] BUY {asset} @ {price:g} (size {size:.2%})")
        return event

    def _close_position(self, market: MarketSnapshot) -> Optional[TradeEvent]:
        position = self.state.position
        if position is None:
            logger.warning(f"[{self.participant_id}] SELL ignored: no open position")
            return None

        price = market.price_of(position.asset)
        profit_pct = position.price_change(price) * 100

        self.state.realized_pnl += profit_pct * position.size_fraction
        self.state.position = None
        event = TradeEvent(
            action=TradeAction.SELL,
            asset=position.asset,
            price=price,
            timestamp=market.timestamp,
            realized_profit_pct=profit_pct
        )
        self.state.trade_log.append(event)

        logger.info(
            f"[{self.participant_id}] SELL {position.asset} @ {price:g} "
            f"({profit_pct:+.2f}%, realized PnL {self.state.realized_pnl:+.2f}%)"
        )
        return event

    def select_asset(self) -> str:
        """Pick uniformly among the candidates for the participant's focus"""
        candidates = self.state.config.asset_focus.candidate_assets
        if len(candidates) == 1:
            return candidates[0]
        index = min(int(self.rng.random() * len(candidates)), len(candidates) - 1)
        return candidates[index]

    def unrealized_pnl(self, market: MarketSnapshot) -> float:
        position = self.state.position
        if position is None:
            return 0.0
        return position.unrealized_pnl(market.price_of(position.asset))

    def unrealized_plus_realized_pnl(self, market: MarketSnapshot) -> float:
        """Total PnL marked to the snapshot; reads state only"""
        return self.state.realized_pnl + self.unrealized_pnl(market)
