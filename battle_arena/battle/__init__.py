"""
Battle Orchestration System

Runs timed multi-participant trading battles.

Components:
- DecisionAgent: Rule-based trader for one participant
- BattleWorker: Serialized execution context for one battle
- BattleOrchestrator: Lifecycle, periodic rounds, ranking, finalize
- Broadcaster: Where ranking snapshots are published
- BattleRegistry (battle_arena.battle.battle_registry): create/lookup/evict
  battles and consume ledger events

Example usage:
    from battle_arena.battle import BattleOrchestrator, StrategyConfig

    orchestrator = BattleOrchestrator(battle_id=1, price_source=prices, ledger=ledger)
    orchestrator.join("0xA", StrategyConfig(risk_level=90, trade_frequency=80, asset_focus="HighVol"))
    orchestrator.join("0xB", StrategyConfig(risk_level=10, trade_frequency=10, asset_focus="LowVol"))
    orchestrator.start(duration_seconds=1800)
    outcome = orchestrator.wait_until_finalized()
"""

from battle_arena.battle.models import (
    AssetFocus,
    BattleInfo,
    BattleOutcome,
    BattlePhase,
    BattleState,
    LeaderboardEntry,
    MarketSnapshot,
    ParticipantState,
    Position,
    PositionView,
    RankingEntry,
    RankingSnapshot,
    StrategyConfig,
    TradeAction,
    TradeEvent,
)
from battle_arena.battle.errors import (
    BattleError,
    BattleExistsError,
    BattleNotFoundError,
    DuplicateParticipantError,
    InsufficientParticipantsError,
    InvalidPhaseError,
    OutcomeReportError,
)
from battle_arena.battle.decision_agent import DecisionAgent
from battle_arena.battle.battle_worker import BattleWorker, WorkerStoppedError
from battle_arena.battle.broadcast import Broadcaster, FanoutBroadcaster, LoggingBroadcaster
from battle_arena.battle.battle_orchestrator import BattleOrchestrator

__all__ = [
    # Data model
    'AssetFocus',
    'BattleInfo',
    'BattleOutcome',
    'BattlePhase',
    'BattleState',
    'LeaderboardEntry',
    'MarketSnapshot',
    'ParticipantState',
    'Position',
    'PositionView',
    'RankingEntry',
    'RankingSnapshot',
    'StrategyConfig',
    'TradeAction',
    'TradeEvent',

    # Errors
    'BattleError',
    'BattleExistsError',
    'BattleNotFoundError',
    'DuplicateParticipantError',
    'InsufficientParticipantsError',
    'InvalidPhaseError',
    'OutcomeReportError',

    # Orchestration
    'DecisionAgent',
    'BattleWorker',
    'WorkerStoppedError',
    'Broadcaster',
    'FanoutBroadcaster',
    'LoggingBroadcaster',
    'BattleOrchestrator',
]
