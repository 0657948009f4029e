"""
Battle Orchestrator: runs one timed battle from registration to outcome.

Orchestrates the battle by:
- Accepting participants while Pending
- Driving a periodic round: one shared price snapshot, every agent decides
- Publishing a ranking snapshot after every round
- Finalizing on deadline (or abort) and reporting the winner to the ledger

Lifecycle: Pending -> Running -> Finalizing -> Finalized (forward only).
All mutation happens on the battle's worker thread; readers only ever see
the state as of the end of the last completed round.
"""

import logging
import random
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from battle_arena.battle.battle_worker import BattleWorker
from battle_arena.battle.broadcast import Broadcaster, LoggingBroadcaster
from battle_arena.battle.decision_agent import DecisionAgent, RandomSource
from battle_arena.battle.errors import (
    DuplicateParticipantError,
    InsufficientParticipantsError,
    InvalidPhaseError,
    OutcomeReportError,
)
from battle_arena.battle.models import (
    BattleInfo,
    BattleOutcome,
    BattlePhase,
    BattleState,
    LeaderboardEntry,
    MarketSnapshot,
    ParticipantState,
    PositionView,
    RankingEntry,
    RankingSnapshot,
    StrategyConfig,
    TradeAction,
    to_basis_points,
)
from battle_arena.config.arena_config_schema import BattleSettings

logger = logging.getLogger(__name__)


def resolve_duration(settings: BattleSettings, duration_seconds: Optional[float]) -> float:
    """
    Battle length to use for a start request.

    Raises:
        ValueError: If the resulting duration is not positive
    """
    duration = settings.default_duration_seconds if duration_seconds is None else duration_seconds
    if duration <= 0:
        raise ValueError(f"duration_seconds must be positive, got: {duration}")
    return duration


class MarketDataSource(Protocol):
    """What a battle needs from the shared price cache"""

    def fetch(self) -> MarketSnapshot:
        ...

    def latest(self) -> MarketSnapshot:
        ...


class OutcomeReporter(Protocol):
    """What a battle needs from the ledger"""

    def report_outcome(self, battle_id: int, winner_id: str, winning_pnl_basis_points: int) -> None:
        ...


class _BattleView:
    """Immutable read model swapped in at the end of each mutation"""

    def __init__(
        self,
        state: BattleState,
        leaderboard: List[LeaderboardEntry],
        ranking: Optional[RankingSnapshot],
        outcome: Optional[BattleOutcome]
    ):
        self.battle_id = state.battle_id
        self.phase = state.phase
        self.participants = list(state.roster)
        self.tick_count = state.tick_count
        self.started_at = state.started_at
        self.deadline = state.deadline
        self.leaderboard = leaderboard
        self.ranking = ranking
        self.outcome = outcome


class BattleOrchestrator:
    """
    Owns the roster and clock of a single battle.

    Public methods are safe to call from any thread: mutations are executed
    on the battle's worker and queries read the last published view.
    """

    def __init__(
        self,
        battle_id: int,
        price_source: MarketDataSource,
        ledger: OutcomeReporter,
        broadcaster: Optional[Broadcaster] = None,
        settings: Optional[BattleSettings] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[RandomSource] = None
    ):
        """
        Initialize battle orchestrator.

        Args:
            battle_id: Ledger id of the battle
            price_source: Shared price cache
            ledger: Receives the finalized outcome
            broadcaster: Receives ranking snapshots (defaults to the log)
            settings: Tick interval, minimum roster, trading thresholds
            clock: Time source for deadlines and timestamps
            rng: Random source shared by every agent in this battle
        """
        self.price_source = price_source
        self.ledger = ledger
        self.broadcaster = broadcaster or LoggingBroadcaster()
        self.settings = settings or BattleSettings()
        self.clock = clock
        self.rng = rng or random.Random()

        self.state = BattleState(battle_id=battle_id)
        self._agents: Dict[str, DecisionAgent] = {}
        self._outcome: Optional[BattleOutcome] = None
        self._last_market: Optional[MarketSnapshot] = None

        self._view_lock = threading.Lock()
        self._view = _BattleView(self.state, [], None, None)
        self._finalized = threading.Event()

        self._worker = BattleWorker(
            name=f"battle-{battle_id}",
            on_tick=self._scheduled_tick,
            interval_seconds=self.settings.tick_interval_seconds
        )
        self._worker.start()

        logger.info(f"BattleOrchestrator created for battle {battle_id}")
        logger.info(f"  Tick interval: {self.settings.tick_interval_seconds}s")

    @property
    def battle_id(self) -> int:
        return self.state.battle_id

    @property
    def phase(self) -> BattlePhase:
        return self._current_view().phase

    @property
    def outcome(self) -> Optional[BattleOutcome]:
        return self._current_view().outcome

    # ------------------------------------------------------------------
    # Commands

    def join(self, participant_id: str, config: StrategyConfig) -> None:
        """
        Register a participant.

        Raises:
            InvalidPhaseError: If the battle is no longer Pending
            DuplicateParticipantError: If the id already joined
        """
        self._worker.call(lambda: self._join(participant_id, config))

    def start(self, duration_seconds: Optional[float] = None) -> RankingSnapshot:
        """
        Start the battle clock and run the first round immediately.

        Args:
            duration_seconds: Battle length (defaults to settings)

        Returns:
            Ranking snapshot of the first round

        Raises:
            InvalidPhaseError: If the battle is not Pending
            InsufficientParticipantsError: If the roster is too small
            ValueError: If duration_seconds is not positive
        """
        return self._worker.call(lambda: self._start(duration_seconds))

    def tick(self) -> Optional[RankingSnapshot]:
        """
        Run one round now (in addition to the schedule).

        Returns:
            Ranking snapshot, or None if the battle is not Running or the
            deadline had passed and the battle was finalized instead
        """
        return self._worker.call(self._tick)

    def abort(self) -> BattleOutcome:
        """
        Stop a running battle before its deadline and finalize it.

        Returns:
            The fixed outcome

        Raises:
            InvalidPhaseError: If the battle is not Running
            OutcomeReportError: If the ledger rejected the outcome (the battle
                is Finalized anyway)
        """
        outcome = self._worker.call(self._abort)
        if not outcome.reported:
            raise OutcomeReportError(outcome, RuntimeError(outcome.report_error))
        return outcome

    def retry_outcome_report(self) -> BattleOutcome:
        """
        Report the outcome again after a ledger failure.

        Raises:
            InvalidPhaseError: If the battle is not Finalized
            OutcomeReportError: If the ledger rejected it again
        """
        outcome = self._worker.call(self._retry_outcome_report)
        if not outcome.reported:
            raise OutcomeReportError(outcome, RuntimeError(outcome.report_error))
        return outcome

    def wait_until_finalized(self, timeout: Optional[float] = None) -> Optional[BattleOutcome]:
        """Block until Finalized; returns the outcome or None on timeout"""
        if self._finalized.wait(timeout):
            return self.outcome
        return None

    def shutdown(self):
        """Stop the worker; a running battle stops ticking without finalizing"""
        self._worker.stop(timeout=self.settings.worker_join_timeout_seconds)
        logger.info(f"Battle {self.battle_id} worker shut down ({self.state.phase.value})")

    # ------------------------------------------------------------------
    # Queries

    def get_info(self) -> BattleInfo:
        view = self._current_view()
        outcome = view.outcome
        remaining = None
        if view.deadline is not None and view.phase == BattlePhase.RUNNING:
            remaining = max(0.0, view.deadline - self.clock())

        return BattleInfo(
            battle_id=view.battle_id,
            phase=view.phase,
            participant_count=len(view.participants),
            participants=view.participants,
            tick_count=view.tick_count,
            started_at=view.started_at,
            deadline=view.deadline,
            seconds_remaining=remaining,
            winner_id=outcome.winner_id if outcome else None,
            winning_pnl=outcome.winning_pnl if outcome else None,
            outcome_reported=outcome.reported if outcome else None
        )

    def get_leaderboard(self) -> List[LeaderboardEntry]:
        return list(self._current_view().leaderboard)

    def get_ranking(self) -> Optional[RankingSnapshot]:
        """Ranking published by the last completed round (None before start)"""
        return self._current_view().ranking

    # ------------------------------------------------------------------
    # Worker-side implementation

    def _join(self, participant_id: str, config: StrategyConfig):
        if self.state.phase != BattlePhase.PENDING:
            raise InvalidPhaseError(self.battle_id, "join", self.state.phase)
        if participant_id in self.state.roster:
            raise DuplicateParticipantError(self.battle_id, participant_id)

        participant = ParticipantState(
            participant_id=participant_id,
            config=config,
            join_index=len(self.state.roster)
        )
        self.state.roster[participant_id] = participant
        self._agents[participant_id] = DecisionAgent(participant, rng=self.rng, settings=self.settings)

        logger.info(
            f"Participant {participant_id} joined battle {self.battle_id} "
            f"(risk={config.risk_level}, frequency={config.trade_frequency}, focus={config.asset_focus.value})"
        )
        self._publish_view(None, None)

    def _start(self, duration_seconds: Optional[float]) -> RankingSnapshot:
        if self.state.phase != BattlePhase.PENDING:
            raise InvalidPhaseError(self.battle_id, "start", self.state.phase)
        if len(self.state.roster) < self.settings.min_participants:
            raise InsufficientParticipantsError(
                self.battle_id, len(self.state.roster), self.settings.min_participants
            )

        duration = resolve_duration(self.settings, duration_seconds)

        now = self.clock()
        self.state.started_at = now
        self.state.deadline = now + duration
        self._transition(BattlePhase.RUNNING)
        self._worker.schedule_ticks()

        logger.info("=" * 80)
        logger.info(f"BATTLE {self.battle_id} STARTED: {len(self.state.roster)} participants, {duration:g}s")
        logger.info("=" * 80)

        return self._tick()

    def _scheduled_tick(self):
        self._tick()

    def _tick(self) -> Optional[RankingSnapshot]:
        if self.state.phase != BattlePhase.RUNNING:
            logger.debug(f"Battle {self.battle_id}: tick ignored ({self.state.phase.value})")
            return None

        if self.clock() >= self.state.deadline:
            logger.info(f"Battle {self.battle_id}: deadline reached")
            self._begin_finalizing()
            self._finalize(self.price_source.fetch())
            return None

        market = self.price_source.fetch()
        self.state.tick_count += 1
        faults = 0

        for participant_id, agent in self._agents.items():
            try:
                action = agent.decide(market)
                if action != TradeAction.HOLD:
                    agent.apply(action, market)
            except Exception:
                faults += 1
                logger.exception(f"Battle {self.battle_id}: participant {participant_id} failed this round")

        ranking = self._rank(market)
        snapshot = RankingSnapshot(
            battle_id=self.battle_id,
            ranking=[RankingEntry(participant_id=pid, pnl=pnl) for pid, pnl in ranking],
            timestamp=market.timestamp,
            tick=self.state.tick_count
        )
        self._last_market = market
        self._publish_view(market, snapshot)
        self._broadcast(snapshot)

        if faults:
            logger.warning(f"Battle {self.battle_id} tick {self.state.tick_count}: {faults} participant fault(s)")
        return snapshot

    def _abort(self) -> BattleOutcome:
        if self.state.phase != BattlePhase.RUNNING:
            raise InvalidPhaseError(self.battle_id, "abort", self.state.phase)

        logger.warning(f"Battle {self.battle_id}: aborted before deadline")
        self._begin_finalizing()
        return self._finalize(self.price_source.latest())

    def _begin_finalizing(self):
        self._worker.cancel_ticks()
        self._transition(BattlePhase.FINALIZING)
        self._publish_view(self._last_market, self._current_view().ranking)

    def _finalize(self, market: MarketSnapshot) -> BattleOutcome:
        ranking = self._rank(market)
        winner_id, winning_pnl = ranking[0]
        basis_points = to_basis_points(winning_pnl)

        logger.info("=" * 80)
        logger.info(f"BATTLE {self.battle_id} FINISHED")
        logger.info(f"Winner: {winner_id} with {winning_pnl:+.2f}% PnL")
        logger.info("=" * 80)

        reported, error = self._report(winner_id, basis_points)

        outcome = BattleOutcome(
            battle_id=self.battle_id,
            winner_id=winner_id,
            winning_pnl=winning_pnl,
            winning_pnl_basis_points=basis_points,
            ranking=[RankingEntry(participant_id=pid, pnl=pnl) for pid, pnl in ranking],
            reported=reported,
            report_error=error
        )
        final_snapshot = RankingSnapshot(
            battle_id=self.battle_id,
            ranking=outcome.ranking,
            timestamp=market.timestamp,
            tick=self.state.tick_count,
            final=True
        )

        self._outcome = outcome
        self._last_market = market
        self.state.finalized_at = self.clock()
        self._transition(BattlePhase.FINALIZED)
        self._publish_view(market, final_snapshot)
        self._broadcast(final_snapshot)
        self._finalized.set()
        return outcome

    def _retry_outcome_report(self) -> BattleOutcome:
        if self.state.phase != BattlePhase.FINALIZED:
            raise InvalidPhaseError(self.battle_id, "retry outcome report", self.state.phase)

        outcome = self._outcome
        if outcome.reported:
            return outcome

        reported, error = self._report(outcome.winner_id, outcome.winning_pnl_basis_points)
        self._outcome = outcome.model_copy(update={'reported': reported, 'report_error': error})
        self._publish_view(self._last_market, self._current_view().ranking)
        return self._outcome

    def _report(self, winner_id: str, basis_points: int) -> Tuple[bool, Optional[str]]:
        try:
            self.ledger.report_outcome(self.battle_id, winner_id, basis_points)
        except Exception as e:
            logger.error(f"Battle {self.battle_id}: failed to report outcome to ledger: {e}")
            return False, str(e)

        logger.info(f"Battle {self.battle_id}: outcome reported to ledger")
        return True, None

    def _rank(self, market: MarketSnapshot) -> List[Tuple[str, float]]:
        """
        Participants by PnL descending; sorted() is stable, so ties keep
        join order.
        """
        standings = []
        for participant_id, agent in self._agents.items():
            try:
                pnl = agent.unrealized_plus_realized_pnl(market)
            except KeyError as e:
                logger.warning(f"Battle {self.battle_id}: cannot mark {participant_id} to market ({e}), using realized PnL")
                pnl = agent.state.realized_pnl
            standings.append((participant_id, pnl))
        return sorted(standings, key=lambda item: item[1], reverse=True)

    def _transition(self, target: BattlePhase):
        current = self.state.phase
        if not current.can_transition_to(target):
            raise InvalidPhaseError(self.battle_id, f"move to {target.value}", current)
        self.state.phase = target
        logger.info(f"Battle {self.battle_id}: {current.value} -> {target.value}")

    def _publish_view(self, market: Optional[MarketSnapshot], ranking: Optional[RankingSnapshot]):
        view = _BattleView(self.state, self._build_leaderboard(market), ranking, self._outcome)
        with self._view_lock:
            self._view = view

    def _current_view(self) -> _BattleView:
        with self._view_lock:
            return self._view

    def _build_leaderboard(self, market: Optional[MarketSnapshot]) -> List[LeaderboardEntry]:
        if market is None:
            rows = [(pid, agent.state.realized_pnl) for pid, agent in self._agents.items()]
        else:
            rows = self._rank(market)

        entries = []
        for rank, (participant_id, pnl) in enumerate(rows, start=1):
            participant = self.state.roster[participant_id]
            entries.append(LeaderboardEntry(
                rank=rank,
                participant_id=participant_id,
                pnl=pnl,
                realized_pnl=participant.realized_pnl,
                trade_count=len(participant.trade_log),
                open_position=self._position_view(participant, market),
                config=participant.config
            ))
        return entries

    @staticmethod
    def _position_view(participant: ParticipantState, market: Optional[MarketSnapshot]) -> Optional[PositionView]:
        position = participant.position
        if position is None:
            return None

        current_price = market.prices.get(position.asset) if market else None
        return PositionView(
            asset=position.asset,
            entry_price=position.entry_price,
            size_fraction=position.size_fraction,
            opened_at=position.opened_at,
            current_price=current_price,
            unrealized_pnl=position.unrealized_pnl(current_price) if current_price else None
        )

    def _broadcast(self, snapshot: RankingSnapshot):
        try:
            self.broadcaster.publish(snapshot.to_message())
        except Exception as e:
            logger.error(f"Battle {self.battle_id}: broadcast failed: {e}")
