"""
Battle Registry: owns every battle running in this process.

Handles:
- Battle lifecycle (create, lookup, evict)
- Starting a battle from the ledger's roster, atomically
- Consuming ledger events from an inbound queue
- The read-only query surface (battle info, leaderboard, prices)
"""

import logging
import queue
import threading
import time
from typing import Callable, Dict, List, Optional

from battle_arena.battle.battle_orchestrator import BattleOrchestrator, resolve_duration
from battle_arena.battle.broadcast import Broadcaster, LoggingBroadcaster
from battle_arena.battle.decision_agent import RandomSource
from battle_arena.battle.errors import (
    BattleExistsError,
    BattleNotFoundError,
    DuplicateParticipantError,
    InsufficientParticipantsError,
    InvalidPhaseError,
)
from battle_arena.battle.models import (
    BattleInfo,
    BattlePhase,
    LeaderboardEntry,
    MarketSnapshot,
    RankingSnapshot,
)
from battle_arena.config.arena_config_schema import BattleSettings
from battle_arena.ledger.ledger_adapter import (
    BattleStarted,
    LedgerAdapter,
    LedgerEvent,
    ParticipantJoined,
)

logger = logging.getLogger(__name__)


class BattleRegistry:
    """
    Explicit registry of battle orchestrators, injected wherever battles are
    looked up (API, CLI) instead of living in a module-level map.
    """

    def __init__(
        self,
        price_source,
        ledger: LedgerAdapter,
        broadcaster: Optional[Broadcaster] = None,
        settings: Optional[BattleSettings] = None,
        clock: Callable[[], float] = time.time,
        rng_factory: Optional[Callable[[int], RandomSource]] = None,
        announce_joins: bool = True
    ):
        """
        Initialize registry.

        Args:
            price_source: Shared PriceSource for every battle
            ledger: Ledger adapter (roster, configs, outcome reporting)
            broadcaster: Sink for ranking snapshots and join announcements
            settings: Battle settings passed to every orchestrator
            clock: Time source passed to every orchestrator
            rng_factory: Builds the random source for a battle id
            announce_joins: Publish participant_joined messages
        """
        self.price_source = price_source
        self.ledger = ledger
        self.broadcaster = broadcaster or LoggingBroadcaster()
        self.settings = settings or BattleSettings()
        self.clock = clock
        self.rng_factory = rng_factory
        self.announce_joins = announce_joins

        self._battles: Dict[int, BattleOrchestrator] = {}
        self._lock = threading.RLock()
        # Serializes start_from_ledger so two starts of one battle cannot race
        self._start_lock = threading.Lock()

        self._events: "queue.Queue[LedgerEvent]" = queue.Queue()
        self._consumer: Optional[threading.Thread] = None
        self._consumer_stop = threading.Event()

        logger.info("BattleRegistry initialized")

    # ------------------------------------------------------------------
    # Lifecycle

    def create(self, battle_id: int) -> BattleOrchestrator:
        """
        Create and register a Pending battle.

        Raises:
            BattleExistsError: If the id is already registered
        """
        with self._lock:
            if battle_id in self._battles:
                raise BattleExistsError(battle_id)
            orchestrator = self._new_orchestrator(battle_id)
            self._battles[battle_id] = orchestrator
        return orchestrator

    def get(self, battle_id: int) -> BattleOrchestrator:
        """
        Raises:
            BattleNotFoundError: If the id is not registered
        """
        with self._lock:
            try:
                return self._battles[battle_id]
            except KeyError:
                raise BattleNotFoundError(battle_id) from None

    def get_or_create(self, battle_id: int) -> BattleOrchestrator:
        with self._lock:
            if battle_id in self._battles:
                return self._battles[battle_id]
            return self.create(battle_id)

    def evict(self, battle_id: int) -> BattleOrchestrator:
        """
        Remove a finalized battle and stop its worker.

        Raises:
            BattleNotFoundError: If the id is not registered
            InvalidPhaseError: If the battle is not Finalized yet
        """
        with self._lock:
            orchestrator = self.get(battle_id)
            if orchestrator.phase != BattlePhase.FINALIZED:
                raise InvalidPhaseError(battle_id, "evict", orchestrator.phase)
            del self._battles[battle_id]

        orchestrator.shutdown()
        logger.info(f"Battle {battle_id} evicted")
        return orchestrator

    def list_battles(self) -> List[BattleInfo]:
        with self._lock:
            orchestrators = list(self._battles.values())
        return [o.get_info() for o in orchestrators]

    def active_battles(self) -> List[int]:
        """Ids of battles currently Running"""
        with self._lock:
            return [bid for bid, o in self._battles.items() if o.phase == BattlePhase.RUNNING]

    def start_from_ledger(
        self,
        battle_id: int,
        duration_seconds: Optional[float] = None,
        start_on_ledger: bool = True
    ) -> RankingSnapshot:
        """
        Start a battle with the roster recorded on the ledger.

        Phase, roster and duration are all checked before the ledger-side
        start, so a rejected request leaves neither the ledger nor this
        registry changed and can be retried.

        Args:
            battle_id: Ledger battle id
            duration_seconds: Battle length (defaults to settings)
            start_on_ledger: Also mark the battle started on the ledger; False
                when reacting to the ledger's own BattleStarted event

        Returns:
            Ranking snapshot of the first round

        Raises:
            LedgerError: If the ledger cannot be read or refuses the start
            InvalidPhaseError: If the battle is already past Pending
            InsufficientParticipantsError: If the ledger roster is too small
            ValueError: If duration_seconds is not positive
        """
        duration = resolve_duration(self.settings, duration_seconds)

        with self._start_lock:
            with self._lock:
                existing = self._battles.get(battle_id)
            if existing is not None and existing.phase != BattlePhase.PENDING:
                raise InvalidPhaseError(battle_id, "start", existing.phase)

            roster = self.ledger.get_roster(battle_id)
            configs = {pid: self.ledger.get_config(battle_id, pid) for pid in roster}

            if len(roster) < self.settings.min_participants:
                raise InsufficientParticipantsError(battle_id, len(roster), self.settings.min_participants)

            if start_on_ledger:
                self.ledger.start_battle(battle_id)

            orchestrator = existing or self._new_orchestrator(battle_id)
            try:
                joined = set(orchestrator.get_info().participants)
                for participant_id in roster:
                    if participant_id not in joined:
                        try:
                            orchestrator.join(participant_id, configs[participant_id])
                        except DuplicateParticipantError:
                            # Joined meanwhile through its ledger event
                            pass

                snapshot = orchestrator.start(duration)
            except Exception:
                if existing is None:
                    orchestrator.shutdown()
                raise

            if existing is None:
                with self._lock:
                    self._battles[battle_id] = orchestrator

        logger.info(f"Battle {battle_id} started from ledger with {len(roster)} participants")
        return snapshot

    # ------------------------------------------------------------------
    # Ledger events

    def submit_event(self, event: LedgerEvent):
        """Queue a ledger event; safe to use as a ledger subscription handler"""
        self._events.put(event)

    def process_events(self, max_events: Optional[int] = None) -> int:
        """
        Drain queued ledger events.

        Returns:
            Number of events handled
        """
        handled = 0
        while max_events is None or handled < max_events:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            self._handle_event(event)
            handled += 1
        return handled

    def start_event_consumer(self, poll_interval: float = 0.5):
        """Handle ledger events on a background thread"""
        if self._consumer is not None and self._consumer.is_alive():
            return
        self._consumer_stop.clear()
        self._consumer = threading.Thread(
            target=self._consume_events,
            args=(poll_interval,),
            name="ledger-events",
            daemon=True
        )
        self._consumer.start()
        logger.info("Ledger event consumer started")

    def stop_event_consumer(self, timeout: Optional[float] = None):
        if self._consumer is None:
            return
        self._consumer_stop.set()
        self._consumer.join(timeout)
        self._consumer = None
        logger.info("Ledger event consumer stopped")

    def _consume_events(self, poll_interval: float):
        while not self._consumer_stop.is_set():
            try:
                event = self._events.get(timeout=poll_interval)
            except queue.Empty:
                continue
            self._handle_event(event)

    def _handle_event(self, event: LedgerEvent):
        try:
            if isinstance(event, ParticipantJoined):
                self._on_participant_joined(event)
            elif isinstance(event, BattleStarted):
                self._on_battle_started(event)
            else:
                logger.warning(f"Ignoring unknown ledger event: {event!r}")
        except Exception:
            logger.exception(f"Failed to handle ledger event {event!r}")

    def _on_participant_joined(self, event: ParticipantJoined):
        orchestrator = self.get_or_create(event.battle_id)
        if orchestrator.phase != BattlePhase.PENDING:
            logger.warning(
                f"Participant {event.participant_id} joined battle {event.battle_id} "
                f"after it left Pending ({orchestrator.phase.value}); ignored"
            )
            return

        try:
            orchestrator.join(event.participant_id, event.config)
        except DuplicateParticipantError:
            logger.debug(f"Participant {event.participant_id} already in battle {event.battle_id}")
            return

        if self.announce_joins:
            self.broadcaster.publish({
                "type": "participant_joined",
                "battle_id": event.battle_id,
                "participant_id": event.participant_id,
                "config": event.config.model_dump(mode='json'),
                "timestamp": self.clock(),
            })

    def _on_battle_started(self, event: BattleStarted):
        with self._lock:
            existing = self._battles.get(event.battle_id)
        if existing is not None and existing.phase != BattlePhase.PENDING:
            logger.info(f"Battle {event.battle_id} already {existing.phase.value}; start event ignored")
            return

        logger.info(f"Battle {event.battle_id} started on ledger ({event.roster_size} participants)")
        try:
            self.start_from_ledger(event.battle_id, start_on_ledger=False)
        except InvalidPhaseError as e:
            # Our own start is still registering the battle when its ledger event arrives
            logger.info(f"Battle {event.battle_id} already started locally; start event ignored ({e})")

    # ------------------------------------------------------------------
    # Queries

    def get_battle_info(self, battle_id: int) -> BattleInfo:
        return self.get(battle_id).get_info()

    def get_leaderboard(self, battle_id: int) -> List[LeaderboardEntry]:
        return self.get(battle_id).get_leaderboard()

    def get_prices(self) -> MarketSnapshot:
        return self.price_source.fetch()

    # ------------------------------------------------------------------

    def shutdown(self):
        """Stop the event consumer and every battle worker"""
        self.stop_event_consumer(timeout=self.settings.worker_join_timeout_seconds)
        with self._lock:
            orchestrators = list(self._battles.values())
        for orchestrator in orchestrators:
            orchestrator.shutdown()
        logger.info(f"BattleRegistry shut down ({len(orchestrators)} battles)")

    def _new_orchestrator(self, battle_id: int) -> BattleOrchestrator:
        return BattleOrchestrator(
            battle_id=battle_id,
            price_source=self.price_source,
            ledger=self.ledger,
            broadcaster=self.broadcaster,
            settings=self.settings,
            clock=self.clock,
            rng=self.rng_factory(battle_id) if self.rng_factory else None
        )
