"""
In-memory ledger for local runs and tests.

Keeps battle records in process memory and emits the same events a real
ledger would. Availability can be toggled to exercise the core's failure
handling.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from battle_arena.battle.models import StrategyConfig
from battle_arena.ledger.ledger_adapter import (
    BattleStarted,
    LedgerError,
    LedgerEvent,
    LedgerEventHandler,
    LedgerUnavailableError,
    ParticipantJoined,
)

logger = logging.getLogger(__name__)


@dataclass
class _BattleRecord:
    battle_id: int
    created_at: float
    roster: List[str] = field(default_factory=list)
    configs: Dict[str, StrategyConfig] = field(default_factory=dict)
    entry_fee: float = 0.0
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    winner: Optional[str] = None
    winning_pnl_basis_points: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.start_time is not None and self.winner is None

    @property
    def is_finalized(self) -> bool:
        return self.winner is not None


class InMemoryLedger:
    """
    Thread-safe ledger kept in process memory.

    Battle ids start at 1; the newest opened battle is the active one.
    """

    def __init__(self, clock: Callable[[], float] = time.time, min_participants: int = 2):
        self.clock = clock
        self.min_participants = min_participants

        self._lock = threading.RLock()
        self._battles: Dict[int, _BattleRecord] = {}
        self._current_battle_id = 0
        self._handlers: List[LedgerEventHandler] = []
        self._available = True

        # (battle_id, winner_id, basis_points) for every accepted report
        self.reported_outcomes: List[Tuple[int, str, int]] = []

        logger.info("InMemoryLedger initialized")

    # ------------------------------------------------------------------
    # Ledger-side operations (what participants and admins do)

    def open_battle(self, entry_fee: float = 0.0) -> int:
        with self._lock:
            self._check_available()
            self._current_battle_id += 1
            battle_id = self._current_battle_id
            self._battles[battle_id] = _BattleRecord(battle_id=battle_id, created_at=self.clock(), entry_fee=entry_fee)

        logger.info(f"Ledger: battle {battle_id} opened")
        return battle_id

    def register_participant(self, battle_id: int, participant_id: str, config: StrategyConfig):
        """Register a participant and emit ParticipantJoined"""
        with self._lock:
            self._check_available()
            record = self._record(battle_id)
            if record.start_time is not None:
                raise LedgerError(f"Battle {battle_id} already started")
            if participant_id in record.configs:
                raise LedgerError(f"{participant_id} already registered for battle {battle_id}")
            record.roster.append(participant_id)
            record.configs[participant_id] = config

        logger.info(f"Ledger: {participant_id} registered for battle {battle_id}")
        self._emit(ParticipantJoined(battle_id=battle_id, participant_id=participant_id, config=config))

    # ------------------------------------------------------------------
    # LedgerAdapter

    def get_active_battle_id(self) -> int:
        with self._lock:
            self._check_available()
            if not self._battles:
                raise LedgerError("No battle has been opened")
            return self._current_battle_id

    def get_roster(self, battle_id: int) -> List[str]:
        with self._lock:
            self._check_available()
            return list(self._record(battle_id).roster)

    def get_config(self, battle_id: int, participant_id: str) -> StrategyConfig:
        with self._lock:
            self._check_available()
            record = self._record(battle_id)
            try:
                return record.configs[participant_id]
            except KeyError:
                raise LedgerError(f"{participant_id} is not registered for battle {battle_id}") from None

    def start_battle(self, battle_id: int):
        """Mark the battle started and emit BattleStarted"""
        with self._lock:
            self._check_available()
            record = self._record(battle_id)
            if record.start_time is not None:
                raise LedgerError(f"Battle {battle_id} already started")
            if len(record.roster) < self.min_participants:
                raise LedgerError(
                    f"Battle {battle_id} needs {self.min_participants} participants, has {len(record.roster)}"
                )
            record.start_time = self.clock()
            event = BattleStarted(battle_id=battle_id, start_time=record.start_time, roster_size=len(record.roster))

        logger.info(f"Ledger: battle {battle_id} started")
        self._emit(event)

    def report_outcome(self, battle_id: int, winner_id: str, winning_pnl_basis_points: int):
        with self._lock:
            self._check_available()
            record = self._record(battle_id)
            if record.is_finalized:
                raise LedgerError(f"Battle {battle_id} already finalized")
            if winner_id not in record.configs:
                raise LedgerError(f"Winner {winner_id} is not registered for battle {battle_id}")
            record.winner = winner_id
            record.winning_pnl_basis_points = winning_pnl_basis_points
            record.end_time = self.clock()
            self.reported_outcomes.append((battle_id, winner_id, winning_pnl_basis_points))

        logger.info(
            f"Ledger: battle {battle_id} finalized, winner {winner_id} "
            f"({winning_pnl_basis_points / 100:.2f}%)"
        )

    def get_battle_record(self, battle_id: int) -> Dict[str, Any]:
        with self._lock:
            self._check_available()
            record = self._record(battle_id)
            return {
                'participant_count': len(record.roster),
                'prize_pool': record.entry_fee * len(record.roster),
                'start_time': record.start_time,
                'end_time': record.end_time,
                'is_active': record.is_active,
                'is_finalized': record.is_finalized,
                'winner': record.winner,
            }

    def subscribe(self, handler: LedgerEventHandler):
        with self._lock:
            self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Failure injection

    def set_available(self, available: bool):
        with self._lock:
            self._available = available
        logger.info(f"Ledger availability set to {available}")

    # ------------------------------------------------------------------

    def _record(self, battle_id: int) -> _BattleRecord:
        try:
            return self._battles[battle_id]
        except KeyError:
            raise LedgerError(f"Unknown battle {battle_id}") from None

    def _check_available(self):
        if not self._available:
            raise LedgerUnavailableError("Ledger unavailable")

    def _emit(self, event: LedgerEvent):
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Ledger event handler failed for {type(event).__name__}: {e}")
