"""
Ledger adapter interface.

The ledger is the durable source of truth for battle existence, roster,
strategy configs, and finalized outcomes. Adapters own their own timeout and
retry policy; the battle core only sees success or a LedgerError.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol, Union

from battle_arena.battle.models import StrategyConfig


class LedgerError(Exception):
    """Ledger rejected a call"""
    pass


class LedgerUnavailableError(LedgerError):
    """Ledger could not be reached"""
    pass


@dataclass(frozen=True)
class ParticipantJoined:
    """A participant registered for a battle on the ledger"""
    battle_id: int
    participant_id: str
    config: StrategyConfig


@dataclass(frozen=True)
class BattleStarted:
    """The ledger marked a battle as started"""
    battle_id: int
    start_time: float
    roster_size: int


LedgerEvent = Union[ParticipantJoined, BattleStarted]
LedgerEventHandler = Callable[[LedgerEvent], None]


class LedgerAdapter(Protocol):
    """Operations the battle core consumes"""

    def get_active_battle_id(self) -> int:
        ...

    def get_roster(self, battle_id: int) -> List[str]:
        ...

    def get_config(self, battle_id: int, participant_id: str) -> StrategyConfig:
        ...

    def report_outcome(self, battle_id: int, winner_id: str, winning_pnl_basis_points: int) -> None:
        ...

    def start_battle(self, battle_id: int) -> None:
        ...

    def get_battle_record(self, battle_id: int) -> Dict[str, Any]:
        ...

    def subscribe(self, handler: LedgerEventHandler) -> None:
        ...
