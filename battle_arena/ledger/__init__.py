"""
Ledger integration: the adapter interface, its events, and an in-memory ledger.
"""

from battle_arena.ledger.ledger_adapter import (
    BattleStarted,
    LedgerAdapter,
    LedgerError,
    LedgerEvent,
    LedgerEventHandler,
    LedgerUnavailableError,
    ParticipantJoined,
)
from battle_arena.ledger.in_memory_ledger import InMemoryLedger

__all__ = [
    'BattleStarted',
    'InMemoryLedger',
    'LedgerAdapter',
    'LedgerError',
    'LedgerEvent',
    'LedgerEventHandler',
    'LedgerUnavailableError',
    'ParticipantJoined',
]
