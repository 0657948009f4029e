"""
Broadcast channel: where ranking snapshots go after every round.

The orchestrator only knows the Broadcaster protocol; concrete sinks include
the log (below) and WebSocket clients (battle_arena.api.connection_manager).
"""

import logging
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):
    def publish(self, message: Dict[str, Any]) -> None:
        ...


class LoggingBroadcaster:
    """Writes standings to the log"""

    def publish(self, message: Dict[str, Any]) -> None:
        if message.get('type') != 'leaderboard_update':
            logger.info(f"Battle {message.get('battle_id')}: {message.get('type')}")
            return

        title = "Final standings" if message.get('final') else f"Leaderboard (tick {message.get('tick')})"
        logger.info(f"Battle {message['battle_id']} - {title}:")
        for rank, entry in enumerate(message['ranking'], start=1):
            logger.info(f"  {rank}. {_short_id(entry['participant_id'])} -> {entry['pnl']:+.2f}%")


class FanoutBroadcaster:
    """
    Publishes to several sinks.

    A failing sink is logged and skipped so one dead observer never breaks
    a round.
    """

    def __init__(self, *sinks: Broadcaster):
        self.sinks: List[Broadcaster] = list(sinks)

    def add(self, sink: Broadcaster):
        self.sinks.append(sink)

    def publish(self, message: Dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink.publish(message)
            except Exception as e:
                logger.error(f"Broadcast sink {type(sink).__name__} failed: {e}")


def _short_id(participant_id: str) -> str:
    return participant_id if len(participant_id) <= 10 else f"{participant_id[:8]}..."
