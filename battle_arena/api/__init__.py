"""
HTTP and WebSocket surface for the battle arena.
"""

from battle_arena.api.app import create_app
from battle_arena.api.connection_manager import ConnectionManager, ThreadSafeWebSocketBroadcaster

__all__ = [
    'ConnectionManager',
    'ThreadSafeWebSocketBroadcaster',
    'create_app',
]
