"""
Battle Arena entry point.

Usage:
    battle-arena serve --config arena.yaml
    battle-arena simulate --participants 4 --duration 60 --tick 2 --offline
"""

import argparse
import logging
import random
import sys
from typing import Optional

from dotenv import load_dotenv

from battle_arena.battle.battle_registry import BattleRegistry
from battle_arena.battle.broadcast import FanoutBroadcaster, LoggingBroadcaster
from battle_arena.battle.models import LEDGER_FOCUS_ORDER, StrategyConfig
from battle_arena.config import (
    ArenaConfig,
    BattleSettings,
    LoggingSettings,
    PriceSourceSettings,
    load_arena_config,
    load_arena_config_from_env,
)
from battle_arena.ledger.in_memory_ledger import InMemoryLedger
from battle_arena.market import CoinGeckoClient, PriceSource, RandomWalkPriceProvider

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[LoggingSettings] = None):
    settings = settings or LoggingSettings()
    logging.basicConfig(level=getattr(logging, settings.level), format=settings.format)


def _load_config(path: Optional[str]) -> ArenaConfig:
    if path:
        return load_arena_config(path)
    return load_arena_config_from_env()


def derive_seed(seed: Optional[int], stream: int) -> Optional[int]:
    """Seed for one random stream; None stays None (unseeded)"""
    if seed is None:
        return None
    return seed + stream


# Random streams of a seeded run, kept apart so none replays another
ROSTER_STREAM = 0
WALK_STREAM = 1
VOLATILITY_STREAM = 2
BATTLE_STREAM_BASE = 100


def _build_price_source(config: ArenaConfig, offline: bool, seed: Optional[int] = None) -> PriceSource:
    if offline:
        provider = RandomWalkPriceProvider(config.price_source, seed=derive_seed(seed, WALK_STREAM))
    else:
        provider = CoinGeckoClient(config.price_source)
    return PriceSource(provider, settings=config.price_source, rng=random.Random(derive_seed(seed, VOLATILITY_STREAM)))


def serve(args) -> int:
    """Run the API server with an in-memory ledger"""
    import uvicorn

    from battle_arena.api import ConnectionManager, ThreadSafeWebSocketBroadcaster, create_app

    config = _load_config(args.config)
    configure_logging(config.logging)

    host = args.host or config.server.host
    port = args.port or config.server.port

    websocket_broadcaster = ThreadSafeWebSocketBroadcaster(ConnectionManager())
    ledger = InMemoryLedger(min_participants=config.battle.min_participants)
    registry = BattleRegistry(
        price_source=_build_price_source(config, args.offline),
        ledger=ledger,
        broadcaster=FanoutBroadcaster(LoggingBroadcaster(), websocket_broadcaster),
        settings=config.battle,
        announce_joins=config.server.broadcast_on_join
    )
    ledger.subscribe(registry.submit_event)

    battle_id = ledger.open_battle()
    logger.info(f"Opened battle {battle_id} on the in-memory ledger")

    app = create_app(registry, ledger, settings=config.server, websocket_broadcaster=websocket_broadcaster)

    logger.info("=" * 80)
    logger.info(f"Battle Arena serving on {host}:{port}")
    logger.info("=" * 80)
    uvicorn.run(app, host=host, port=port, log_level=config.logging.level.lower())
    return 0


def simulate(args) -> int:
    """Run one local battle between generated participants and print the standings"""
    config = _load_config(args.config)
    config.battle = BattleSettings(**{**config.battle.model_dump(), 'tick_interval_seconds': args.tick})
    configure_logging(config.logging)

    if args.offline:
        # One fresh random-walk step per round
        config.price_source = PriceSourceSettings(
            **{**config.price_source.model_dump(), 'cache_ttl_seconds': args.tick / 2}
        )

    rng = random.Random(derive_seed(args.seed, ROSTER_STREAM))
    ledger = InMemoryLedger(min_participants=config.battle.min_participants)
    registry = BattleRegistry(
        price_source=_build_price_source(config, args.offline, seed=args.seed),
        ledger=ledger,
        settings=config.battle,
        rng_factory=lambda battle_id: random.Random(derive_seed(args.seed, BATTLE_STREAM_BASE + battle_id))
    )
    ledger.subscribe(registry.submit_event)

    battle_id = ledger.open_battle()
    for i in range(args.participants):
        config_ = StrategyConfig(
            risk_level=rng.randint(1, 100),
            trade_frequency=rng.randint(1, 100),
            asset_focus=rng.choice(LEDGER_FOCUS_ORDER)
        )
        ledger.register_participant(battle_id, f"player-{i + 1}", config_)
    registry.process_events()

    try:
        registry.start_from_ledger(battle_id, duration_seconds=args.duration)
        outcome = registry.get(battle_id).wait_until_finalized(timeout=args.duration + args.tick * 5)
        if outcome is None:
            logger.error(f"Battle {battle_id} did not finalize in time")
            return 1

        print()
        print("=" * 80)
        print(f"BATTLE {battle_id} FINAL LEADERBOARD")
        print("=" * 80)
        for entry in registry.get_leaderboard(battle_id):
            config_ = entry.config
            print(
                f"{entry.rank:>3}. {entry.participant_id:<12} {entry.pnl:+8.3f}%  "
                f"trades={entry.trade_count:<3} risk={config_.risk_level:<3} "
                f"freq={config_.trade_frequency:<3} focus={config_.asset_focus.value}"
            )
        print(f"\nWinner: {outcome.winner_id} ({outcome.winning_pnl_basis_points} bps), reported={outcome.reported}")
        return 0
    finally:
        registry.shutdown()


def main(argv=None) -> int:
    """Main entry point"""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Battle Arena: timed multi-participant trading battles",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to arena configuration file (defaults to $ARENA_CONFIG)'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve_parser = subparsers.add_parser('serve', help='Run the HTTP/WebSocket API')
    serve_parser.add_argument('--host', type=str, default=None, help='Bind address (overrides config)')
    serve_parser.add_argument('--port', type=int, default=None, help='Port (overrides config)')
    serve_parser.add_argument('--offline', action='store_true', help='Use random-walk prices instead of CoinGecko')
    serve_parser.set_defaults(func=serve)

    sim_parser = subparsers.add_parser('simulate', help='Run one local battle and print the leaderboard')
    sim_parser.add_argument('--participants', type=int, default=4, help='Number of generated participants')
    sim_parser.add_argument('--duration', type=float, default=60.0, help='Battle length in seconds')
    sim_parser.add_argument('--tick', type=float, default=2.0, help='Seconds between rounds')
    sim_parser.add_argument('--seed', type=int, default=None, help='Random seed')
    sim_parser.add_argument('--offline', action='store_true', help='Use random-walk prices instead of CoinGecko')
    sim_parser.set_defaults(func=simulate)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
