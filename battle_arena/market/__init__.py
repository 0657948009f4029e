"""
Market data: upstream price client, an offline provider, and the shared price cache.
"""

from battle_arena.market.coingecko_client import CoinGeckoClient, PriceFetchError
from battle_arena.market.price_source import PriceProvider, PriceSource
from battle_arena.market.random_walk_provider import RandomWalkPriceProvider

__all__ = [
    'CoinGeckoClient',
    'PriceFetchError',
    'PriceProvider',
    'PriceSource',
    'RandomWalkPriceProvider',
]
