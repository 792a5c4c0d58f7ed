"""Source adapters -- official rate scrape, P2P marketplaces, spot, news and LLM."""

from ratewatch.sources.bcv import BcvRateSource
from ratewatch.sources.binance_p2p import BinanceP2P
from ratewatch.sources.bybit_p2p import BybitP2P
from ratewatch.sources.client import Marketplace, RateSource, bounded
from ratewatch.sources.coingecko import CoinGeckoClient
from ratewatch.sources.http import HttpClient
from ratewatch.sources.llm import NarrativeGenerator
from ratewatch.sources.news import NewsFeedReader
from ratewatch.sources.spot import SpotPriceSource

__all__ = [
    "BcvRateSource",
    "BinanceP2P",
    "BybitP2P",
    "CoinGeckoClient",
    "HttpClient",
    "Marketplace",
    "NarrativeGenerator",
    "NewsFeedReader",
    "RateSource",
    "SpotPriceSource",
    "bounded",
]
