"""Market data layer -- rate reconciliation, P2P ranging and cached market leaders, narrative answers."""

from ratewatch.market_data.advisor import MarketAdvisor
from ratewatch.market_data.cache import CacheEntry, ExpiringCache
from ratewatch.market_data.ranger import P2PRanger
from ratewatch.market_data.reconciler import RateReconciler, resolve_rate
from ratewatch.market_data.top_coins import TopCoinsService

__all__ = [
    "CacheEntry",
    "ExpiringCache",
    "MarketAdvisor",
    "P2PRanger",
    "RateReconciler",
    "TopCoinsService",
    "resolve_rate",
]
